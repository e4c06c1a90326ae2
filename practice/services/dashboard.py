from __future__ import annotations

from datetime import timedelta

from django.utils import timezone

from practice.models import Visit
from practice.permissions import has_permission
from practice.services import billing
from practice.services.scope import scoped_patients
from practice.services.visits import list_visits


def summary(user) -> dict:
    now = timezone.now()
    month_start = timezone.localtime(now).replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    visits = list_visits(user).order_by()
    data = {
        'activePatients': scoped_patients(user).filter(is_active=True).count(),
        'visitsThisMonth': visits.filter(visit_date__gte=month_start, visit_date__lte=now).count(),
        'completedThisMonth': visits.filter(visit_date__gte=month_start, status=Visit.COMPLETED).count(),
        'upcomingVisits': visits.filter(status=Visit.SCHEDULED, visit_date__gte=now,
                                        visit_date__lte=now + timedelta(days=7)).count(),
    }
    if has_permission(user, 'billing.read'):
        stats = billing.invoice_stats(user, start=month_start.date())
        data['revenue'] = {
            'paid': stats['totalPaid'],
            'pending': stats['totalOutstanding'],
            'overdueCount': stats['overdueCount'],
        }
    return data
