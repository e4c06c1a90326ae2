"""
Patient portal: a PATIENT-role user reads their own record only.
"""
from __future__ import annotations

from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import NotFound

from practice.models import Patient, PatientMeasure, Visit
from practice.permissions import IsPatientRole
from practice.responses import ok, paginated
from practice.serializers.common import PageQuerySerializer
from practice.services.measures import format_measure
from practice.services.patients import format_patient
from practice.services.visits import format_visit


def own_record(user) -> Patient:
    patient = Patient.objects.filter(user=user, is_active=True).first()
    if patient is None:
        raise NotFound('No patient record is attached to this account')
    return patient


@api_view(['GET'])
@permission_classes([IsPatientRole])
def portal_profile_view(request):
    return ok(format_patient(own_record(request.user), detailed=True))


@api_view(['GET'])
@permission_classes([IsPatientRole])
def portal_visits_view(request):
    q = PageQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    qs = Visit.objects.filter(patient=own_record(request.user)).select_related('patient', 'dietitian') \
        .order_by('-visit_date', '-id')
    return paginated(qs, q.validated_data, format_visit)


@api_view(['GET'])
@permission_classes([IsPatientRole])
def portal_measures_view(request):
    q = PageQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    qs = PatientMeasure.objects.filter(patient=own_record(request.user)).select_related('definition') \
        .order_by('-measured_at', '-id')
    return paginated(qs, q.validated_data, format_measure)
