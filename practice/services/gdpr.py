"""
Patient data export (right to data portability).

The export gathers everything stored about one patient into a single JSON
document.  File contents are not embedded; each document entry points to
its download endpoint instead.
"""
from __future__ import annotations

import logging

from django.urls import reverse
from django.utils import timezone

from practice.models import AuditLog, EmailLog, Patient
from practice.services import billing, measures, visits
from practice.services.alerts import format_alert
from practice.services.audit import format_audit
from practice.services.documents import format_document
from practice.services.email import format_email_log
from practice.services.patients import format_patient
from practice.services.scope import ensure_patient_access

logger = logging.getLogger(__name__)

AUDIT_TRAIL_LIMIT = 1000

RIGHTS_NOTICE = {
    'rightToRectification': 'You have the right to request correction of inaccurate data',
    'rightToErasure': 'You have the right to request deletion of your data',
    'rightToRestriction': 'You have the right to request restriction of processing',
    'rightToObject': 'You have the right to object to processing of your data',
    'contact': 'To exercise your rights, please contact your dietitian',
}


def _custom_values(patient: Patient) -> dict:
    return {row.definition.field_name: row.value
            for row in patient.custom_values.select_related('definition').order_by('definition__field_name')}


def _documents(patient: Patient) -> list[dict]:
    out = []
    for doc in patient.documents.order_by('created_at', 'id'):
        entry = format_document(doc)
        entry['downloadUrl'] = reverse('document_download_view', args=[doc.pk]) if doc.file else None
        out.append(entry)
    return out


def export_patient_data(user, patient: Patient) -> dict:
    ensure_patient_access(user, patient)
    audit_trail = (AuditLog.objects.filter(resource_type='patient', resource_id=str(patient.pk))
                   .order_by('-created_at', '-id')[:AUDIT_TRAIL_LIMIT])
    invoices = patient.invoices.select_related('patient').order_by('invoice_date', 'id')
    export = {
        'exportedAt': timezone.now().isoformat(),
        'exportedBy': {'userId': user.pk, 'username': user.username, 'name': user.get_display_name()},
        'patient': format_patient(patient, detailed=True),
        'customFields': _custom_values(patient),
        'visits': [visits.format_visit(v, detailed=True)
                   for v in patient.visits.select_related('patient', 'dietitian').order_by('visit_date', 'id')],
        'measures': [measures.format_measure(m)
                     for m in patient.measures.select_related('definition').order_by('measured_at', 'id')],
        'measureAlerts': [format_alert(a) for a in patient.measure_alerts.select_related('patient', 'definition')],
        'invoices': [billing.format_invoice(i, detailed=True) for i in invoices],
        'documents': _documents(patient),
        'emails': [format_email_log(log) for log in EmailLog.objects.filter(patient=patient).order_by('sent_at', 'id')],
        'auditTrail': [format_audit(log) for log in audit_trail],
        'rightsNotice': RIGHTS_NOTICE,
    }
    logger.info('Exported data of patient %s for user %s', patient.pk, user.pk)
    return export
