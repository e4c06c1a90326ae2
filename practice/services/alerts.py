"""
Out-of-range alerts on patient measures.

A numeric value past ``alert_threshold_min``/``alert_threshold_max`` raises
a *critical* alert; outside ``normal_range_min``/``normal_range_max`` it
raises a *warning*.  At most one alert per patient and measure is created
within :data:`ALERT_COOLDOWN`.  Critical alerts are e-mailed to the
patient's linked dietitians.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from decimal import Decimal

from django.db.models import Case, IntegerField, Value, When
from django.utils import timezone

from practice.exceptions import Conflict
from practice.models import EmailLog, MeasureAlert, MeasureDefinition, PatientMeasure
from practice.services.email import send_templated
from practice.services.scope import scoped_by_patient

logger = logging.getLogger(__name__)

ALERT_COOLDOWN = timedelta(hours=24)

MESSAGES = {
    'below_critical': "CRITICAL: {patient}'s {measure} is critically low ({value}), below threshold of {threshold}",
    'above_critical': "CRITICAL: {patient}'s {measure} is critically high ({value}), above threshold of {threshold}",
    'below_normal': "WARNING: {patient}'s {measure} is below normal range ({value}), expected minimum is {threshold}",
    'above_normal': "WARNING: {patient}'s {measure} is above normal range ({value}), expected maximum is {threshold}",
}


def check_value(value: Decimal, definition: MeasureDefinition):
    """Return ``(severity, alert_type, threshold)`` or None when in range."""
    checks = (
        (definition.alert_threshold_min, lambda t: value < t, MeasureAlert.CRITICAL, 'below_critical'),
        (definition.alert_threshold_max, lambda t: value > t, MeasureAlert.CRITICAL, 'above_critical'),
        (definition.normal_range_min, lambda t: value < t, MeasureAlert.WARNING, 'below_normal'),
        (definition.normal_range_max, lambda t: value > t, MeasureAlert.WARNING, 'above_normal'),
    )
    for threshold, crossed, severity, alert_type in checks:
        if threshold is not None and crossed(threshold):
            return severity, alert_type, threshold
    return None


def _with_unit(number: Decimal, unit: str) -> str:
    return f"{number:.2f} {unit}".strip()


def has_recent_alert(patient, definition, now=None) -> bool:
    now = now or timezone.now()
    return MeasureAlert.objects.filter(patient=patient, definition=definition,
                                       created_at__gte=now - ALERT_COOLDOWN).exists()


def generate_alert(measure: PatientMeasure) -> MeasureAlert | None:
    definition = measure.definition
    if not definition.enable_alerts or measure.numeric_value is None:
        return None
    check = check_value(measure.numeric_value, definition)
    if check is None:
        return None
    patient = measure.patient
    if has_recent_alert(patient, definition):
        logger.debug('Skipping duplicate %s alert for patient %s', definition.name, patient.pk)
        return None
    severity, alert_type, threshold = check
    alert = MeasureAlert.objects.create(
        patient=patient, measure=measure, definition=definition, severity=severity, alert_type=alert_type,
        value=measure.numeric_value, threshold_value=threshold,
        message=MESSAGES[alert_type].format(
            patient=patient.full_name, measure=definition.display_name,
            value=_with_unit(measure.numeric_value, definition.unit),
            threshold=_with_unit(threshold, definition.unit),
        ),
    )
    logger.info('Measure alert %s (%s) for patient %s', alert.pk, alert_type, patient.pk)
    if severity == MeasureAlert.CRITICAL:
        notify_dietitians(alert)
    return alert


def notify_dietitians(alert: MeasureAlert) -> int:
    patient, definition = alert.patient, alert.definition
    sent = 0
    for dietitian in patient.dietitians.filter(is_active=True).exclude(email=''):
        log = send_templated(
            'measure_alert',
            {
                'dietitian_first_name': dietitian.first_name or dietitian.username,
                'patient_name': patient.full_name,
                'measure_name': definition.display_name,
                'value': _with_unit(alert.value, definition.unit),
                'threshold': _with_unit(alert.threshold_value, definition.unit),
                'message': alert.message,
            },
            to=dietitian.email,
            fallback={
                'subject': 'CRITICAL ALERT: {{measure_name}} - {{patient_name}}',
                'body_text': 'Dear {{dietitian_first_name}},\n\n{{message}}\n\n'
                             'Value: {{value}}\nThreshold: {{threshold}}\n\n'
                             'Please review and take appropriate action.',
            },
            patient=patient,
            fail_silently=True,
        )
        sent += int(log.status == EmailLog.SENT)
    if sent:
        alert.email_sent = True
        alert.save(update_fields=['email_sent'])
    return sent


def format_alert(alert: MeasureAlert) -> dict:
    definition = alert.definition
    return {
        'id': alert.id,
        'patientId': alert.patient_id,
        'patientName': alert.patient.full_name,
        'measureValueId': alert.measure_id,
        'measureId': definition.id,
        'measureName': definition.name,
        'displayName': definition.display_name,
        'unit': definition.unit,
        'severity': alert.severity,
        'alertType': alert.alert_type,
        'value': float(alert.value),
        'thresholdValue': float(alert.threshold_value) if alert.threshold_value is not None else None,
        'message': alert.message,
        'emailSent': alert.email_sent,
        'acknowledgedAt': alert.acknowledged_at.isoformat() if alert.acknowledged_at else None,
        'acknowledgedBy': alert.acknowledged_by_id,
        'createdAt': alert.created_at.isoformat() if alert.created_at else None,
    }


def list_alerts(user, *, patient_id=None, severity=None, include_acknowledged: bool = False):
    qs = scoped_by_patient(user, MeasureAlert.objects.select_related('patient', 'definition'))
    if patient_id:
        qs = qs.filter(patient_id=patient_id)
    if severity:
        qs = qs.filter(severity=severity)
    if not include_acknowledged:
        qs = qs.filter(acknowledged_at__isnull=True)
    critical_first = Case(When(severity=MeasureAlert.CRITICAL, then=Value(0)), default=Value(1),
                          output_field=IntegerField())
    return qs.order_by(critical_first, '-created_at', '-id')


def acknowledge_alert(alert: MeasureAlert, user) -> MeasureAlert:
    if alert.acknowledged_at:
        raise Conflict('Alert already acknowledged')
    alert.acknowledged_at = timezone.now()
    alert.acknowledged_by = user
    alert.save(update_fields=['acknowledged_at', 'acknowledged_by'])
    return alert


def acknowledge_patient_alerts(patient, user, *, severity=None, definition_id=None) -> int:
    qs = MeasureAlert.objects.filter(patient=patient, acknowledged_at__isnull=True)
    if severity:
        qs = qs.filter(severity=severity)
    if definition_id:
        qs = qs.filter(definition_id=definition_id)
    count = qs.update(acknowledged_at=timezone.now(), acknowledged_by=user)
    logger.info('Acknowledged %d alert(s) for patient %s', count, patient.pk)
    return count
