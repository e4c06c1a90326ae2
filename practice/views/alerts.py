"""
Measure alert feed and acknowledgement.
"""
from __future__ import annotations

from rest_framework.decorators import api_view, permission_classes

from practice.models import MeasureAlert, Patient
from practice.permissions import IsStaffRole, permission_required
from practice.responses import get_object, ok, paginated
from practice.serializers.measures import AlertAcknowledgeSerializer, AlertListQuerySerializer
from practice.services import alerts as alert_service
from practice.services.audit import log_action
from practice.services.scope import ensure_patient_access


@api_view(['GET'])
@permission_classes([IsStaffRole, permission_required('measures.read')])
def alerts_view(request):
    q = AlertListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    vd = q.validated_data
    if vd.get('patientId'):
        ensure_patient_access(request.user, get_object(Patient.objects.all(), vd['patientId'], 'Patient'))
    qs = alert_service.list_alerts(request.user, patient_id=vd.get('patientId'), severity=vd.get('severity'),
                                   include_acknowledged=vd['includeAcknowledged'])
    return paginated(qs, vd, alert_service.format_alert)


@api_view(['POST'])
@permission_classes([IsStaffRole, permission_required('measures.update')])
def alert_acknowledge_view(request, pk: int):
    alert = get_object(MeasureAlert.objects.select_related('patient', 'definition'), pk, 'Alert')
    ensure_patient_access(request.user, alert.patient)
    alert = alert_service.acknowledge_alert(alert, request.user)
    log_action(user=request.user, action='ACKNOWLEDGE', resource_type='measure_alert', resource_id=alert.pk,
               request=request)
    return ok(alert_service.format_alert(alert))


@api_view(['POST'])
@permission_classes([IsStaffRole, permission_required('measures.update')])
def patient_alerts_acknowledge_view(request, pk: int):
    patient = ensure_patient_access(request.user, get_object(Patient.objects.all(), pk, 'Patient'))
    s = AlertAcknowledgeSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    count = alert_service.acknowledge_patient_alerts(patient, request.user, severity=s.validated_data.get('severity'),
                                                     definition_id=s.validated_data.get('measureId'))
    log_action(user=request.user, action='ACKNOWLEDGE', resource_type='patient', resource_id=patient.pk,
               changes={'alerts': count}, request=request)
    return ok({'acknowledged': count})
