from __future__ import annotations

from rest_framework.decorators import api_view, permission_classes

from practice.models import Patient, Visit
from practice.permissions import IsStaffRole, method_permissions, permission_required
from practice.responses import created, get_object, ok, paginated
from practice.serializers.visits import (
    CompleteVisitSerializer,
    UpcomingQuerySerializer,
    VisitListQuerySerializer,
    VisitSerializer,
)
from practice.services import visits as visit_service
from practice.services.audit import log_action
from practice.services.scope import ensure_patient_access


def load_visit(user, pk) -> Visit:
    visit = get_object(Visit.objects.select_related('patient', 'dietitian'), pk, 'Visit')
    ensure_patient_access(user, visit.patient)
    return visit


@api_view(['GET', 'POST'])
@permission_classes([IsStaffRole, method_permissions(GET='visits.read', POST='visits.create')])
def visits_view(request):
    if request.method == 'GET':
        q = VisitListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        vd = q.validated_data
        qs = visit_service.list_visits(request.user, patient_id=vd.get('patientId'),
                                       dietitian_id=vd.get('dietitianId'), status=vd.get('status'),
                                       start=vd.get('start'), end=vd.get('end'))
        return paginated(qs, vd, visit_service.format_visit)

    s = VisitSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    data = dict(s.validated_data)
    patient = get_object(Patient.objects.all(), data.pop('patientId'), 'Patient')
    visit = visit_service.create_visit(request.user, patient, data)
    log_action(user=request.user, action='CREATE', resource_type='visit', resource_id=visit.pk,
               changes={'patientId': patient.pk, 'visitDate': visit.visit_date}, request=request)
    return created(visit_service.format_visit(visit, detailed=True))


@api_view(['GET'])
@permission_classes([IsStaffRole, permission_required('visits.read')])
def upcoming_visits_view(request):
    q = UpcomingQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    visits = visit_service.upcoming_visits(request.user, days=q.validated_data['days'])
    return ok([visit_service.format_visit(v) for v in visits])


@api_view(['GET', 'PUT', 'DELETE'])
@permission_classes([IsStaffRole, method_permissions(GET='visits.read', PUT='visits.update',
                                                     DELETE='visits.delete')])
def visit_detail_view(request, pk: int):
    visit = load_visit(request.user, pk)
    if request.method == 'GET':
        return ok(visit_service.format_visit(visit, detailed=True))

    if request.method == 'PUT':
        s = VisitSerializer(data=request.data, partial=True)
        s.is_valid(raise_exception=True)
        data = dict(s.validated_data)
        data.pop('patientId', None)
        changes = visit_service.update_visit(request.user, visit, data)
        if changes:
            log_action(user=request.user, action='UPDATE', resource_type='visit', resource_id=visit.pk,
                       changes=changes, request=request)
        return ok(visit_service.format_visit(visit, detailed=True))

    visit.delete()
    log_action(user=request.user, action='DELETE', resource_type='visit', resource_id=pk, request=request)
    return ok({'deleted': True})


@api_view(['POST'])
@permission_classes([IsStaffRole, permission_required('visits.update')])
def visit_complete_view(request, pk: int):
    visit = load_visit(request.user, pk)
    s = CompleteVisitSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    visit = visit_service.complete_visit(request.user, visit, dict(s.validated_data))
    log_action(user=request.user, action='COMPLETE', resource_type='visit', resource_id=visit.pk,
               changes={'measures': len(s.validated_data.get('measures') or [])}, request=request)
    return ok(visit_service.format_visit(visit, detailed=True))
