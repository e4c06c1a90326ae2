"""
Measure definitions, patient measure values and the formula sandbox.
"""
from __future__ import annotations

from rest_framework.decorators import api_view, permission_classes

from practice.models import MeasureDefinition, Patient, PatientMeasure, Visit
from practice.permissions import IsStaffRole, method_permissions, permission_required
from practice.responses import created, get_object, ok, paginated
from practice.serializers.measures import (
    DefinitionListQuerySerializer,
    FormulaPreviewSerializer,
    HistoryQuerySerializer,
    MeasureDefinitionSerializer,
    MeasureListQuerySerializer,
    MeasureLogSerializer,
    MeasureUpdateSerializer,
)
from practice.services import formula as formula_engine
from practice.services import measures as measure_service
from practice.services.audit import log_action
from practice.services.scope import ensure_patient_access

READ_WRITE = method_permissions(GET='measures.read', POST='measures.create', PUT='measures.update',
                                DELETE='measures.delete')


# ---------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------
@api_view(['GET', 'POST'])
@permission_classes([IsStaffRole, READ_WRITE])
def measure_definitions_view(request):
    if request.method == 'GET':
        q = DefinitionListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        qs = MeasureDefinition.objects.all()
        if q.validated_data.get('category'):
            qs = qs.filter(category=q.validated_data['category'])
        if not q.validated_data['includeInactive']:
            qs = qs.filter(is_active=True)
        return ok([measure_service.format_definition(d) for d in qs.order_by('category', 'display_order', 'name')])

    s = MeasureDefinitionSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    definition = measure_service.create_definition(dict(s.validated_data))
    log_action(user=request.user, action='CREATE', resource_type='measure_definition', resource_id=definition.pk,
               changes={'name': definition.name, 'type': definition.measure_type}, request=request)
    return created(measure_service.format_definition(definition))


@api_view(['GET', 'PUT', 'DELETE'])
@permission_classes([IsStaffRole, READ_WRITE])
def measure_definition_detail_view(request, pk: int):
    definition = get_object(MeasureDefinition.objects.all(), pk, 'Measure')
    if request.method == 'GET':
        return ok(measure_service.format_definition(definition))
    if request.method == 'PUT':
        s = MeasureDefinitionSerializer(data=request.data, partial=True)
        s.is_valid(raise_exception=True)
        definition = measure_service.update_definition(definition, dict(s.validated_data))
        log_action(user=request.user, action='UPDATE', resource_type='measure_definition',
                   resource_id=definition.pk, changes=s.validated_data, request=request)
        return ok(measure_service.format_definition(definition))
    outcome = measure_service.delete_definition(definition)
    log_action(user=request.user, action='DELETE', resource_type='measure_definition', resource_id=pk,
               changes={'outcome': outcome}, request=request)
    return ok({'id': pk, 'result': outcome})


# ---------------------------------------------------------------------
# Patient values
# ---------------------------------------------------------------------
def _load_patient(user, pk) -> Patient:
    return ensure_patient_access(user, get_object(Patient.objects.all(), pk, 'Patient'))


def load_measure(user, pk) -> PatientMeasure:
    measure = get_object(PatientMeasure.objects.select_related('patient', 'definition', 'visit'), pk, 'Measure value')
    ensure_patient_access(user, measure.patient)
    return measure


@api_view(['GET', 'POST'])
@permission_classes([IsStaffRole, READ_WRITE])
def patient_measures_view(request):
    if request.method == 'GET':
        q = MeasureListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        vd = q.validated_data
        patient = _load_patient(request.user, vd['patientId'])
        qs = PatientMeasure.objects.filter(patient=patient).select_related('definition')
        if vd.get('measureId'):
            qs = qs.filter(definition_id=vd['measureId'])
        if vd.get('visitId'):
            qs = qs.filter(visit_id=vd['visitId'])
        if vd.get('start'):
            qs = qs.filter(measured_at__gte=vd['start'])
        if vd.get('end'):
            qs = qs.filter(measured_at__lte=vd['end'])
        return paginated(qs.order_by('-measured_at', '-id'), vd, measure_service.format_measure)

    s = MeasureLogSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    patient = _load_patient(request.user, vd['patientId'])
    definition = get_object(MeasureDefinition.objects.all(), vd['measureId'], 'Measure')
    visit = get_object(Visit.objects.all(), vd['visitId'], 'Visit') if vd.get('visitId') else None
    measure = measure_service.log_measure(patient, definition, value=vd['value'], user=request.user,
                                          measured_at=vd.get('measured_at'), visit=visit, notes=vd['notes'])
    log_action(user=request.user, action='CREATE', resource_type='measure', resource_id=measure.pk,
               changes={'patientId': patient.pk, 'measure': definition.name, 'value': vd['value']}, request=request)
    return created(measure_service.format_measure(measure))


@api_view(['GET', 'PUT', 'DELETE'])
@permission_classes([IsStaffRole, READ_WRITE])
def patient_measure_detail_view(request, pk: int):
    measure = load_measure(request.user, pk)
    if request.method == 'GET':
        return ok(measure_service.format_measure(measure))
    if request.method == 'PUT':
        s = MeasureUpdateSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        measure = measure_service.update_measure(measure, s.validated_data, user=request.user)
        log_action(user=request.user, action='UPDATE', resource_type='measure', resource_id=measure.pk,
                   changes=s.validated_data, request=request)
        return ok(measure_service.format_measure(measure))
    measure_service.delete_measure(measure, user=request.user)
    log_action(user=request.user, action='DELETE', resource_type='measure', resource_id=pk, request=request)
    return ok({'deleted': True})


@api_view(['GET'])
@permission_classes([IsStaffRole, permission_required('measures.read')])
def patient_measure_history_view(request, pk: int, measure_id: int):
    patient = _load_patient(request.user, pk)
    definition = get_object(MeasureDefinition.objects.all(), measure_id, 'Measure')
    q = HistoryQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    return ok(measure_service.measure_history(patient, definition, start=q.validated_data.get('start'),
                                              end=q.validated_data.get('end')))


@api_view(['POST'])
@permission_classes([IsStaffRole, permission_required('measures.update')])
def patient_measures_recalculate_view(request, pk: int):
    patient = _load_patient(request.user, pk)
    stored = measure_service.recalculate_all(patient, user=request.user)
    return ok([measure_service.format_measure(m) for m in stored])


# ---------------------------------------------------------------------
# Formula sandbox
# ---------------------------------------------------------------------
@api_view(['POST'])
@permission_classes([IsStaffRole, permission_required('measures.read')])
def formula_validate_view(request):
    s = FormulaPreviewSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    try:
        deps = formula_engine.validate(s.validated_data['formula'])
    except formula_engine.FormulaError as e:
        return ok({'valid': False, 'error': str(e), 'dependencies': []})
    return ok({'valid': True, 'error': None, 'dependencies': deps})


@api_view(['POST'])
@permission_classes([IsStaffRole, permission_required('measures.read')])
def formula_preview_view(request):
    """Evaluate a formula against caller-supplied values."""
    s = FormulaPreviewSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    try:
        result = formula_engine.evaluate(vd['formula'], vd['values'], vd['decimalPlaces'])
    except formula_engine.FormulaError as e:
        return ok({'result': None, 'error': str(e)})
    return ok({'result': result, 'error': None})
