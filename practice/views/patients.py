"""
Patient management views.

Listing and detail follow the caller's scope (see
:mod:`practice.services.scope`); a patient outside that scope answers 403.
"""
from __future__ import annotations

from rest_framework.decorators import api_view, permission_classes

from practice.models import Patient, PatientDietitian
from practice.permissions import IsStaffRole, method_permissions, permission_required
from practice.responses import created, get_object, ok, paginated
from practice.serializers.custom_fields import PatientValuesSerializer
from practice.serializers.patients import (
    DeleteQuerySerializer,
    DietitianLinkSerializer,
    PatientListQuerySerializer,
    PatientSerializer,
    PortalAccountSerializer,
)
from practice.services import custom_fields, gdpr
from practice.services import patients as patient_service
from practice.services.audit import log_action
from practice.services.scope import ensure_patient_access


def load_patient(user, pk) -> Patient:
    patient = get_object(Patient.objects.all(), pk, 'Patient')
    return ensure_patient_access(user, patient)


@api_view(['GET', 'POST'])
@permission_classes([IsStaffRole, method_permissions(GET='patients.read', POST='patients.create')])
def patients_view(request):
    if request.method == 'GET':
        q = PatientListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        vd = q.validated_data
        qs = patient_service.search_patients(request.user, q=vd.get('q'), is_active=vd.get('isActive'),
                                             dietitian_id=vd.get('dietitianId'))
        return paginated(qs, vd, patient_service.format_patient)

    s = PatientSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    patient = patient_service.create_patient(request.user, s.validated_data)
    log_action(user=request.user, action='CREATE', resource_type='patient', resource_id=patient.pk,
               changes={'name': patient.full_name}, request=request)
    return created(patient_service.format_patient(patient, detailed=True))


@api_view(['GET', 'PUT', 'DELETE'])
@permission_classes([IsStaffRole, method_permissions(GET='patients.read', PUT='patients.update',
                                                     DELETE='patients.delete')])
def patient_detail_view(request, pk: int):
    patient = load_patient(request.user, pk)
    if request.method == 'GET':
        return ok(patient_service.format_patient(patient, detailed=True))

    if request.method == 'PUT':
        s = PatientSerializer(data=request.data, partial=True)
        s.is_valid(raise_exception=True)
        changes = patient_service.update_patient(patient, s.validated_data)
        if changes:
            log_action(user=request.user, action='UPDATE', resource_type='patient', resource_id=patient.pk,
                       changes=changes, request=request)
        return ok(patient_service.format_patient(patient, detailed=True))

    q = DeleteQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    outcome = patient_service.delete_patient(request.user, patient, hard=q.validated_data['hard'])
    log_action(user=request.user, action='DELETE', resource_type='patient', resource_id=pk,
               changes={'outcome': outcome}, request=request)
    return ok({'id': pk, 'result': outcome})


@api_view(['GET', 'POST'])
@permission_classes([IsStaffRole, method_permissions(GET='patients.read', POST='patients.update')])
def patient_dietitians_view(request, pk: int):
    if request.method == 'GET':
        patient = load_patient(request.user, pk)
        links = PatientDietitian.objects.filter(patient=patient).select_related('dietitian')
        return ok([patient_service.format_link(link) for link in links])

    s = DietitianLinkSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    dietitian_id = s.validated_data['dietitianId']
    # a dietitian may take on a patient they are not linked to yet
    if dietitian_id == request.user.pk:
        patient = get_object(Patient.objects.all(), pk, 'Patient')
    else:
        patient = load_patient(request.user, pk)
    link = patient_service.add_dietitian_link(request.user, patient, dietitian_id)
    log_action(user=request.user, action='LINK_DIETITIAN', resource_type='patient', resource_id=patient.pk,
               changes={'dietitianId': link.dietitian_id}, request=request)
    return created(patient_service.format_link(link))


@api_view(['DELETE'])
@permission_classes([IsStaffRole, permission_required('patients.update')])
def patient_dietitian_detail_view(request, pk: int, dietitian_id: int):
    patient = load_patient(request.user, pk)
    patient_service.remove_dietitian_link(request.user, patient, dietitian_id)
    log_action(user=request.user, action='UNLINK_DIETITIAN', resource_type='patient', resource_id=patient.pk,
               changes={'dietitianId': dietitian_id}, request=request)
    return ok({'removed': True})


@api_view(['POST'])
@permission_classes([IsStaffRole, permission_required('patients.update')])
def patient_portal_account_view(request, pk: int):
    patient = load_patient(request.user, pk)
    s = PortalAccountSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    user = patient_service.create_portal_account(patient, password=s.validated_data['password'])
    log_action(user=request.user, action='PORTAL_ACCOUNT', resource_type='patient', resource_id=patient.pk,
               changes={'userId': user.pk}, request=request)
    return created({'patientId': patient.pk, 'userId': user.pk, 'username': user.username})


@api_view(['GET', 'PUT'])
@permission_classes([IsStaffRole, method_permissions(GET='patients.read', PUT='patients.update')])
def patient_custom_fields_view(request, pk: int):
    patient = load_patient(request.user, pk)
    if request.method == 'GET':
        return ok(custom_fields.patient_values(patient))

    s = PatientValuesSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    data = custom_fields.update_patient_values(patient, s.validated_data['values'], user=request.user)
    log_action(user=request.user, action='UPDATE_CUSTOM_FIELDS', resource_type='patient', resource_id=patient.pk,
               changes={'fields': sorted(s.validated_data['values'])}, request=request)
    return ok(data)


@api_view(['GET'])
@permission_classes([IsStaffRole, permission_required('patients.read')])
def patient_export_view(request, pk: int):
    """Everything stored about one patient, as a downloadable JSON document."""
    patient = load_patient(request.user, pk)
    data = gdpr.export_patient_data(request.user, patient)
    log_action(user=request.user, action='EXPORT', resource_type='patient', resource_id=patient.pk,
               changes={'exportType': 'full'}, request=request)
    response = ok(data)
    response['Content-Disposition'] = f'attachment; filename="patient-{patient.pk}-export.json"'
    return response
