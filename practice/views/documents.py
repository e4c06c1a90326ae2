from __future__ import annotations

from django.http import FileResponse
from rest_framework.decorators import api_view, parser_classes, permission_classes
from rest_framework.exceptions import NotFound
from rest_framework.parsers import FormParser, JSONParser, MultiPartParser

from practice.models import Document, Patient, Visit
from practice.permissions import IsStaffRole, method_permissions, permission_required
from practice.responses import created, get_object, ok, paginated
from practice.serializers.documents import (
    DocumentCreateSerializer,
    DocumentListQuerySerializer,
    DocumentUpdateSerializer,
)
from practice.services import documents as document_service
from practice.services.audit import log_action
from practice.services.scope import ensure_patient_access


def load_document(user, pk) -> Document:
    doc = get_object(Document.objects.select_related('patient'), pk, 'Document')
    ensure_patient_access(user, doc.patient)
    return doc


@api_view(['GET', 'POST'])
@parser_classes([MultiPartParser, FormParser, JSONParser])
@permission_classes([IsStaffRole, method_permissions(GET='documents.read', POST='documents.upload')])
def documents_view(request):
    if request.method == 'GET':
        q = DocumentListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        vd = q.validated_data
        qs = document_service.list_documents(request.user, patient_id=vd.get('patientId'),
                                             category=vd.get('category'), visit_id=vd.get('visitId'))
        return paginated(qs, vd, document_service.format_document)

    s = DocumentCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    patient = get_object(Patient.objects.all(), vd['patientId'], 'Patient')
    visit = get_object(Visit.objects.all(), vd['visitId'], 'Visit') if vd.get('visitId') else None
    doc = document_service.create_document(
        request.user, patient, upload=vd.get('file'), visit=visit, file_name=vd['file_name'],
        category=vd['category'], description=vd['description'],
    )
    log_action(user=request.user, action='UPLOAD', resource_type='document', resource_id=doc.pk,
               changes={'patientId': patient.pk, 'fileName': doc.file_name}, request=request)
    return created(document_service.format_document(doc))


@api_view(['GET', 'PUT', 'DELETE'])
@permission_classes([IsStaffRole, method_permissions(GET='documents.read', PUT='documents.update',
                                                     DELETE='documents.delete')])
def document_detail_view(request, pk: int):
    doc = load_document(request.user, pk)
    if request.method == 'GET':
        return ok(document_service.format_document(doc))

    if request.method == 'PUT':
        s = DocumentUpdateSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        doc = document_service.update_document(doc, s.validated_data)
        log_action(user=request.user, action='UPDATE', resource_type='document', resource_id=doc.pk,
                   changes=s.validated_data, request=request)
        return ok(document_service.format_document(doc))

    document_service.delete_document(doc)
    log_action(user=request.user, action='DELETE', resource_type='document', resource_id=pk, request=request)
    return ok({'deleted': True})


@api_view(['GET'])
@permission_classes([IsStaffRole, permission_required('documents.download')])
def document_download_view(request, pk: int):
    doc = load_document(request.user, pk)
    if not doc.file:
        raise NotFound('Document has no stored file')
    log_action(user=request.user, action='DOWNLOAD', resource_type='document', resource_id=doc.pk, request=request)
    return FileResponse(doc.file.open('rb'), as_attachment=True, filename=doc.file_name,
                        content_type=doc.mime_type or 'application/octet-stream')
