from __future__ import annotations

import logging
import mimetypes

import bleach
from django.conf import settings
from rest_framework.exceptions import ValidationError

from practice.models import Document
from practice.services.scope import ensure_patient_access, scoped_by_patient

logger = logging.getLogger(__name__)

# leading bytes expected for types we can recognise; other allowed types pass on extension alone
SIGNATURES = {
    'application/pdf': (b'%PDF-',),
    'image/png': (b'\x89PNG',),
    'image/jpeg': (b'\xff\xd8\xff',),
    'image/gif': (b'GIF87a', b'GIF89a'),
    'image/webp': (b'RIFF',),
}


def format_document(doc: Document) -> dict:
    return {
        'id': doc.id,
        'patientId': doc.patient_id,
        'visitId': doc.visit_id,
        'fileName': doc.file_name,
        'mimeType': doc.mime_type or None,
        'fileSize': doc.file_size,
        'category': doc.category,
        'description': doc.description,
        'hasFile': bool(doc.file),
        'uploadedBy': doc.uploaded_by_id,
        'createdAt': doc.created_at.isoformat() if doc.created_at else None,
        'updatedAt': doc.updated_at.isoformat() if doc.updated_at else None,
    }


def list_documents(user, *, patient_id=None, category=None, visit_id=None):
    qs = scoped_by_patient(user, Document.objects.all())
    if patient_id:
        qs = qs.filter(patient_id=patient_id)
    if visit_id:
        qs = qs.filter(visit_id=visit_id)
    if category:
        qs = qs.filter(category=category)
    return qs.order_by('-created_at', '-id')


def _allowed_type(content_type: str) -> bool:
    return bool(content_type) and any(content_type.startswith(prefix) for prefix in settings.ALLOWED_UPLOAD_TYPES)


def check_upload(upload) -> str:
    """Validate size, declared type, extension and leading bytes; return the MIME type to store."""
    max_bytes = settings.UPLOAD_MAX_MB * 1024 * 1024
    if upload.size > max_bytes:
        raise ValidationError({'file': f'File exceeds {settings.UPLOAD_MAX_MB} MB'})
    content_type = (getattr(upload, 'content_type', '') or '').lower()
    if not _allowed_type(content_type):
        raise ValidationError({'file': f'File type {content_type or "unknown"} is not allowed'})
    guessed, _ = mimetypes.guess_type(upload.name or '')
    if not _allowed_type(guessed or ''):
        raise ValidationError({'file': f'File extension of {upload.name} is not allowed'})
    signatures = SIGNATURES.get(guessed)
    if signatures:
        head = upload.read(16)
        upload.seek(0)
        if not head.startswith(signatures):
            raise ValidationError({'file': f'File content does not look like {guessed}'})
    return guessed


def create_document(user, patient, *, upload=None, visit=None, file_name='', category='other',
                    description='') -> Document:
    ensure_patient_access(user, patient)
    if visit is not None and visit.patient_id != patient.pk:
        raise ValidationError({'visitId': 'Visit belongs to another patient'})
    doc = Document(
        patient=patient, visit=visit, category=category, uploaded_by=user,
        description=bleach.clean(description or '', tags=[], strip=True),
    )
    if upload is not None:
        mime_type = check_upload(upload)
        doc.file = upload
        doc.file_name = file_name or upload.name
        doc.mime_type = mime_type
        doc.file_size = upload.size
    elif not file_name:
        raise ValidationError({'file': 'Provide a file or a file name'})
    else:
        doc.file_name = file_name
    doc.save()
    logger.info('Document %s added to patient %s', doc.pk, patient.pk)
    return doc


def update_document(doc: Document, data: dict) -> Document:
    if data.get('file_name'):
        doc.file_name = data['file_name']
    if data.get('category'):
        doc.category = data['category']
    if 'description' in data and data['description'] is not None:
        doc.description = bleach.clean(data['description'], tags=[], strip=True)
    doc.save()
    return doc


def delete_document(doc: Document) -> None:
    if doc.file:
        doc.file.delete(save=False)
    doc.delete()
