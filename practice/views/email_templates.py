from __future__ import annotations

from django.db.models import Q
from rest_framework.decorators import api_view, permission_classes

from practice.models import EmailLog, EmailTemplate
from practice.permissions import IsStaffRole, is_admin, method_permissions, permission_required
from practice.responses import created, get_object, ok, paginated
from practice.serializers.email_templates import (
    EmailLogQuerySerializer,
    PreviewSerializer,
    TemplateListQuerySerializer,
    TemplateSerializer,
)
from practice.services import templates as template_service
from practice.services.audit import log_action
from practice.services.email import format_email_log
from practice.services.scope import scoped_patients


@api_view(['GET', 'POST'])
@permission_classes([IsStaffRole, method_permissions(GET='email_templates.read', POST='email_templates.create')])
def templates_view(request):
    if request.method == 'GET':
        q = TemplateListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        qs = EmailTemplate.objects.all()
        if q.validated_data.get('category'):
            qs = qs.filter(category=q.validated_data['category'])
        if q.validated_data.get('isActive') is not None:
            qs = qs.filter(is_active=q.validated_data['isActive'])
        return ok([template_service.format_template(t) for t in qs.order_by('category', 'name')])

    s = TemplateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    template = template_service.save_template(EmailTemplate(), s.validated_data, user=request.user)
    log_action(user=request.user, action='CREATE', resource_type='email_template', resource_id=template.pk,
               changes={'slug': template.slug}, request=request)
    return created(template_service.format_template(template))


@api_view(['GET'])
@permission_classes([IsStaffRole, permission_required('email_templates.read')])
def template_variables_view(request):
    return ok({'categories': template_service.CATEGORY_VARIABLES, 'sample': template_service.SAMPLE_DATA})


@api_view(['GET', 'PUT', 'DELETE'])
@permission_classes([IsStaffRole, method_permissions(GET='email_templates.read', PUT='email_templates.update',
                                                     DELETE='email_templates.delete')])
def template_detail_view(request, pk: int):
    template = get_object(EmailTemplate.objects.all(), pk, 'Template')
    if request.method == 'GET':
        return ok(template_service.format_template(template))
    if request.method == 'PUT':
        s = TemplateSerializer(data=request.data, partial=True)
        s.is_valid(raise_exception=True)
        template = template_service.save_template(template, s.validated_data)
        log_action(user=request.user, action='UPDATE', resource_type='email_template', resource_id=template.pk,
                   changes={'fields': sorted(request.data.keys())}, request=request)
        return ok(template_service.format_template(template))
    slug = template.slug
    template_service.delete_template(template)
    log_action(user=request.user, action='DELETE', resource_type='email_template', resource_id=pk,
               changes={'slug': slug}, request=request)
    return ok({'deleted': True})


@api_view(['POST'])
@permission_classes([IsStaffRole, permission_required('email_templates.read')])
def template_preview_view(request, pk: int):
    """Render the template with sample data, overridden by ``variables``."""
    template = get_object(EmailTemplate.objects.all(), pk, 'Template')
    s = PreviewSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    return ok(template_service.preview(template, s.validated_data['variables']))


@api_view(['GET'])
@permission_classes([IsStaffRole, permission_required('email_templates.read')])
def email_logs_view(request):
    q = EmailLogQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    vd = q.validated_data
    qs = EmailLog.objects.all()
    if not is_admin(request.user):
        qs = qs.filter(Q(patient__in=scoped_patients(request.user)) | Q(sent_by=request.user))
    if vd.get('patientId'):
        qs = qs.filter(patient_id=vd['patientId'])
    if vd.get('emailType'):
        qs = qs.filter(email_type=vd['emailType'])
    if vd.get('status'):
        qs = qs.filter(status=vd['status'])
    if vd.get('start'):
        qs = qs.filter(sent_at__gte=vd['start'])
    if vd.get('end'):
        qs = qs.filter(sent_at__lte=vd['end'])
    return paginated(qs.order_by('-sent_at', '-id'), vd, format_email_log)
