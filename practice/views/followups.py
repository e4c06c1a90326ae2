"""
AI-assisted follow-up e-mails and the provider configuration they use.
"""
from __future__ import annotations

from rest_framework.decorators import api_view, permission_classes

from practice.permissions import IsStaffRole, method_permissions, permission_required
from practice.responses import ok
from practice.serializers.followups import AIConfigSerializer, GenerateFollowupSerializer, SendFollowupSerializer
from practice.services import ai_provider, followups
from practice.services.audit import log_action
from practice.services.email import format_email_log
from practice.views.visits import load_visit


@api_view(['POST'])
@permission_classes([IsStaffRole, permission_required('followups.generate')])
def followup_generate_view(request):
    s = GenerateFollowupSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    visit = load_visit(request.user, vd['visitId'])
    result = followups.generate_followup(
        visit, language=vd['language'], tone=vd['tone'], include_next_steps=vd['includeNextSteps'],
        include_next_appointment=vd['includeNextAppointment'],
    )
    log_action(user=request.user, action='FOLLOWUP_GENERATE', resource_type='visit', resource_id=visit.pk,
               changes={'provider': result['metadata']['provider'], 'language': vd['language']}, request=request)
    return ok(result)


@api_view(['POST'])
@permission_classes([IsStaffRole, permission_required('followups.send')])
def followup_send_view(request):
    s = SendFollowupSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    visit = load_visit(request.user, vd['visitId'])
    log = followups.send_followup(visit, subject=vd['subject'], body_html=vd['bodyHtml'],
                                  body_text=vd['bodyText'], use_template=vd['useTemplate'], user=request.user)
    log_action(user=request.user, action='FOLLOWUP_SEND', resource_type='visit', resource_id=visit.pk,
               changes={'to': log.to_email}, request=request)
    return ok(format_email_log(log))


@api_view(['GET', 'PUT'])
@permission_classes([IsStaffRole, method_permissions(GET='followups.generate', PUT='system.settings')])
def ai_config_view(request):
    if request.method == 'GET':
        return ok({**ai_provider.get_configuration(), 'providers': ai_provider.list_providers()})
    s = AIConfigSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    config = ai_provider.save_configuration(s.validated_data['provider'], s.validated_data.get('model') or None)
    log_action(user=request.user, action='UPDATE', resource_type='ai_config', resource_id=config['provider'],
               changes={'provider': config['provider'], 'model': config['model']}, request=request)
    return ok(config)


@api_view(['GET'])
@permission_classes([IsStaffRole])
def ai_providers_view(request):
    return ok(ai_provider.list_providers())
