"""
Practice-wide settings: themes, scheduled jobs, the audit trail and the
dashboard summary.
"""
from __future__ import annotations

from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated

from practice.models import AuditLog, ScheduledJob, Theme
from practice.permissions import IsStaffRole, method_permissions, permission_required
from practice.responses import created, get_object, ok, paginated
from practice.serializers.system import AuditQuerySerializer, JobUpdateSerializer, ThemeSerializer
from practice.serializers.users import ThemeSelectSerializer
from practice.services import dashboard, scheduler, themes
from practice.services.audit import format_audit, log_action
from practice.services.users import set_theme


# ---------------------------------------------------------------------
# Themes
# ---------------------------------------------------------------------
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, method_permissions(POST='system.settings')])
def themes_view(request):
    if request.method == 'GET':
        return ok([themes.format_theme(t) for t in Theme.objects.order_by('-is_default', 'name')])
    s = ThemeSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    theme = themes.save_theme(Theme(), s.validated_data, user=request.user)
    log_action(user=request.user, action='CREATE', resource_type='theme', resource_id=theme.pk,
               changes={'name': theme.name}, request=request)
    return created(themes.format_theme(theme))


@api_view(['GET', 'PUT', 'DELETE'])
@permission_classes([IsAuthenticated, method_permissions(PUT='system.settings', DELETE='system.settings')])
def theme_detail_view(request, pk: int):
    theme = get_object(Theme.objects.all(), pk, 'Theme')
    if request.method == 'GET':
        return ok(themes.format_theme(theme))
    if request.method == 'PUT':
        s = ThemeSerializer(data=request.data, partial=True)
        s.is_valid(raise_exception=True)
        theme = themes.save_theme(theme, s.validated_data)
        log_action(user=request.user, action='UPDATE', resource_type='theme', resource_id=theme.pk,
                   changes=s.validated_data, request=request)
        return ok(themes.format_theme(theme))
    themes.delete_theme(theme)
    log_action(user=request.user, action='DELETE', resource_type='theme', resource_id=pk, request=request)
    return ok({'deleted': True})


@api_view(['POST'])
@permission_classes([IsStaffRole, permission_required('system.settings')])
def theme_set_default_view(request, pk: int):
    theme = themes.set_default(get_object(Theme.objects.all(), pk, 'Theme'))
    log_action(user=request.user, action='SET_DEFAULT', resource_type='theme', resource_id=theme.pk,
               request=request)
    return ok(themes.format_theme(theme))


@api_view(['PUT'])
@permission_classes([IsAuthenticated])
def my_theme_view(request):
    s = ThemeSelectSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    user = set_theme(request.user, s.validated_data['themeId'])
    return ok({'themeId': user.theme_id})


# ---------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------
@api_view(['GET'])
@permission_classes([IsStaffRole, permission_required('system.settings')])
def jobs_view(request):
    return ok([scheduler.format_job(job) for job in ScheduledJob.objects.order_by('name')])


@api_view(['GET', 'PUT'])
@permission_classes([IsStaffRole, permission_required('system.settings')])
def job_detail_view(request, pk: int):
    job = get_object(ScheduledJob.objects.all(), pk, 'Job')
    if request.method == 'GET':
        return ok(scheduler.format_job(job))
    s = JobUpdateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    job = scheduler.update_job(job, cron=vd.get('cron'), is_enabled=vd.get('isEnabled'),
                               description=vd.get('description'))
    log_action(user=request.user, action='UPDATE', resource_type='scheduled_job', resource_id=job.pk,
               changes=vd, request=request)
    return ok(scheduler.format_job(job))


@api_view(['POST'])
@permission_classes([IsStaffRole, permission_required('system.settings')])
def job_run_view(request, pk: int):
    job = scheduler.run_job(get_object(ScheduledJob.objects.all(), pk, 'Job'))
    log_action(user=request.user, action='RUN', resource_type='scheduled_job', resource_id=job.pk,
               changes={'status': job.last_status}, request=request)
    return ok(scheduler.format_job(job))


# ---------------------------------------------------------------------
# Audit trail and dashboard
# ---------------------------------------------------------------------
@api_view(['GET'])
@permission_classes([IsStaffRole, permission_required('audit_logs.read')])
def audit_logs_view(request):
    q = AuditQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    vd = q.validated_data
    qs = AuditLog.objects.all()
    if vd.get('userId'):
        qs = qs.filter(user_id=vd['userId'])
    if vd.get('action'):
        qs = qs.filter(action=vd['action'].upper())
    if vd.get('resourceType'):
        qs = qs.filter(resource_type=vd['resourceType'])
    if vd.get('resourceId'):
        qs = qs.filter(resource_id=vd['resourceId'])
    if vd.get('status'):
        qs = qs.filter(status=vd['status'].upper())
    if vd.get('start'):
        qs = qs.filter(created_at__gte=vd['start'])
    if vd.get('end'):
        qs = qs.filter(created_at__lte=vd['end'])
    return paginated(qs.order_by('-created_at', '-id'), vd, format_audit)


@api_view(['GET'])
@permission_classes([IsStaffRole])
def dashboard_view(request):
    return ok(dashboard.summary(request.user))
