from typing import Optional, Any, Dict

from practice.models import AuditLog


def client_ip(request) -> Optional[str]:
    if request is None:
        return None
    forwarded = request.META.get('HTTP_X_FORWARDED_FOR', '')
    if forwarded:
        return forwarded.split(',')[0].strip() or None
    return request.META.get('REMOTE_ADDR') or None


def log_action(*, user, action: str, resource_type: Optional[str] = None, resource_id=None,
               changes: Optional[Dict[str, Any]] = None, request=None,
               status: str = AuditLog.SUCCESS) -> AuditLog:
    authenticated = bool(user is not None and getattr(user, 'is_authenticated', False) and getattr(user, 'pk', None))
    return AuditLog.objects.create(
        user=user if authenticated else None,
        username=getattr(user, 'username', '') if authenticated else (changes or {}).get('username', ''),
        action=action,
        resource_type=resource_type or '',
        resource_id='' if resource_id is None else str(resource_id),
        changes=changes or {},
        ip_address=client_ip(request),
        user_agent=(request.META.get('HTTP_USER_AGENT', '')[:255] if request is not None else ''),
        status=status,
    )


def format_audit(log: AuditLog) -> dict:
    return {
        'id': log.id,
        'userId': log.user_id,
        'username': log.username,
        'action': log.action,
        'resourceType': log.resource_type,
        'resourceId': log.resource_id or None,
        'changes': log.changes,
        'ipAddress': log.ip_address,
        'userAgent': log.user_agent,
        'status': log.status,
        'createdAt': log.created_at.isoformat() if log.created_at else None,
    }
