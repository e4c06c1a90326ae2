"""
API error types and the project-wide DRF exception handler.

Every error leaves the API as::

    {"ok": false, "error": {"code": "...", "message": "...", "details": {...}}}
"""
import logging

from django.core.exceptions import PermissionDenied as DjangoPermissionDenied
from django.core.exceptions import ValidationError as DjangoValidationError
from django.http import Http404
from rest_framework import exceptions, status
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)


class Conflict(exceptions.APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Resource conflict.'
    default_code = 'conflict'


class AccountLocked(exceptions.APIException):
    status_code = status.HTTP_423_LOCKED
    default_detail = 'Account is locked.'
    default_code = 'account_locked'

    def __init__(self, minutes_remaining: int, detail=None, code=None):
        detail = detail or (
            f'Account is locked due to too many failed login attempts. '
            f'Try again in {minutes_remaining} minute(s).'
        )
        super().__init__(detail, code)
        self.extra = {'minutesRemaining': minutes_remaining}


class UpstreamError(exceptions.APIException):
    """A third-party provider (LLM, SMTP) failed."""
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = 'Upstream service error.'
    default_code = 'upstream_error'


STATUS_CODES = {
    400: 'validation_error',
    401: 'authentication_failed',
    403: 'permission_denied',
    404: 'not_found',
    405: 'method_not_allowed',
    409: 'conflict',
    415: 'unsupported_media_type',
    423: 'account_locked',
    429: 'throttled',
    502: 'upstream_error',
}


def _message_from(data) -> str:
    if isinstance(data, dict):
        if 'detail' in data:
            return str(data['detail'])
        for key, value in data.items():
            first = value[0] if isinstance(value, list) and value else value
            return f"{key}: {first}" if key != 'non_field_errors' else str(first)
        return 'Invalid request.'
    if isinstance(data, list) and data:
        return str(data[0])
    return str(data)


def api_exception_handler(exc, context):
    if isinstance(exc, DjangoValidationError):
        detail = exc.message_dict if hasattr(exc, 'error_dict') else exc.messages
        exc = exceptions.ValidationError(detail)
    elif isinstance(exc, Http404):
        exc = exceptions.NotFound(str(exc) or None)
    elif isinstance(exc, DjangoPermissionDenied):
        exc = exceptions.PermissionDenied(str(exc) or None)

    resp = drf_exception_handler(exc, context)
    if resp is None:
        view = context.get('view')
        logger.exception('Unhandled error in %s', view.__class__.__name__ if view else 'view', exc_info=exc)
        return Response(
            {'ok': False, 'error': {'code': 'server_error', 'message': 'Internal server error'}},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    code = getattr(exc, 'default_code', None) if isinstance(exc, exceptions.APIException) else None
    if resp.status_code == 401 and isinstance(exc, exceptions.NotAuthenticated):
        code = 'not_authenticated'
    elif resp.status_code in STATUS_CODES and code not in ('not_authenticated', 'account_locked', 'conflict'):
        code = STATUS_CODES[resp.status_code]
    code = code or 'api_error'

    error = {'code': code, 'message': _message_from(resp.data)}
    if isinstance(exc, exceptions.ValidationError) and isinstance(resp.data, (dict, list)):
        error['details'] = resp.data
    extra = getattr(exc, 'extra', None)
    if extra:
        error.update(extra)
    response = Response({'ok': False, 'error': error}, status=resp.status_code)
    for header in ('WWW-Authenticate', 'Retry-After'):
        if header in resp:
            response[header] = resp[header]
    return response
