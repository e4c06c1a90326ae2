"""
Credential checks, account lockout, JWT issuing and password resets.

Lockout: each wrong password increments ``failed_login_attempts``; when
the counter reaches ``MAX_LOGIN_ATTEMPTS`` the account is locked for
``LOCKOUT_DURATION_MINUTES``.  While locked, login answers 423 without
looking at the password.  A successful login clears both fields.
"""
from __future__ import annotations

import hashlib
import logging
import math
import secrets
from datetime import timedelta

from django.conf import settings
from django.contrib.auth import get_user_model
from django.contrib.auth.password_validation import validate_password
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db.models import F
from django.utils import timezone
from rest_framework.exceptions import AuthenticationFailed, ValidationError
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.token_blacklist.models import BlacklistedToken, OutstandingToken
from rest_framework_simplejwt.tokens import RefreshToken

from practice.exceptions import AccountLocked
from practice.models import AuditLog, Role
from practice.services.audit import log_action
from practice.services.email import send_templated

logger = logging.getLogger(__name__)

User = get_user_model()


def minutes_remaining(user, now=None) -> int:
    now = now or timezone.now()
    if not user.locked_until or user.locked_until <= now:
        return 0
    return max(1, math.ceil((user.locked_until - now).total_seconds() / 60))


def find_login_user(identifier: str):
    """Staff log in with their username; portal patients may use their e-mail."""
    qs = User.objects.select_related('role')
    user = qs.filter(username=identifier).first()
    if user is None and '@' in identifier:
        user = qs.filter(email__iexact=identifier, role__name=Role.PATIENT).first()
    return user


def register_failed_attempt(user, now=None) -> None:
    now = now or timezone.now()
    User.objects.filter(pk=user.pk).update(failed_login_attempts=F('failed_login_attempts') + 1)
    user.refresh_from_db(fields=['failed_login_attempts', 'locked_until'])
    if user.failed_login_attempts >= settings.MAX_LOGIN_ATTEMPTS:
        user.locked_until = now + timedelta(minutes=settings.LOCKOUT_DURATION_MINUTES)
        user.save(update_fields=['locked_until'])
        logger.warning('User %s locked until %s after %d failed attempts',
                       user.username, user.locked_until, user.failed_login_attempts)


def authenticate_credentials(identifier: str, password: str, *, request=None):
    """Return the user for valid credentials; raise 401 or 423 otherwise."""
    user = find_login_user(identifier)
    if user is None:
        log_action(user=None, action='LOGIN_FAILED', resource_type='auth',
                   changes={'username': identifier, 'reason': 'unknown_user'},
                   request=request, status=AuditLog.FAILURE)
        raise AuthenticationFailed('Invalid credentials')

    now = timezone.now()
    if user.is_locked(now):
        raise AccountLocked(minutes_remaining(user, now))

    if not user.is_active:
        raise AuthenticationFailed('Account is inactive')

    if not user.check_password(password):
        register_failed_attempt(user, now)
        log_action(user=None, action='LOGIN_FAILED', resource_type='auth', resource_id=user.pk,
                   changes={'username': user.username, 'reason': 'bad_password',
                            'attempts': user.failed_login_attempts},
                   request=request, status=AuditLog.FAILURE)
        raise AuthenticationFailed('Invalid credentials')

    user.failed_login_attempts = 0
    user.locked_until = None
    user.last_login = now
    user.save(update_fields=['failed_login_attempts', 'locked_until', 'last_login'])
    log_action(user=user, action='LOGIN', resource_type='auth', resource_id=user.pk, request=request)
    return user


def issue_tokens(user, *, remember_me: bool = False) -> dict:
    refresh = RefreshToken.for_user(user)
    if remember_me:
        refresh.set_exp(lifetime=timedelta(days=settings.JWT_REMEMBER_ME_DAYS))
    refresh['role'] = user.role_name
    refresh['permissions'] = ['*'] if user.is_admin else sorted(user.permission_codes)
    access = refresh.access_token
    return {
        'access': str(access),
        'refresh': str(refresh),
        'expiresIn': int(settings.SIMPLE_JWT['ACCESS_TOKEN_LIFETIME'].total_seconds()),
    }


def blacklist_refresh(user, raw_token: str) -> int:
    try:
        token = RefreshToken(raw_token)
    except TokenError as e:
        raise ValidationError({'refresh': str(e)})
    if str(token.get('user_id')) != str(user.pk):
        raise ValidationError({'refresh': 'Token does not belong to the current user'})
    token.blacklist()
    return 1


def revoke_all_tokens(user) -> int:
    count = 0
    for token in OutstandingToken.objects.filter(user=user):
        _, created = BlacklistedToken.objects.get_or_create(token=token)
        count += int(created)
    return count


def _set_password(user, password: str) -> None:
    try:
        validate_password(password, user)
    except DjangoValidationError as e:
        raise ValidationError({'newPassword': e.messages})
    user.set_password(password)


def change_password(user, *, current_password: str, new_password: str) -> None:
    if not user.check_password(current_password):
        raise ValidationError({'currentPassword': 'Current password is incorrect'})
    if current_password == new_password:
        raise ValidationError({'newPassword': 'New password must differ from the current one'})
    _set_password(user, new_password)
    user.save(update_fields=['password'])


def _digest(token: str) -> str:
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def request_password_reset(email: str, *, request=None) -> str | None:
    """Start a reset for ``email``.  Returns the raw token, or None when no
    active account matches; callers answer identically in both cases."""
    user = User.objects.filter(email__iexact=email, is_active=True).first()
    if user is None:
        logger.info('Password reset requested for unknown e-mail')
        return None
    token = secrets.token_hex(32)
    ttl = settings.PASSWORD_RESET_TTL_MINUTES
    user.password_reset_token = _digest(token)
    user.password_reset_expires_at = timezone.now() + timedelta(minutes=ttl)
    user.save(update_fields=['password_reset_token', 'password_reset_expires_at'])

    send_templated(
        'password_reset',
        {
            'user_name': user.get_display_name(),
            'reset_link': f"{settings.FRONTEND_URL}/reset-password?token={token}",
            'expires_minutes': ttl,
            'practice_name': 'NutriVault',
        },
        to=user.email,
        fallback={
            'subject': 'Reset your password',
            'body_text': 'Hello {{user_name}},\n\nReset your password here: {{reset_link}}\n'
                         'The link expires in {{expires_minutes}} minutes.',
        },
        fail_silently=True,
    )
    log_action(user=user, action='PASSWORD_RESET_REQUEST', resource_type='auth', resource_id=user.pk, request=request)
    return token


def reset_password(token: str, new_password: str, *, request=None):
    user = User.objects.filter(
        password_reset_token=_digest(token or ''),
        password_reset_expires_at__gt=timezone.now(),
    ).first()
    if user is None:
        raise ValidationError({'token': 'Invalid or expired reset token'})
    _set_password(user, new_password)
    user.password_reset_token = None
    user.password_reset_expires_at = None
    user.failed_login_attempts = 0
    user.locked_until = None
    user.save()
    revoked = revoke_all_tokens(user)
    log_action(user=user, action='PASSWORD_RESET', resource_type='auth', resource_id=user.pk,
               changes={'revokedTokens': revoked}, request=request)
    return user


def purge_expired_reset_tokens(now=None) -> int:
    now = now or timezone.now()
    return User.objects.filter(password_reset_expires_at__lte=now).update(
        password_reset_token=None, password_reset_expires_at=None,
    )
