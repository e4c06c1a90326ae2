"""
API key issuing and verification.

Keys look like ``diet_ak_<64 hex chars>``.  The plain key is returned once
at creation; only its SHA-256 digest is persisted and looked up.
"""
from __future__ import annotations

import hashlib
import logging
import secrets

from django.conf import settings
from django.db.models import F
from django.utils import timezone
from rest_framework.exceptions import AuthenticationFailed, NotFound

from practice.models import ApiKey

logger = logging.getLogger(__name__)


def hash_key(raw: str) -> str:
    return hashlib.sha256(raw.encode('utf-8')).hexdigest()


def generate_api_key(user, *, name: str, expires_at=None) -> tuple[ApiKey, str]:
    raw = f"{settings.API_KEY_PREFIX}{secrets.token_hex(32)}"
    key = ApiKey.objects.create(
        user=user, name=name, prefix=raw[:12], key_hash=hash_key(raw), expires_at=expires_at,
    )
    logger.info('API key %s issued to user %s', key.prefix, user.pk)
    return key, raw


def verify_api_key(raw: str) -> ApiKey:
    """Return the active key for ``raw`` or raise ``AuthenticationFailed``."""
    if not raw or not raw.startswith(settings.API_KEY_PREFIX):
        raise AuthenticationFailed('Invalid API key format')
    key = ApiKey.objects.select_related('user', 'user__role').filter(key_hash=hash_key(raw)).first()
    if key is None or not key.is_active:
        raise AuthenticationFailed('Invalid API key')
    now = timezone.now()
    if key.is_expired(now):
        raise AuthenticationFailed('API key has expired')
    if not key.user.is_active:
        raise AuthenticationFailed('User account is inactive')
    ApiKey.objects.filter(pk=key.pk).update(usage_count=F('usage_count') + 1, last_used_at=now)
    return key


def list_keys(user):
    return ApiKey.objects.filter(user=user).order_by('-created_at')


def revoke_key(user, key_id: int) -> ApiKey:
    key = ApiKey.objects.filter(pk=key_id, user=user).first()
    if key is None:
        raise NotFound('API key not found')
    key.is_active = False
    key.save(update_fields=['is_active'])
    return key


def format_api_key(key: ApiKey) -> dict:
    return {
        'id': key.id,
        'name': key.name,
        'prefix': key.prefix,
        'isActive': key.is_active,
        'expiresAt': key.expires_at.isoformat() if key.expires_at else None,
        'lastUsedAt': key.last_used_at.isoformat() if key.last_used_at else None,
        'usageCount': key.usage_count,
        'createdAt': key.created_at.isoformat() if key.created_at else None,
    }
