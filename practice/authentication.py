"""
DRF authentication backends.

``JWTAuthentication`` reads ``Authorization: Bearer <access>``;
``ApiKeyAuthentication`` reads ``X-API-Key``.  Both live here, apart from
any view, so DRF can import them while loading settings without circular
imports.
"""
from __future__ import annotations

from django.conf import settings
from rest_framework import authentication
from rest_framework.exceptions import AuthenticationFailed
from rest_framework_simplejwt import authentication as jwt_authentication
from rest_framework_simplejwt.exceptions import InvalidToken
from rest_framework_simplejwt.settings import api_settings

from .models import User


class JWTAuthentication(jwt_authentication.JWTAuthentication):
    """Bearer JWT authentication that loads the role with the user."""

    def get_user(self, validated_token):
        try:
            user_id = validated_token[api_settings.USER_ID_CLAIM]
        except KeyError:
            raise InvalidToken('Token contained no recognizable user identification')

        user = User.objects.select_related('role').filter(**{api_settings.USER_ID_FIELD: user_id}).first()
        if user is None:
            raise AuthenticationFailed('User not found', code='user_not_found')
        if not user.is_active:
            raise AuthenticationFailed('User is inactive', code='user_inactive')
        return user


class ApiKeyAuthentication(authentication.BaseAuthentication):
    """Authenticate integrations with a ``diet_ak_...`` key."""

    def authenticate(self, request):
        raw = request.META.get(settings.API_KEY_HEADER)
        if not raw:
            return None
        from .services.api_keys import verify_api_key

        key = verify_api_key(raw.strip())
        return key.user, key

    def authenticate_header(self, request):
        return 'X-API-Key'


class PublicAuthentication(authentication.BaseAuthentication):
    """
    For login, refresh and password reset: never authenticates, but keeps
    a ``WWW-Authenticate`` challenge so DRF answers failed credentials
    with 401 instead of 403.
    """

    def authenticate(self, request):
        return None

    def authenticate_header(self, request):
        return 'Bearer'
