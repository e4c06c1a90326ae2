"""
Authentication endpoints.

Login, token refresh and the password-reset pair are public; everything
else needs a valid bearer token or API key.  These views live apart from
``practice.authentication`` so that DRF can import the authentication
classes from settings without pulling in the view layer.
"""
from __future__ import annotations

from rest_framework.decorators import api_view, authentication_classes, permission_classes, throttle_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework_simplejwt.exceptions import InvalidToken, TokenError
from rest_framework_simplejwt.serializers import TokenRefreshSerializer

from practice.authentication import PublicAuthentication
from practice.models import Role
from practice.permissions import IsStaffRole
from practice.responses import created, ok
from practice.serializers.auth import (
    ApiKeyCreateSerializer,
    ChangePasswordSerializer,
    ForgotPasswordSerializer,
    LoginSerializer,
    LogoutSerializer,
    ResetPasswordSerializer,
)
from practice.services import api_keys
from practice.services import auth as auth_service
from practice.services.audit import log_action
from practice.services.users import format_user
from practice.throttles import LoginRateThrottle, PasswordResetRateThrottle


def _profile(user) -> dict:
    data = format_user(user, include_permissions=True)
    record = getattr(user, 'patient_record', None) if user.role_name == Role.PATIENT else None
    data['patientId'] = record.pk if record else None
    if user.theme_id:
        data['theme'] = {'id': user.theme.id, 'name': user.theme.name, 'colors': user.theme.colors}
    return data


# ---------------------------------------------------------------------
# Login / tokens
# ---------------------------------------------------------------------
@api_view(['POST'])
@authentication_classes([PublicAuthentication])
@permission_classes([AllowAny])
@throttle_classes([LoginRateThrottle])
def login_view(request):
    """
    Username/password login.  Portal patients may give their e-mail as
    ``username``.  Answers 401 for bad credentials and 423 while the
    account is locked.
    """
    s = LoginSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    user = auth_service.authenticate_credentials(vd['username'], vd['password'], request=request)
    tokens = auth_service.issue_tokens(user, remember_me=vd['rememberMe'])
    return ok({**tokens, 'user': _profile(user)})


@api_view(['POST'])
@authentication_classes([PublicAuthentication])
@permission_classes([AllowAny])
def refresh_view(request):
    """Exchange a refresh token for a new pair; the old refresh token is blacklisted."""
    s = TokenRefreshSerializer(data=request.data)
    try:
        s.is_valid(raise_exception=True)
    except TokenError as e:
        raise InvalidToken(e.args[0])
    return ok(s.validated_data)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def logout_view(request):
    s = LogoutSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    if s.validated_data['allDevices']:
        count = auth_service.revoke_all_tokens(request.user)
    else:
        count = auth_service.blacklist_refresh(request.user, s.validated_data['refresh'])
    log_action(user=request.user, action='LOGOUT', resource_type='auth', resource_id=request.user.pk,
               changes={'revoked': count}, request=request)
    return ok({'revoked': count})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def me_view(request):
    return ok(_profile(request.user))


# ---------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------
@api_view(['POST'])
@permission_classes([IsAuthenticated])
def change_password_view(request):
    s = ChangePasswordSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    auth_service.change_password(request.user, current_password=s.validated_data['currentPassword'],
                                 new_password=s.validated_data['newPassword'])
    log_action(user=request.user, action='PASSWORD_CHANGE', resource_type='auth', resource_id=request.user.pk,
               request=request)
    return ok({'changed': True})


@api_view(['POST'])
@authentication_classes([PublicAuthentication])
@permission_classes([AllowAny])
@throttle_classes([PasswordResetRateThrottle])
def forgot_password_view(request):
    """Always answers 200 so callers cannot discover which e-mails exist."""
    s = ForgotPasswordSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    auth_service.request_password_reset(s.validated_data['email'], request=request)
    return ok({'message': 'If an account exists for this e-mail, a reset link has been sent.'})


@api_view(['POST'])
@authentication_classes([PublicAuthentication])
@permission_classes([AllowAny])
@throttle_classes([PasswordResetRateThrottle])
def reset_password_view(request):
    s = ResetPasswordSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    auth_service.reset_password(s.validated_data['token'], s.validated_data['newPassword'], request=request)
    return ok({'reset': True})


# ---------------------------------------------------------------------
# API keys
# ---------------------------------------------------------------------
@api_view(['GET', 'POST'])
@permission_classes([IsStaffRole])
def api_keys_view(request):
    if request.method == 'GET':
        return ok([api_keys.format_api_key(k) for k in api_keys.list_keys(request.user)])
    s = ApiKeyCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    key, raw = api_keys.generate_api_key(request.user, name=s.validated_data['name'],
                                         expires_at=s.validated_data.get('expiresAt'))
    log_action(user=request.user, action='API_KEY_CREATE', resource_type='api_key', resource_id=key.pk,
               changes={'name': key.name, 'prefix': key.prefix}, request=request)
    # the plain key is only ever returned here
    return created({**api_keys.format_api_key(key), 'key': raw})


@api_view(['DELETE'])
@permission_classes([IsStaffRole])
def api_key_detail_view(request, pk: int):
    key = api_keys.revoke_key(request.user, pk)
    log_action(user=request.user, action='API_KEY_REVOKE', resource_type='api_key', resource_id=key.pk,
               request=request)
    return ok({'revoked': True})
