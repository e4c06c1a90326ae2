from __future__ import annotations

from django.contrib.auth import get_user_model
from django.contrib.auth.password_validation import validate_password
from django.core.exceptions import ValidationError as DjangoValidationError
from rest_framework.exceptions import ValidationError

from practice.exceptions import Conflict
from practice.models import Role, Theme
from practice.services.rbac import get_role

User = get_user_model()


def format_user(user, *, include_permissions: bool = False) -> dict:
    data = {
        'id': user.id,
        'username': user.username,
        'email': user.email,
        'firstName': user.first_name,
        'lastName': user.last_name,
        'name': user.get_display_name(),
        'phone': user.phone,
        'role': user.role_name,
        'isActive': user.is_active,
        'isLocked': user.is_locked(),
        'failedLoginAttempts': user.failed_login_attempts,
        'lastLogin': user.last_login.isoformat() if user.last_login else None,
        'themeId': user.theme_id,
        'createdAt': user.date_joined.isoformat() if user.date_joined else None,
    }
    if include_permissions:
        data['permissions'] = sorted(user.permission_codes) if user.role_name != Role.ADMIN else ['*']
    return data


def check_password_strength(password: str, user=None) -> None:
    try:
        validate_password(password, user)
    except DjangoValidationError as e:
        raise ValidationError({'password': e.messages})


def create_user(*, username: str, password: str, email: str = '', role: str = Role.DIETITIAN,
                first_name: str = '', last_name: str = '', phone: str = '') -> User:
    if User.objects.filter(username__iexact=username).exists():
        raise Conflict('Username already exists')
    if email and User.objects.filter(email__iexact=email).exists():
        raise Conflict('Email already in use')
    role_obj = get_role(role)
    candidate = User(username=username, email=email, first_name=first_name, last_name=last_name)
    check_password_strength(password, candidate)
    user = User.objects.create_user(
        username=username, password=password, email=email,
        first_name=first_name, last_name=last_name, phone=phone, role=role_obj,
    )
    return user


def update_user(user, *, acting_user, **fields) -> User:
    if 'email' in fields and fields['email'] and \
            User.objects.filter(email__iexact=fields['email']).exclude(pk=user.pk).exists():
        raise Conflict('Email already in use')
    if 'role' in fields and fields['role'] is not None:
        if user.pk == acting_user.pk and fields['role'] != user.role_name:
            raise ValidationError({'role': 'You cannot change your own role'})
        user.role = get_role(fields.pop('role'))
    fields.pop('role', None)
    for attr in ('email', 'first_name', 'last_name', 'phone'):
        if attr in fields and fields[attr] is not None:
            setattr(user, attr, fields[attr])
    if fields.get('password'):
        check_password_strength(fields['password'], user)
        user.set_password(fields['password'])
    user.save()
    return user


def set_active(user, active: bool, *, acting_user) -> User:
    if user.pk == acting_user.pk and not active:
        raise ValidationError({'isActive': 'You cannot deactivate your own account'})
    user.is_active = active
    user.save(update_fields=['is_active'])
    return user


def unlock(user) -> User:
    user.failed_login_attempts = 0
    user.locked_until = None
    user.save(update_fields=['failed_login_attempts', 'locked_until'])
    return user


def set_theme(user, theme_id) -> User:
    theme = None
    if theme_id is not None:
        theme = Theme.objects.filter(pk=theme_id).first()
        if theme is None:
            raise ValidationError({'themeId': 'Unknown theme'})
    user.theme = theme
    user.save(update_fields=['theme'])
    return user


def list_dietitians():
    return User.objects.filter(role__name=Role.DIETITIAN, is_active=True).select_related('role').order_by('last_name', 'first_name')
