from __future__ import annotations

import re

from django.db import transaction
from rest_framework.exceptions import ValidationError

from practice.exceptions import Conflict
from practice.models import Theme

COLOR_RE = re.compile(r'^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6}|[0-9a-fA-F]{8})$')

DEFAULT_THEME = {
    'name': 'NutriVault',
    'description': 'Default green palette',
    'colors': {
        'primary': '#2e7d32',
        'secondary': '#558b2f',
        'background': '#ffffff',
        'surface': '#f5f5f5',
        'text': '#212121',
        'accent': '#ff8f00',
        'danger': '#c62828',
    },
}


def format_theme(theme: Theme) -> dict:
    return {
        'id': theme.id,
        'name': theme.name,
        'description': theme.description,
        'colors': theme.colors or {},
        'isDefault': theme.is_default,
        'isSystem': theme.is_system,
        'createdAt': theme.created_at.isoformat() if theme.created_at else None,
    }


def _clean_colors(colors) -> dict:
    if not isinstance(colors, dict) or not colors:
        raise ValidationError({'colors': 'Provide a non-empty map of colour names to hex values'})
    for key, value in colors.items():
        if not isinstance(value, str) or not COLOR_RE.match(value):
            raise ValidationError({'colors': f'{key}: {value!r} is not a hex colour'})
    return dict(colors)


def save_theme(theme: Theme, data: dict, *, user=None) -> Theme:
    if theme.pk is not None and theme.is_system:
        raise ValidationError({'theme': 'System themes cannot be modified'})
    if data.get('name'):
        if Theme.objects.filter(name__iexact=data['name']).exclude(pk=theme.pk).exists():
            raise Conflict(f"Theme '{data['name']}' already exists")
        theme.name = data['name']
    if 'description' in data and data['description'] is not None:
        theme.description = data['description']
    if 'colors' in data:
        theme.colors = _clean_colors(data['colors'])
    if theme.pk is None:
        theme.created_by = user
    theme.save()
    return theme


def delete_theme(theme: Theme) -> None:
    if theme.is_system:
        raise ValidationError({'theme': 'System themes cannot be deleted'})
    if theme.is_default:
        raise ValidationError({'theme': 'The default theme cannot be deleted'})
    theme.delete()


@transaction.atomic
def set_default(theme: Theme) -> Theme:
    Theme.objects.exclude(pk=theme.pk).filter(is_default=True).update(is_default=False)
    theme.is_default = True
    theme.save(update_fields=['is_default', 'updated_at'])
    return theme


def default_theme() -> Theme | None:
    return Theme.objects.filter(is_default=True).first()


def ensure_default_theme() -> bool:
    theme, created = Theme.objects.get_or_create(
        name=DEFAULT_THEME['name'],
        defaults={**DEFAULT_THEME, 'is_system': True},
    )
    if not Theme.objects.filter(is_default=True).exists():
        set_default(theme)
    return created
