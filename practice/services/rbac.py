"""
Role and permission catalog management.

``PERMISSION_CATALOG`` lists every permission code the API checks; the
default role matrix below is what ``seed_rbac`` installs.  Seeding is
idempotent: existing rows are updated in place, never duplicated.
"""
from __future__ import annotations

import logging
from collections import OrderedDict

from django.db import transaction
from rest_framework.exceptions import ValidationError

from practice.exceptions import Conflict
from practice.models import Permission, Role

logger = logging.getLogger(__name__)

PERMISSION_CATALOG: dict[str, tuple[str, ...]] = OrderedDict([
    ('patients', ('create', 'read', 'update', 'delete')),
    ('visits', ('create', 'read', 'update', 'delete')),
    ('billing', ('create', 'read', 'update', 'delete')),
    ('users', ('create', 'read', 'update', 'delete')),
    ('documents', ('upload', 'read', 'update', 'delete', 'download')),
    ('recipes', ('create', 'read', 'update', 'delete')),
    ('measures', ('create', 'read', 'update', 'delete')),
    ('custom_fields', ('create', 'read', 'update', 'delete')),
    ('email_templates', ('create', 'read', 'update', 'delete')),
    ('followups', ('generate', 'send')),
    ('audit_logs', ('read',)),
    ('reports', ('view',)),
    ('system', ('settings',)),
])

ALL_CODES = [f"{res}.{act}" for res, actions in PERMISSION_CATALOG.items() for act in actions]

DEFAULT_ROLES: dict[str, dict] = {
    Role.ADMIN: {
        'description': 'Full access to every resource',
        'codes': ALL_CODES,
    },
    Role.DIETITIAN: {
        'description': 'Manages linked patients, visits, billing and content',
        'codes': [
            'patients.create', 'patients.read', 'patients.update',
            'visits.create', 'visits.read', 'visits.update', 'visits.delete',
            'billing.create', 'billing.read', 'billing.update',
            'documents.upload', 'documents.read', 'documents.update', 'documents.delete', 'documents.download',
            'recipes.create', 'recipes.read', 'recipes.update', 'recipes.delete',
            'measures.create', 'measures.read', 'measures.update',
            'custom_fields.read',
            'email_templates.read',
            'followups.generate', 'followups.send',
            'reports.view',
        ],
    },
    Role.ASSISTANT: {
        'description': 'Front desk: scheduling, patient records and billing',
        'codes': [
            'patients.create', 'patients.read', 'patients.update',
            'visits.create', 'visits.read', 'visits.update',
            'billing.create', 'billing.read', 'billing.update',
            'documents.upload', 'documents.read', 'documents.download',
            'recipes.read', 'measures.read', 'custom_fields.read', 'email_templates.read',
        ],
    },
    Role.VIEWER: {
        'description': 'Read-only access',
        'codes': [
            'patients.read', 'visits.read', 'billing.read', 'documents.read',
            'recipes.read', 'measures.read', 'custom_fields.read', 'reports.view',
        ],
    },
    Role.PATIENT: {
        'description': 'Patient portal access to their own record',
        'codes': [],
    },
}


def ensure_permissions() -> dict[str, Permission]:
    perms = {}
    for resource, actions in PERMISSION_CATALOG.items():
        for action in actions:
            code = f"{resource}.{action}"
            perm, _ = Permission.objects.update_or_create(
                code=code,
                defaults={'resource': resource, 'action': action,
                          'description': f"{action.capitalize()} {resource.replace('_', ' ')}"},
            )
            perms[code] = perm
    return perms


@transaction.atomic
def ensure_default_roles() -> dict[str, Role]:
    """Create the permission catalog and the built-in roles."""
    perms = ensure_permissions()
    roles = {}
    for name, info in DEFAULT_ROLES.items():
        role, created = Role.objects.get_or_create(
            name=name, defaults={'description': info['description'], 'is_system': True}
        )
        if created:
            role.permissions.set([perms[c] for c in info['codes']])
            logger.info('Created role %s with %d permissions', name, len(info['codes']))
        elif name == Role.ADMIN:
            role.permissions.set(perms.values())
        roles[name] = role
    return roles


def get_role(name: str) -> Role:
    role = Role.objects.filter(name=name).first()
    if role is None:
        role = ensure_default_roles().get(name)
    if role is None:
        raise ValidationError({'role': f"Unknown role '{name}'"})
    return role


def resolve_permissions(codes) -> list[Permission]:
    codes = list(dict.fromkeys(codes or []))
    found = {p.code: p for p in Permission.objects.filter(code__in=codes)}
    missing = [c for c in codes if c not in found]
    if missing:
        raise ValidationError({'permissions': [f"Unknown permission code: {c}" for c in missing]})
    return [found[c] for c in codes]


def create_role(*, name: str, description: str = '', permissions=None) -> Role:
    name = name.strip().upper()
    if Role.objects.filter(name=name).exists():
        raise Conflict(f"Role '{name}' already exists")
    perms = resolve_permissions(permissions)
    with transaction.atomic():
        role = Role.objects.create(name=name, description=description)
        role.permissions.set(perms)
    return role


def update_role(role: Role, *, name=None, description=None, is_active=None) -> Role:
    if name is not None:
        name = name.strip().upper()
        if name != role.name:
            if role.is_system:
                raise ValidationError({'name': 'System roles cannot be renamed'})
            if Role.objects.filter(name=name).exclude(pk=role.pk).exists():
                raise Conflict(f"Role '{name}' already exists")
            role.name = name
    if description is not None:
        role.description = description
    if is_active is not None:
        if role.name == Role.ADMIN and not is_active:
            raise ValidationError({'isActive': 'The ADMIN role cannot be deactivated'})
        role.is_active = is_active
    role.save()
    return role


def set_role_permissions(role: Role, codes) -> Role:
    if role.name == Role.ADMIN:
        raise ValidationError({'permissions': 'ADMIN always holds every permission'})
    role.permissions.set(resolve_permissions(codes))
    return role


def delete_role(role: Role) -> None:
    if role.is_system:
        raise ValidationError({'role': 'System roles cannot be deleted'})
    assigned = role.users.count()
    if assigned:
        raise Conflict(f"Role is assigned to {assigned} user(s)")
    role.delete()


def format_role(role: Role, include_permissions: bool = True) -> dict:
    data = {
        'id': role.id,
        'name': role.name,
        'description': role.description,
        'isActive': role.is_active,
        'isSystem': role.is_system,
        'userCount': role.users.count(),
    }
    if include_permissions:
        data['permissions'] = sorted(role.permissions.values_list('code', flat=True))
    return data


def permissions_by_resource() -> dict[str, list[dict]]:
    grouped: dict[str, list[dict]] = OrderedDict()
    for perm in Permission.objects.filter(is_active=True).order_by('resource', 'action'):
        grouped.setdefault(perm.resource, []).append(
            {'id': perm.id, 'code': perm.code, 'action': perm.action, 'description': perm.description}
        )
    return grouped
