"""
Role and permission-code based access control.

A user holds one :class:`~practice.models.Role`; the role carries a set of
permission codes (``patients.read``, ``billing.create`` ...).  ``ADMIN``
passes every check.  The helpers below are usable from services, and the
factories build DRF permission classes for ``@permission_classes``::

    @permission_classes([method_permissions(GET='patients.read', POST='patients.create')])
"""
from __future__ import annotations

from rest_framework.permissions import BasePermission

from .models import Role


def _authenticated(user) -> bool:
    return bool(user and getattr(user, 'is_authenticated', False))


def is_admin(user) -> bool:
    return _authenticated(user) and getattr(user, 'role_name', None) == Role.ADMIN


def has_role(user, *names: str) -> bool:
    return _authenticated(user) and getattr(user, 'role_name', None) in names


def has_permission(user, code: str) -> bool:
    """Return whether ``user`` may perform ``code``; admins always may."""
    if not _authenticated(user):
        return False
    if is_admin(user):
        return True
    return code in getattr(user, 'permission_codes', frozenset())


def has_any_permission(user, codes) -> bool:
    return any(has_permission(user, c) for c in codes)


def has_all_permissions(user, codes) -> bool:
    return all(has_permission(user, c) for c in codes)


class HasPermissions(BasePermission):
    """Require every code in ``required`` (or any, when ``match_any``)."""
    required: tuple[str, ...] = ()
    match_any = False

    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        user = getattr(request, 'user', None)
        if not _authenticated(user):
            return False
        if self.match_any:
            return has_any_permission(user, self.required)
        return has_all_permissions(user, self.required)


def _build(base, name: str, **attrs):
    return type(name, (base,), attrs)


def permission_required(*codes: str) -> type[BasePermission]:
    return _build(HasPermissions, 'PermissionRequired', required=codes, match_any=False,
                  message=f"Missing permission: {', '.join(codes)}")


def any_permission_required(*codes: str) -> type[BasePermission]:
    return _build(HasPermissions, 'AnyPermissionRequired', required=codes, match_any=True,
                  message=f"Requires one of: {', '.join(codes)}")


class HasMethodPermission(BasePermission):
    """Pick the required code from the HTTP method; unlisted methods pass."""
    by_method: dict[str, str] = {}

    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        user = getattr(request, 'user', None)
        if not _authenticated(user):
            return False
        code = self.by_method.get(request.method)
        if code is None and request.method == 'HEAD':
            code = self.by_method.get('GET')
        if code is None:
            return True
        if not has_permission(user, code):
            self.message = f"Missing permission: {code}"
            return False
        return True


def method_permissions(**by_method: str) -> type[BasePermission]:
    return _build(HasMethodPermission, 'MethodPermissions', by_method=dict(by_method))


class HasRole(BasePermission):
    roles: tuple[str, ...] = ()

    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        return has_role(getattr(request, 'user', None), *self.roles)


def role_required(*names: str) -> type[BasePermission]:
    return _build(HasRole, 'RoleRequired', roles=names,
                  message=f"Requires role: {' or '.join(names)}")


IsAdminRole = role_required(Role.ADMIN)


class IsStaffRole(BasePermission):
    """Reject users without a role and PATIENT users (they use the portal)."""
    message = 'Staff access only'

    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        user = getattr(request, 'user', None)
        role = getattr(user, 'role_name', None)
        return _authenticated(user) and role is not None and role != Role.PATIENT


class IsPatientRole(BasePermission):
    """Allow access only to users with the patient role."""
    message = 'Patient portal only'

    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        return has_role(getattr(request, 'user', None), Role.PATIENT)
