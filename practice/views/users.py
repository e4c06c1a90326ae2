"""
Staff user administration and role management.

User CRUD is gated by the ``users.*`` codes; roles and the permission
catalog are ADMIN only.
"""
from __future__ import annotations

from django.contrib.auth import get_user_model
from django.db.models import Q
from rest_framework.decorators import api_view, permission_classes

from practice.models import Role
from practice.permissions import IsAdminRole, IsStaffRole, method_permissions, permission_required
from practice.responses import created, get_object, ok, paginated
from practice.serializers.users import (
    ActiveToggleSerializer,
    RoleCreateSerializer,
    RolePermissionsSerializer,
    RoleUpdateSerializer,
    UserCreateSerializer,
    UserListQuerySerializer,
    UserUpdateSerializer,
)
from practice.services import rbac
from practice.services import users as user_service
from practice.services.audit import log_action

User = get_user_model()


@api_view(['GET', 'POST'])
@permission_classes([IsStaffRole, method_permissions(GET='users.read', POST='users.create')])
def users_view(request):
    if request.method == 'GET':
        q = UserListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        vd = q.validated_data
        qs = User.objects.select_related('role').order_by('username')
        if vd.get('q'):
            qs = qs.filter(Q(username__icontains=vd['q']) | Q(email__icontains=vd['q'])
                           | Q(first_name__icontains=vd['q']) | Q(last_name__icontains=vd['q']))
        if vd.get('role'):
            qs = qs.filter(role__name=vd['role'])
        if vd.get('isActive') is not None:
            qs = qs.filter(is_active=vd['isActive'])
        return paginated(qs, vd, user_service.format_user)

    s = UserCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    user = user_service.create_user(**s.validated_data)
    log_action(user=request.user, action='CREATE', resource_type='user', resource_id=user.pk,
               changes={'username': user.username, 'role': user.role_name}, request=request)
    return created(user_service.format_user(user))


@api_view(['GET', 'PUT', 'DELETE'])
@permission_classes([IsStaffRole, method_permissions(GET='users.read', PUT='users.update', DELETE='users.delete')])
def user_detail_view(request, pk: int):
    user = get_object(User.objects.select_related('role'), pk, 'User')
    if request.method == 'GET':
        return ok(user_service.format_user(user, include_permissions=True))

    if request.method == 'PUT':
        s = UserUpdateSerializer(data=request.data, partial=True)
        s.is_valid(raise_exception=True)
        user = user_service.update_user(user, acting_user=request.user, **s.validated_data)
        changes = {k: v for k, v in s.validated_data.items() if k != 'password'}
        if 'password' in s.validated_data:
            changes['password'] = '***'
        log_action(user=request.user, action='UPDATE', resource_type='user', resource_id=user.pk,
                   changes=changes, request=request)
        return ok(user_service.format_user(user))

    # users are deactivated rather than removed; their audit trail stays intact
    user_service.set_active(user, False, acting_user=request.user)
    log_action(user=request.user, action='DELETE', resource_type='user', resource_id=user.pk, request=request)
    return ok({'id': user.pk, 'isActive': False})


@api_view(['PUT'])
@permission_classes([IsStaffRole, permission_required('users.update')])
def user_toggle_active_view(request, pk: int):
    user = get_object(User.objects.select_related('role'), pk, 'User')
    s = ActiveToggleSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    user_service.set_active(user, s.validated_data['isActive'], acting_user=request.user)
    log_action(user=request.user, action='ACTIVATE' if user.is_active else 'DEACTIVATE', resource_type='user',
               resource_id=user.pk, request=request)
    return ok(user_service.format_user(user))


@api_view(['POST'])
@permission_classes([IsAdminRole])
def user_unlock_view(request, pk: int):
    user = get_object(User.objects.select_related('role'), pk, 'User')
    user_service.unlock(user)
    log_action(user=request.user, action='UNLOCK', resource_type='user', resource_id=user.pk, request=request)
    return ok(user_service.format_user(user))


@api_view(['GET'])
@permission_classes([IsStaffRole])
def dietitians_view(request):
    return ok([user_service.format_user(u) for u in user_service.list_dietitians()])


# ---------------------------------------------------------------------
# Roles & permissions
# ---------------------------------------------------------------------
@api_view(['GET', 'POST'])
@permission_classes([IsAdminRole])
def roles_view(request):
    if request.method == 'GET':
        return ok([rbac.format_role(r) for r in Role.objects.prefetch_related('permissions')])
    s = RoleCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    role = rbac.create_role(**s.validated_data)
    log_action(user=request.user, action='CREATE', resource_type='role', resource_id=role.pk,
               changes=s.validated_data, request=request)
    return created(rbac.format_role(role))


@api_view(['GET', 'PUT', 'DELETE'])
@permission_classes([IsAdminRole])
def role_detail_view(request, pk: int):
    role = get_object(Role.objects.all(), pk, 'Role')
    if request.method == 'GET':
        return ok(rbac.format_role(role))
    if request.method == 'PUT':
        s = RoleUpdateSerializer(data=request.data, partial=True)
        s.is_valid(raise_exception=True)
        role = rbac.update_role(role, **s.validated_data)
        log_action(user=request.user, action='UPDATE', resource_type='role', resource_id=role.pk,
                   changes=s.validated_data, request=request)
        return ok(rbac.format_role(role))
    name = role.name
    rbac.delete_role(role)
    log_action(user=request.user, action='DELETE', resource_type='role', resource_id=pk,
               changes={'name': name}, request=request)
    return ok({'deleted': True})


@api_view(['PUT'])
@permission_classes([IsAdminRole])
def role_permissions_view(request, pk: int):
    role = get_object(Role.objects.all(), pk, 'Role')
    s = RolePermissionsSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    before = sorted(role.permissions.values_list('code', flat=True))
    rbac.set_role_permissions(role, s.validated_data['permissions'])
    log_action(user=request.user, action='UPDATE_PERMISSIONS', resource_type='role', resource_id=role.pk,
               changes={'permissions': [before, sorted(s.validated_data['permissions'])]}, request=request)
    return ok(rbac.format_role(role))


@api_view(['GET'])
@permission_classes([IsAdminRole])
def permissions_view(request):
    return ok(rbac.permissions_by_resource())
