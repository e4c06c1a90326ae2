from __future__ import annotations

from rest_framework.decorators import api_view, permission_classes

from practice.models import CustomFieldCategory, CustomFieldDefinition
from practice.permissions import IsStaffRole, method_permissions, permission_required
from practice.responses import created, get_object, ok
from practice.serializers.custom_fields import (
    CategorySerializer,
    DefinitionListQuerySerializer,
    DefinitionSerializer,
    FormulaCheckSerializer,
    ReorderSerializer,
)
from practice.services import custom_fields
from practice.services import formula as formula_engine
from practice.services.audit import log_action

READ_WRITE = method_permissions(GET='custom_fields.read', POST='custom_fields.create',
                                PUT='custom_fields.update', DELETE='custom_fields.delete')


def _definition_data(validated: dict) -> dict:
    data = dict(validated)
    if 'categoryId' in data:
        data['category'] = get_object(CustomFieldCategory.objects.all(), data.pop('categoryId'), 'Category')
    return data


# ---------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------
@api_view(['GET', 'POST'])
@permission_classes([IsStaffRole, READ_WRITE])
def categories_view(request):
    if request.method == 'GET':
        include_inactive = request.query_params.get('includeInactive') in ('1', 'true', 'True')
        qs = CustomFieldCategory.objects.prefetch_related('definitions')
        if not include_inactive:
            qs = qs.filter(is_active=True)
        return ok([custom_fields.format_category(c, with_fields=True) for c in qs])

    s = CategorySerializer(data=request.data)
    s.is_valid(raise_exception=True)
    category = custom_fields.save_category(CustomFieldCategory(), s.validated_data)
    log_action(user=request.user, action='CREATE', resource_type='custom_field_category',
               resource_id=category.pk, changes=s.validated_data, request=request)
    return created(custom_fields.format_category(category))


@api_view(['GET', 'PUT', 'DELETE'])
@permission_classes([IsStaffRole, READ_WRITE])
def category_detail_view(request, pk: int):
    category = get_object(CustomFieldCategory.objects.all(), pk, 'Category')
    if request.method == 'GET':
        return ok(custom_fields.format_category(category, with_fields=True))
    if request.method == 'PUT':
        s = CategorySerializer(data=request.data, partial=True)
        s.is_valid(raise_exception=True)
        category = custom_fields.save_category(category, s.validated_data)
        return ok(custom_fields.format_category(category))
    outcome = custom_fields.delete_category(category)
    log_action(user=request.user, action='DELETE', resource_type='custom_field_category', resource_id=pk,
               changes={'outcome': outcome}, request=request)
    return ok({'id': pk, 'result': outcome})


@api_view(['PUT'])
@permission_classes([IsStaffRole, permission_required('custom_fields.update')])
def categories_reorder_view(request):
    s = ReorderSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    custom_fields.reorder(CustomFieldCategory, s.validated_data['ids'])
    return ok({'reordered': len(s.validated_data['ids'])})


# ---------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------
@api_view(['GET', 'POST'])
@permission_classes([IsStaffRole, READ_WRITE])
def definitions_view(request):
    if request.method == 'GET':
        q = CustomFieldDefinition.objects.select_related('category')
        params = DefinitionListQuerySerializer(data=request.query_params)
        params.is_valid(raise_exception=True)
        if params.validated_data.get('categoryId'):
            q = q.filter(category_id=params.validated_data['categoryId'])
        if not params.validated_data['includeInactive']:
            q = q.filter(is_active=True)
        return ok([custom_fields.format_definition(d) for d in q])

    s = DefinitionSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    definition = custom_fields.save_definition(CustomFieldDefinition(), _definition_data(s.validated_data))
    log_action(user=request.user, action='CREATE', resource_type='custom_field', resource_id=definition.pk,
               changes={'fieldName': definition.field_name, 'fieldType': definition.field_type}, request=request)
    return created(custom_fields.format_definition(definition))


@api_view(['GET', 'PUT', 'DELETE'])
@permission_classes([IsStaffRole, READ_WRITE])
def definition_detail_view(request, pk: int):
    definition = get_object(CustomFieldDefinition.objects.all(), pk, 'Field')
    if request.method == 'GET':
        return ok(custom_fields.format_definition(definition))
    if request.method == 'PUT':
        s = DefinitionSerializer(data=request.data, partial=True)
        s.is_valid(raise_exception=True)
        definition = custom_fields.save_definition(definition, _definition_data(s.validated_data))
        log_action(user=request.user, action='UPDATE', resource_type='custom_field', resource_id=definition.pk,
                   changes={'fields': sorted(request.data.keys())}, request=request)
        return ok(custom_fields.format_definition(definition))
    outcome = custom_fields.delete_definition(definition)
    log_action(user=request.user, action='DELETE', resource_type='custom_field', resource_id=pk,
               changes={'outcome': outcome}, request=request)
    return ok({'id': pk, 'result': outcome})


@api_view(['PUT'])
@permission_classes([IsStaffRole, permission_required('custom_fields.update')])
def definitions_reorder_view(request):
    s = ReorderSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    custom_fields.reorder(CustomFieldDefinition, s.validated_data['ids'])
    return ok({'reordered': len(s.validated_data['ids'])})


@api_view(['POST'])
@permission_classes([IsStaffRole, permission_required('custom_fields.read')])
def field_formula_validate_view(request):
    s = FormulaCheckSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    try:
        deps = formula_engine.validate(s.validated_data['formula'])
    except formula_engine.FormulaError as e:
        return ok({'valid': False, 'error': str(e), 'dependencies': []})
    return ok({'valid': True, 'error': None, 'dependencies': deps})
