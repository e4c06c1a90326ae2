"""
Practice-defined patient fields.

Each :class:`CustomFieldDefinition` belongs to a category and has a type;
values are stored as JSON per patient.  ``calculated`` fields hold a
formula over other fields (``{field_name}``) and are recomputed whenever
a patient's values change.  ``separator`` fields only structure the form
and never store a value.
"""
from __future__ import annotations

import logging
import re
from datetime import date
from decimal import Decimal, InvalidOperation

from django.db import transaction
from rest_framework.exceptions import ValidationError

from practice.exceptions import Conflict
from practice.models import CustomFieldCategory, CustomFieldDefinition, PatientCustomFieldValue
from practice.services import formula as formula_engine

logger = logging.getLogger(__name__)

FIELD_NAME_RE = re.compile(r'^[a-z0-9_]+$')
NO_VALUE_TYPES = {CustomFieldDefinition.SEPARATOR, CustomFieldDefinition.CALCULATED}


def format_category(category: CustomFieldCategory, *, with_fields: bool = False) -> dict:
    data = {
        'id': category.id,
        'name': category.name,
        'description': category.description,
        'displayOrder': category.display_order,
        'isActive': category.is_active,
    }
    if with_fields:
        data['fields'] = [format_definition(d) for d in category.definitions.filter(is_active=True)]
    return data


def format_definition(definition: CustomFieldDefinition) -> dict:
    return {
        'id': definition.id,
        'categoryId': definition.category_id,
        'fieldName': definition.field_name,
        'fieldLabel': definition.field_label,
        'fieldType': definition.field_type,
        'isRequired': definition.is_required,
        'validationRules': definition.validation_rules or {},
        'selectOptions': definition.select_options,
        'allowMultiple': definition.allow_multiple,
        'helpText': definition.help_text,
        'displayOrder': definition.display_order,
        'formula': definition.formula or None,
        'dependencies': definition.dependencies,
        'decimalPlaces': definition.decimal_places,
        'isActive': definition.is_active,
    }


def save_category(category: CustomFieldCategory, data: dict) -> CustomFieldCategory:
    if data.get('name'):
        if CustomFieldCategory.objects.filter(name__iexact=data['name']).exclude(pk=category.pk).exists():
            raise Conflict(f"Category '{data['name']}' already exists")
    for attr, value in data.items():
        if value is not None:
            setattr(category, attr, value)
    if category.pk is None and 'display_order' not in data:
        category.display_order = CustomFieldCategory.objects.count()
    category.save()
    return category


def delete_category(category: CustomFieldCategory) -> str:
    if PatientCustomFieldValue.objects.filter(definition__category=category).exists():
        category.is_active = False
        category.save(update_fields=['is_active'])
        return 'deactivated'
    category.delete()
    return 'deleted'


# ---------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------
def _option_values(options) -> list:
    values = []
    for option in options or []:
        values.append(option.get('value') if isinstance(option, dict) else option)
    return values


def _rule_number(rules: dict, key: str):
    value = rules.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError({'validationRules': f'{key} must be a number'})
    try:
        number = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError({'validationRules': f'{key} must be a number'})
    if not number.is_finite():
        raise ValidationError({'validationRules': f'{key} must be a number'})
    return number


def _check_rules(rules: dict) -> None:
    if not isinstance(rules, dict):
        raise ValidationError({'validationRules': 'Must be an object'})
    if 'pattern' in rules:
        try:
            re.compile(rules['pattern'])
        except (re.error, TypeError):
            raise ValidationError({'validationRules': 'pattern is not a valid regular expression'})
    max_length = rules.get('maxLength')
    if max_length is not None and (isinstance(max_length, bool) or not isinstance(max_length, int) or max_length < 0):
        raise ValidationError({'validationRules': 'maxLength must be a non-negative integer'})
    low, high = _rule_number(rules, 'min'), _rule_number(rules, 'max')
    if low is not None and high is not None and low > high:
        raise ValidationError({'validationRules': 'min must not exceed max'})
    for key in ('min_date', 'max_date'):
        if rules.get(key):
            try:
                date.fromisoformat(str(rules[key]))
            except ValueError:
                raise ValidationError({'validationRules': f'{key} must be YYYY-MM-DD'})


def _calculated_graph(exclude_pk=None) -> dict[str, list[str]]:
    qs = CustomFieldDefinition.objects.filter(field_type=CustomFieldDefinition.CALCULATED)
    if exclude_pk:
        qs = qs.exclude(pk=exclude_pk)
    return {d.field_name: list(d.dependencies or []) for d in qs}


def _check_formula(definition: CustomFieldDefinition) -> list[str]:
    if not definition.formula:
        raise ValidationError({'formula': 'Calculated fields need a formula'})
    try:
        deps = formula_engine.validate(definition.formula)
    except formula_engine.FormulaError as e:
        raise ValidationError({'formula': str(e)})
    deps = [formula_engine.base_name(d) for d in deps]
    if definition.field_name in deps:
        raise ValidationError({'formula': 'A field cannot depend on itself'})
    known = set(CustomFieldDefinition.objects.filter(field_name__in=deps).values_list('field_name', flat=True))
    unknown = [d for d in deps if d not in known]
    if unknown:
        raise ValidationError({'formula': f"Unknown field(s): {', '.join(unknown)}"})
    cycle = formula_engine.find_cycle(definition.field_name, deps, _calculated_graph(definition.pk))
    if cycle:
        raise ValidationError({'formula': f"Circular dependency: {' -> '.join(cycle)}"})
    return deps


def save_definition(definition: CustomFieldDefinition, data: dict) -> CustomFieldDefinition:
    for attr, value in data.items():
        setattr(definition, attr, value)
    if not FIELD_NAME_RE.match(definition.field_name or ''):
        raise ValidationError({'fieldName': 'Use lowercase letters, digits and underscores only'})
    if CustomFieldDefinition.objects.filter(field_name=definition.field_name).exclude(pk=definition.pk).exists():
        raise Conflict(f"Field '{definition.field_name}' already exists")
    definition.validation_rules = definition.validation_rules or {}
    _check_rules(definition.validation_rules)
    if definition.field_type == CustomFieldDefinition.SELECT:
        if not definition.select_options:
            raise ValidationError({'selectOptions': 'Select fields need at least one option'})
    else:
        definition.select_options = None
        definition.allow_multiple = False
    if definition.field_type == CustomFieldDefinition.CALCULATED:
        definition.dependencies = _check_formula(definition)
        definition.is_required = False
    else:
        definition.formula = ''
        definition.dependencies = []
    if definition.field_type == CustomFieldDefinition.SEPARATOR:
        definition.is_required = False
    definition.save()
    return definition


def delete_definition(definition: CustomFieldDefinition) -> str:
    dependents = [name for name, deps in _calculated_graph(definition.pk).items() if definition.field_name in deps]
    if dependents:
        raise Conflict(f"Used by calculated field(s): {', '.join(dependents)}")
    if definition.values.exists():
        definition.is_active = False
        definition.save(update_fields=['is_active', 'updated_at'])
        return 'deactivated'
    definition.delete()
    return 'deleted'


def reorder(model, ordered_ids) -> None:
    with transaction.atomic():
        for index, pk in enumerate(ordered_ids):
            model.objects.filter(pk=pk).update(display_order=index)


# ---------------------------------------------------------------------
# Values
# ---------------------------------------------------------------------
def _is_empty(value) -> bool:
    return value is None or value == '' or value == []


def validate_value(definition: CustomFieldDefinition, value):
    """Return the cleaned value or raise ``ValueError`` with a message."""
    if _is_empty(value):
        if definition.is_required:
            raise ValueError('This field is required')
        return None
    rules = definition.validation_rules or {}
    kind = definition.field_type

    if kind in (CustomFieldDefinition.TEXT, CustomFieldDefinition.TEXTAREA):
        if not isinstance(value, str):
            raise ValueError('Must be text')
        max_length = rules.get('maxLength')
        if max_length is not None and len(value) > int(max_length):
            raise ValueError(f'Must be at most {max_length} characters')
        if rules.get('pattern') and not re.fullmatch(rules['pattern'], value):
            raise ValueError(rules.get('patternMessage') or 'Invalid format')
        return value

    if kind == CustomFieldDefinition.NUMBER:
        if isinstance(value, bool):
            raise ValueError('Must be a number')
        try:
            number = Decimal(str(value))
        except InvalidOperation:
            raise ValueError('Must be a number')
        if not number.is_finite():
            raise ValueError('Must be a number')
        if rules.get('min') is not None and number < Decimal(str(rules['min'])):
            raise ValueError(f"Must be at least {rules['min']}")
        if rules.get('max') is not None and number > Decimal(str(rules['max'])):
            raise ValueError(f"Must be at most {rules['max']}")
        return float(number) if number != number.to_integral_value() else int(number)

    if kind == CustomFieldDefinition.DATE:
        try:
            parsed = date.fromisoformat(str(value)[:10])
        except ValueError:
            raise ValueError('Must be a date (YYYY-MM-DD)')
        if rules.get('min_date') and parsed < date.fromisoformat(str(rules['min_date'])):
            raise ValueError(f"Must be on or after {rules['min_date']}")
        if rules.get('max_date') and parsed > date.fromisoformat(str(rules['max_date'])):
            raise ValueError(f"Must be on or before {rules['max_date']}")
        return parsed.isoformat()

    if kind == CustomFieldDefinition.SELECT:
        allowed = _option_values(definition.select_options)
        if definition.allow_multiple:
            if not isinstance(value, list):
                raise ValueError('Must be a list of options')
            invalid = [v for v in value if v not in allowed]
            if invalid:
                raise ValueError(f"Invalid option(s): {', '.join(map(str, invalid))}")
            return value
        if value not in allowed:
            raise ValueError(f'Invalid option: {value}')
        return value

    if kind == CustomFieldDefinition.BOOLEAN:
        if isinstance(value, str) and value.lower() in ('true', 'false'):
            return value.lower() == 'true'
        if not isinstance(value, bool):
            raise ValueError('Must be true or false')
        return value

    raise ValueError('This field does not accept values')


def patient_values(patient) -> list[dict]:
    stored = {v.definition_id: v for v in patient.custom_values.all()}
    out = []
    categories = CustomFieldCategory.objects.filter(is_active=True).prefetch_related('definitions')
    for category in categories:
        fields = []
        for definition in category.definitions.all():
            if not definition.is_active:
                continue
            row = stored.get(definition.id)
            fields.append({
                **format_definition(definition),
                'value': row.value if row else None,
                'updatedAt': row.updated_at.isoformat() if row else None,
            })
        out.append({**format_category(category), 'fields': fields})
    return out


def _recalculate(patient, user) -> None:
    calculated = list(CustomFieldDefinition.objects.filter(field_type=CustomFieldDefinition.CALCULATED, is_active=True))
    if not calculated:
        return
    values = {v.definition.field_name: v.value
              for v in patient.custom_values.select_related('definition')}
    # dependency order: repeat until nothing changes (graph is acyclic)
    for _ in range(len(calculated)):
        changed = False
        for definition in calculated:
            try:
                result = formula_engine.evaluate(definition.formula, values, definition.decimal_places)
            except formula_engine.FormulaError:
                result = None
            if values.get(definition.field_name) != result:
                values[definition.field_name] = result
                changed = True
                PatientCustomFieldValue.objects.update_or_create(
                    patient=patient, definition=definition, defaults={'value': result, 'updated_by': user},
                )
        if not changed:
            break


def update_patient_values(patient, payload: dict, *, user) -> list[dict]:
    """Validate and store ``{field_name: value}`` pairs; all or nothing."""
    names = list(payload.keys())
    definitions = {d.field_name: d for d in CustomFieldDefinition.objects.filter(field_name__in=names, is_active=True)}
    errors = {}
    cleaned = {}
    for name, value in payload.items():
        definition = definitions.get(name)
        if definition is None:
            errors[name] = ['Unknown field']
            continue
        if definition.field_type in NO_VALUE_TYPES:
            errors[name] = ['This field is read-only']
            continue
        try:
            cleaned[definition] = validate_value(definition, value)
        except ValueError as e:
            errors[name] = [str(e)]
    if errors:
        raise ValidationError(errors)

    with transaction.atomic():
        for definition, value in cleaned.items():
            PatientCustomFieldValue.objects.update_or_create(
                patient=patient, definition=definition, defaults={'value': value, 'updated_by': user},
            )
        _recalculate(patient, user)
    return patient_values(patient)
