"""
Measure definitions and patient measure values.

Logging a value triggers recomputation of every active calculated measure
that depends on it, at the same timestamp.  Calculated values take the
latest stored value of each dependency at or before that timestamp;
prefixed variables give access to history:

* ``{current:x}`` / ``{measure:x}`` / ``{x}``: latest value
* ``{previous:x}``: the value before the latest one
* ``{delta:x}``: latest minus previous
* ``{avg30:x}``: mean over the preceding 30 days

``{birth_date}`` resolves to the patient's date of birth.

Logged and derived numeric values are checked against the definition's
ranges by :mod:`practice.services.alerts`.
"""
from __future__ import annotations

import logging
import re
from datetime import timedelta
from decimal import Decimal, InvalidOperation

from django.db import transaction
from django.db.models import Avg, Count, Max, Min
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from practice.exceptions import Conflict
from practice.models import MeasureDefinition, PatientMeasure
from practice.services import alerts as alert_service
from practice.services import formula as formula_engine

logger = logging.getLogger(__name__)

NAME_RE = re.compile(r'^[a-z][a-z0-9_]*$')
PATIENT_VARIABLES = {'birth_date'}
MAX_DEPTH = 10

DEFAULT_MEASURES = [
    {'name': 'weight', 'display_name': 'Weight', 'category': 'anthropometric', 'unit': 'kg',
     'min_value': Decimal('0.5'), 'max_value': Decimal('500'), 'decimal_places': 1, 'display_order': 1},
    {'name': 'height', 'display_name': 'Height', 'category': 'anthropometric', 'unit': 'cm',
     'min_value': Decimal('30'), 'max_value': Decimal('272'), 'decimal_places': 1, 'display_order': 2},
    {'name': 'bmi', 'display_name': 'Body mass index', 'category': 'anthropometric', 'unit': 'kg/m²',
     'measure_type': MeasureDefinition.CALCULATED, 'formula': '{weight} / (({height} / 100) ^ 2)',
     'decimal_places': 1, 'display_order': 3},
    {'name': 'waist_circumference', 'display_name': 'Waist circumference', 'category': 'anthropometric',
     'unit': 'cm', 'min_value': Decimal('20'), 'max_value': Decimal('300'), 'decimal_places': 1, 'display_order': 4},
    {'name': 'body_fat', 'display_name': 'Body fat', 'category': 'anthropometric', 'unit': '%',
     'min_value': Decimal('1'), 'max_value': Decimal('75'), 'decimal_places': 1, 'display_order': 5},
    {'name': 'systolic_bp', 'display_name': 'Systolic blood pressure', 'category': 'vitals', 'unit': 'mmHg',
     'min_value': Decimal('50'), 'max_value': Decimal('300'), 'decimal_places': 0, 'display_order': 1},
    {'name': 'diastolic_bp', 'display_name': 'Diastolic blood pressure', 'category': 'vitals', 'unit': 'mmHg',
     'min_value': Decimal('30'), 'max_value': Decimal('200'), 'decimal_places': 0, 'display_order': 2},
]


# ---------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------
def _float(value):
    return float(value) if value is not None else None


def format_definition(definition: MeasureDefinition) -> dict:
    return {
        'id': definition.id,
        'name': definition.name,
        'displayName': definition.display_name,
        'description': definition.description,
        'category': definition.category,
        'measureType': definition.measure_type,
        'unit': definition.unit,
        'minValue': _float(definition.min_value),
        'maxValue': _float(definition.max_value),
        'decimalPlaces': definition.decimal_places,
        'normalRangeMin': _float(definition.normal_range_min),
        'normalRangeMax': _float(definition.normal_range_max),
        'alertThresholdMin': _float(definition.alert_threshold_min),
        'alertThresholdMax': _float(definition.alert_threshold_max),
        'enableAlerts': definition.enable_alerts,
        'formula': definition.formula or None,
        'dependencies': definition.dependencies,
        'displayOrder': definition.display_order,
        'isActive': definition.is_active,
        'isSystem': definition.is_system,
    }


def _calculated_graph(exclude_pk=None) -> dict[str, list[str]]:
    qs = MeasureDefinition.objects.filter(measure_type=MeasureDefinition.CALCULATED)
    if exclude_pk:
        qs = qs.exclude(pk=exclude_pk)
    return {d.name: [formula_engine.base_name(v) for v in d.dependencies] for d in qs}


def _check_formula(name: str, formula: str, exclude_pk=None) -> list[str]:
    try:
        deps = formula_engine.validate(formula)
    except formula_engine.FormulaError as e:
        raise ValidationError({'formula': str(e)})
    names = {formula_engine.base_name(v) for v in deps} - PATIENT_VARIABLES
    if name in names:
        raise ValidationError({'formula': 'A measure cannot depend on itself'})
    known = set(MeasureDefinition.objects.filter(name__in=names).values_list('name', flat=True))
    unknown = sorted(names - known)
    if unknown:
        raise ValidationError({'formula': f"Unknown measure(s): {', '.join(unknown)}"})
    cycle = formula_engine.find_cycle(name, sorted(names), _calculated_graph(exclude_pk))
    if cycle:
        raise ValidationError({'formula': f"Circular dependency: {' -> '.join(cycle)}"})
    return deps


RANGE_PAIRS = (
    ('min_value', 'max_value', 'minValue'),
    ('normal_range_min', 'normal_range_max', 'normalRangeMin'),
    ('alert_threshold_min', 'alert_threshold_max', 'alertThresholdMin'),
)


def _check_ranges(definition: MeasureDefinition) -> None:
    for low_attr, high_attr, key in RANGE_PAIRS:
        low, high = getattr(definition, low_attr), getattr(definition, high_attr)
        if low is not None and high is not None and Decimal(str(low)) > Decimal(str(high)):
            raise ValidationError({key: 'Minimum must not exceed maximum'})
    if definition.enable_alerts and definition.measure_type in (MeasureDefinition.TEXT, MeasureDefinition.BOOLEAN):
        raise ValidationError({'enableAlerts': 'Alerts need a numeric or calculated measure'})


def create_definition(data: dict) -> MeasureDefinition:
    name = data['name']
    if not NAME_RE.match(name):
        raise ValidationError({'name': 'Use lowercase letters, digits and underscores, starting with a letter'})
    if MeasureDefinition.objects.filter(name=name).exists():
        raise Conflict(f"Measure '{name}' already exists")
    definition = MeasureDefinition(**data)
    _check_ranges(definition)
    if definition.measure_type == MeasureDefinition.CALCULATED:
        if not definition.formula:
            raise ValidationError({'formula': 'Calculated measures need a formula'})
        definition.dependencies = _check_formula(name, definition.formula)
    else:
        definition.formula = ''
        definition.dependencies = []
    definition.save()
    return definition


def update_definition(definition: MeasureDefinition, data: dict) -> MeasureDefinition:
    if definition.is_system:
        for locked in ('name', 'measure_type'):
            if locked in data and data[locked] != getattr(definition, locked):
                raise ValidationError({locked: 'Cannot be changed on a system measure'})
    if 'name' in data and data['name'] != definition.name:
        raise ValidationError({'name': 'Measure names cannot be changed'})
    for attr, value in data.items():
        setattr(definition, attr, value)
    _check_ranges(definition)
    if definition.measure_type == MeasureDefinition.CALCULATED:
        if not definition.formula:
            raise ValidationError({'formula': 'Calculated measures need a formula'})
        definition.dependencies = _check_formula(definition.name, definition.formula, exclude_pk=definition.pk)
    else:
        definition.formula = ''
        definition.dependencies = []
    definition.save()
    return definition


def delete_definition(definition: MeasureDefinition) -> str:
    if definition.is_system:
        raise ValidationError({'definition': 'System measures cannot be deleted'})
    dependents = [d.name for d in MeasureDefinition.objects.filter(measure_type=MeasureDefinition.CALCULATED)
                  if definition.name in {formula_engine.base_name(v) for v in d.dependencies}]
    if dependents:
        raise Conflict(f"Used by calculated measure(s): {', '.join(dependents)}")
    if definition.values.exists():
        definition.is_active = False
        definition.save(update_fields=['is_active', 'updated_at'])
        return 'deactivated'
    definition.delete()
    return 'deleted'


@transaction.atomic
def ensure_default_measures() -> int:
    created = 0
    for entry in DEFAULT_MEASURES:
        entry = dict(entry)
        name = entry.pop('name')
        if 'formula' in entry:
            entry['dependencies'] = formula_engine.extract_dependencies(entry['formula'])
        _, was_created = MeasureDefinition.objects.get_or_create(name=name, defaults={**entry, 'is_system': True})
        created += int(was_created)
    return created


# ---------------------------------------------------------------------
# Values
# ---------------------------------------------------------------------
def format_measure(measure: PatientMeasure) -> dict:
    definition = measure.definition
    value = measure.value
    if isinstance(value, Decimal):
        value = round(float(value), definition.decimal_places)
    return {
        'id': measure.id,
        'patientId': measure.patient_id,
        'measureId': definition.id,
        'measureName': definition.name,
        'displayName': definition.display_name,
        'unit': definition.unit,
        'value': value,
        'isCalculated': measure.is_calculated,
        'visitId': measure.visit_id,
        'measuredAt': measure.measured_at.isoformat() if measure.measured_at else None,
        'notes': measure.notes,
        'recordedBy': measure.recorded_by_id,
    }


def _assign_value(measure: PatientMeasure, definition: MeasureDefinition, value) -> None:
    measure.numeric_value = None
    measure.text_value = ''
    measure.boolean_value = None
    if definition.measure_type == MeasureDefinition.NUMERIC:
        if value is None or isinstance(value, bool):
            raise ValidationError({'value': 'A numeric value is required'})
        try:
            number = Decimal(str(value))
        except InvalidOperation:
            raise ValidationError({'value': f'{value!r} is not a number'})
        if not number.is_finite():
            raise ValidationError({'value': 'Value must be finite'})
        if definition.min_value is not None and number < definition.min_value:
            raise ValidationError({'value': f'Value must be at least {definition.min_value.normalize()}'})
        if definition.max_value is not None and number > definition.max_value:
            raise ValidationError({'value': f'Value must be at most {definition.max_value.normalize()}'})
        measure.numeric_value = number
    elif definition.measure_type == MeasureDefinition.BOOLEAN:
        if isinstance(value, str) and value.lower() in ('true', 'false', '1', '0', 'yes', 'no'):
            value = value.lower() in ('true', '1', 'yes')
        if not isinstance(value, bool):
            raise ValidationError({'value': 'A boolean value is required'})
        measure.boolean_value = value
    else:
        if value is None or str(value).strip() == '':
            raise ValidationError({'value': 'A value is required'})
        measure.text_value = str(value)


def log_measure(patient, definition: MeasureDefinition, *, value, user, measured_at=None, visit=None,
                notes: str = '') -> PatientMeasure:
    if not definition.is_active:
        raise ValidationError({'measureId': f"Measure '{definition.name}' is inactive"})
    if definition.measure_type == MeasureDefinition.CALCULATED:
        raise ValidationError({'measureId': 'Calculated measures are computed automatically'})
    if visit is not None and visit.patient_id != patient.pk:
        raise ValidationError({'visitId': 'Visit belongs to another patient'})
    measure = PatientMeasure(
        patient=patient, definition=definition, visit=visit, notes=notes or '',
        measured_at=measured_at or timezone.now(), recorded_by=user,
    )
    _assign_value(measure, definition, value)
    with transaction.atomic():
        measure.save()
        derived = recalculate_dependents(patient, definition.name, measure.measured_at, user=user, visit=visit)
    for row in [measure, *derived]:
        alert_service.generate_alert(row)
    return measure


def update_measure(measure: PatientMeasure, data: dict, *, user) -> PatientMeasure:
    if measure.is_calculated:
        raise ValidationError({'measure': 'Calculated values cannot be edited'})
    if 'value' in data:
        _assign_value(measure, measure.definition, data['value'])
    previous_at = measure.measured_at
    if data.get('measured_at'):
        measure.measured_at = data['measured_at']
    if 'notes' in data and data['notes'] is not None:
        measure.notes = data['notes']
    with transaction.atomic():
        measure.save()
        if measure.measured_at != previous_at:
            recalculate_dependents(measure.patient, measure.definition.name, previous_at, user=user)
        recalculate_dependents(measure.patient, measure.definition.name, measure.measured_at, user=user,
                               visit=measure.visit)
    return measure


def delete_measure(measure: PatientMeasure, *, user=None) -> None:
    patient, name, at = measure.patient, measure.definition.name, measure.measured_at
    with transaction.atomic():
        measure.delete()
        if not measure.is_calculated:
            recalculate_dependents(patient, name, at, user=user)


def _history(patient, name: str, at):
    return (PatientMeasure.objects
            .filter(patient=patient, definition__name=name, measured_at__lte=at)
            .order_by('-measured_at', '-id'))


def _number_or_value(measure: PatientMeasure):
    value = measure.value
    return float(value) if isinstance(value, Decimal) else value


def dependency_values(patient, variables, at) -> dict:
    """Resolve formula variables for ``patient`` as of ``at``."""
    values = {}
    for variable in variables:
        if variable in PATIENT_VARIABLES:
            values[variable] = patient.date_of_birth
            continue
        prefix, _, name = variable.rpartition(':')
        if prefix in ('', 'current', 'measure'):
            latest = _history(patient, name, at).first()
            values[variable] = _number_or_value(latest) if latest else None
        elif prefix == 'previous':
            rows = list(_history(patient, name, at)[:2])
            values[variable] = _number_or_value(rows[1]) if len(rows) == 2 else None
        elif prefix == 'delta':
            rows = list(_history(patient, name, at)[:2])
            values[variable] = (float(rows[0].numeric_value) - float(rows[1].numeric_value)
                                if len(rows) == 2 and rows[0].numeric_value is not None
                                and rows[1].numeric_value is not None else None)
        elif prefix.startswith('avg'):
            days = int(prefix[3:])
            avg = _history(patient, name, at).filter(measured_at__gt=at - timedelta(days=days)) \
                .aggregate(v=Avg('numeric_value'))['v']
            values[variable] = float(avg) if avg is not None else None
    return values


def compute_calculated(patient, definition: MeasureDefinition, at) -> float | None:
    values = dependency_values(patient, definition.dependencies, at)
    try:
        return formula_engine.evaluate(definition.formula, values, definition.decimal_places)
    except formula_engine.FormulaError as e:
        logger.debug('Skipping %s for patient %s: %s', definition.name, patient.pk, e)
        return None


def _store_calculated(patient, definition, at, value, *, user, visit) -> PatientMeasure:
    measure = PatientMeasure.objects.filter(
        patient=patient, definition=definition, measured_at=at, is_calculated=True,
    ).first()
    if measure is None:
        measure = PatientMeasure(patient=patient, definition=definition, measured_at=at, is_calculated=True,
                                 recorded_by=user, visit=visit)
    measure.numeric_value = Decimal(str(value))
    measure.save()
    return measure


def recalculate_dependents(patient, changed_name: str, at, *, user=None, visit=None, _depth: int = 0) -> list:
    if _depth >= MAX_DEPTH:
        logger.warning('Measure recalculation depth limit reached at %s', changed_name)
        return []
    stored = []
    candidates = MeasureDefinition.objects.filter(measure_type=MeasureDefinition.CALCULATED, is_active=True)
    for definition in candidates:
        if changed_name not in {formula_engine.base_name(v) for v in definition.dependencies}:
            continue
        value = compute_calculated(patient, definition, at)
        if value is None:
            # inputs gone: drop a stale result at this timestamp
            PatientMeasure.objects.filter(patient=patient, definition=definition, measured_at=at,
                                          is_calculated=True).delete()
            continue
        stored.append(_store_calculated(patient, definition, at, value, user=user, visit=visit))
        stored += recalculate_dependents(patient, definition.name, at, user=user, visit=visit, _depth=_depth + 1)
    return stored


def recalculate_all(patient, *, user=None) -> list:
    """Compute every calculated measure for ``patient`` as of now."""
    now = timezone.now()
    stored = []
    for definition in MeasureDefinition.objects.filter(measure_type=MeasureDefinition.CALCULATED, is_active=True):
        value = compute_calculated(patient, definition, now)
        if value is not None:
            stored.append(_store_calculated(patient, definition, now, value, user=user, visit=None))
    return stored


def measure_history(patient, definition: MeasureDefinition, *, start=None, end=None) -> dict:
    qs = PatientMeasure.objects.filter(patient=patient, definition=definition).select_related('definition')
    if start:
        qs = qs.filter(measured_at__gte=start)
    if end:
        qs = qs.filter(measured_at__lte=end)
    rows = list(qs.order_by('measured_at', 'id'))
    stats = None
    if definition.measure_type in (MeasureDefinition.NUMERIC, MeasureDefinition.CALCULATED):
        agg = qs.aggregate(count=Count('id'), min=Min('numeric_value'), max=Max('numeric_value'),
                           avg=Avg('numeric_value'))
        numeric = [r.numeric_value for r in rows if r.numeric_value is not None]
        stats = {
            'count': agg['count'],
            'min': float(agg['min']) if agg['min'] is not None else None,
            'max': float(agg['max']) if agg['max'] is not None else None,
            'avg': round(float(agg['avg']), definition.decimal_places) if agg['avg'] is not None else None,
            'change': float(numeric[-1] - numeric[0]) if len(numeric) >= 2 else None,
        }
    return {
        'measure': format_definition(definition),
        'values': [format_measure(r) for r in rows],
        'stats': stats,
    }
