from rest_framework import serializers

from practice.models import MeasureAlert, MeasureDefinition
from practice.serializers.common import CleanCharField, DateRangeQuerySerializer, PageQuerySerializer

BOUND = {'max_digits': 12, 'decimal_places': 4, 'required': False, 'allow_null': True}


class DefinitionListQuerySerializer(serializers.Serializer):
    category = serializers.ChoiceField(choices=[c for c, _ in MeasureDefinition.CATEGORY_CHOICES], required=False)
    includeInactive = serializers.BooleanField(required=False, default=False)


class MeasureDefinitionSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=100)
    displayName = CleanCharField(source='display_name', max_length=200)
    description = CleanCharField(required=False, allow_blank=True)
    category = serializers.ChoiceField(choices=[c for c, _ in MeasureDefinition.CATEGORY_CHOICES], required=False)
    measureType = serializers.ChoiceField(source='measure_type',
                                          choices=[c for c, _ in MeasureDefinition.TYPE_CHOICES], required=False)
    unit = CleanCharField(required=False, allow_blank=True, max_length=20)
    minValue = serializers.DecimalField(source='min_value', **BOUND)
    maxValue = serializers.DecimalField(source='max_value', **BOUND)
    decimalPlaces = serializers.IntegerField(source='decimal_places', required=False, min_value=0, max_value=4)
    normalRangeMin = serializers.DecimalField(source='normal_range_min', **BOUND)
    normalRangeMax = serializers.DecimalField(source='normal_range_max', **BOUND)
    alertThresholdMin = serializers.DecimalField(source='alert_threshold_min', **BOUND)
    alertThresholdMax = serializers.DecimalField(source='alert_threshold_max', **BOUND)
    enableAlerts = serializers.BooleanField(source='enable_alerts', required=False)
    formula = serializers.CharField(required=False, allow_blank=True)
    displayOrder = serializers.IntegerField(source='display_order', required=False, min_value=0)
    isActive = serializers.BooleanField(source='is_active', required=False)


class MeasureListQuerySerializer(DateRangeQuerySerializer):
    patientId = serializers.IntegerField()
    measureId = serializers.IntegerField(required=False)
    visitId = serializers.IntegerField(required=False)


class HistoryQuerySerializer(serializers.Serializer):
    start = serializers.DateTimeField(required=False)
    end = serializers.DateTimeField(required=False)


class MeasureLogSerializer(serializers.Serializer):
    patientId = serializers.IntegerField()
    measureId = serializers.IntegerField()
    value = serializers.JSONField(allow_null=True)
    measuredAt = serializers.DateTimeField(source='measured_at', required=False)
    visitId = serializers.IntegerField(required=False, allow_null=True)
    notes = CleanCharField(required=False, allow_blank=True, default='')


class MeasureUpdateSerializer(serializers.Serializer):
    value = serializers.JSONField(required=False, allow_null=True)
    measuredAt = serializers.DateTimeField(source='measured_at', required=False)
    notes = CleanCharField(required=False, allow_blank=True)


class FormulaPreviewSerializer(serializers.Serializer):
    formula = serializers.CharField()
    values = serializers.DictField(child=serializers.FloatField(), required=False, default=dict)
    decimalPlaces = serializers.IntegerField(required=False, min_value=0, max_value=6, default=2)


class AlertListQuerySerializer(PageQuerySerializer):
    patientId = serializers.IntegerField(required=False)
    severity = serializers.ChoiceField(choices=[c for c, _ in MeasureAlert.SEVERITY_CHOICES], required=False)
    includeAcknowledged = serializers.BooleanField(required=False, default=False)


class AlertAcknowledgeSerializer(serializers.Serializer):
    severity = serializers.ChoiceField(choices=[c for c, _ in MeasureAlert.SEVERITY_CHOICES], required=False)
    measureId = serializers.IntegerField(required=False)
