from rest_framework import serializers

from practice.models import CustomFieldDefinition
from practice.serializers.common import CleanCharField


class CategorySerializer(serializers.Serializer):
    name = CleanCharField(max_length=100)
    description = CleanCharField(required=False, allow_blank=True)
    displayOrder = serializers.IntegerField(source='display_order', required=False, min_value=0)
    isActive = serializers.BooleanField(source='is_active', required=False)


class SelectOptionField(serializers.JSONField):
    """An option is a plain value or ``{"value": .., "label": ..}``."""

    def to_internal_value(self, data):
        data = super().to_internal_value(data)
        if isinstance(data, dict):
            if 'value' not in data:
                raise serializers.ValidationError('Option objects need a "value"')
            return {'value': data['value'], 'label': str(data.get('label', data['value']))}
        if isinstance(data, (str, int, float)) and not isinstance(data, bool):
            return data
        raise serializers.ValidationError('Invalid option')


class DefinitionSerializer(serializers.Serializer):
    categoryId = serializers.IntegerField()
    fieldName = serializers.CharField(source='field_name', max_length=100)
    fieldLabel = CleanCharField(source='field_label', max_length=200)
    fieldType = serializers.ChoiceField(source='field_type',
                                        choices=[c for c, _ in CustomFieldDefinition.FIELD_TYPE_CHOICES])
    isRequired = serializers.BooleanField(source='is_required', required=False)
    validationRules = serializers.DictField(source='validation_rules', required=False)
    selectOptions = serializers.ListField(source='select_options', child=SelectOptionField(), required=False,
                                          allow_null=True)
    allowMultiple = serializers.BooleanField(source='allow_multiple', required=False)
    helpText = CleanCharField(source='help_text', required=False, allow_blank=True, max_length=255)
    displayOrder = serializers.IntegerField(source='display_order', required=False, min_value=0)
    formula = serializers.CharField(required=False, allow_blank=True)
    decimalPlaces = serializers.IntegerField(source='decimal_places', required=False, min_value=0, max_value=6)
    isActive = serializers.BooleanField(source='is_active', required=False)


class ReorderSerializer(serializers.Serializer):
    ids = serializers.ListField(child=serializers.IntegerField(), allow_empty=False)


class PatientValuesSerializer(serializers.Serializer):
    values = serializers.DictField(child=serializers.JSONField(allow_null=True), allow_empty=False)


class FormulaCheckSerializer(serializers.Serializer):
    formula = serializers.CharField()


class DefinitionListQuerySerializer(serializers.Serializer):
    categoryId = serializers.IntegerField(required=False)
    includeInactive = serializers.BooleanField(required=False, default=False)
