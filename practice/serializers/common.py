import bleach
from rest_framework import serializers


def clean_text(value):
    if value is None:
        return value
    return bleach.clean(value.strip(), tags=[], strip=True)


class CleanCharField(serializers.CharField):
    """CharField whose value is stripped of HTML."""

    def to_internal_value(self, data):
        return clean_text(super().to_internal_value(data))


class PageQuerySerializer(serializers.Serializer):
    page = serializers.IntegerField(required=False, min_value=1, default=1)
    pageSize = serializers.IntegerField(required=False, min_value=1, max_value=200, default=20)


class DateRangeQuerySerializer(PageQuerySerializer):
    start = serializers.DateTimeField(required=False)
    end = serializers.DateTimeField(required=False)

    def validate(self, attrs):
        if attrs.get('start') and attrs.get('end') and attrs['start'] > attrs['end']:
            raise serializers.ValidationError({'end': 'End must be after start'})
        return attrs
