from rest_framework import serializers

from practice.serializers.common import CleanCharField, DateRangeQuerySerializer


class ThemeSerializer(serializers.Serializer):
    name = CleanCharField(max_length=100)
    description = CleanCharField(required=False, allow_blank=True, max_length=255)
    colors = serializers.DictField(child=serializers.CharField())


class JobUpdateSerializer(serializers.Serializer):
    cron = serializers.CharField(required=False, max_length=100)
    isEnabled = serializers.BooleanField(required=False)
    description = CleanCharField(required=False, allow_blank=True, max_length=255)


class AuditQuerySerializer(DateRangeQuerySerializer):
    userId = serializers.IntegerField(required=False)
    action = serializers.CharField(required=False, allow_blank=True)
    resourceType = serializers.CharField(required=False, allow_blank=True)
    resourceId = serializers.CharField(required=False, allow_blank=True)
    status = serializers.CharField(required=False, allow_blank=True)
