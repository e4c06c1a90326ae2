from rest_framework import serializers

from practice.models import Visit
from practice.serializers.common import CleanCharField, DateRangeQuerySerializer


class VisitListQuerySerializer(DateRangeQuerySerializer):
    patientId = serializers.IntegerField(required=False)
    dietitianId = serializers.IntegerField(required=False)
    status = serializers.ChoiceField(choices=[c for c, _ in Visit.STATUS_CHOICES], required=False)


class UpcomingQuerySerializer(serializers.Serializer):
    days = serializers.IntegerField(required=False, min_value=1, max_value=90, default=7)


class VisitSerializer(serializers.Serializer):
    patientId = serializers.IntegerField()
    dietitianId = serializers.IntegerField(source='dietitian_id', required=False, allow_null=True)
    visitDate = serializers.DateTimeField(source='visit_date')
    visitType = CleanCharField(source='visit_type', required=False, max_length=100)
    durationMinutes = serializers.IntegerField(source='duration_minutes', required=False, min_value=5,
                                               max_value=480)
    status = serializers.ChoiceField(choices=[c for c, _ in Visit.STATUS_CHOICES], required=False)
    chiefComplaint = CleanCharField(source='chief_complaint', required=False, allow_blank=True)
    assessment = CleanCharField(required=False, allow_blank=True)
    recommendations = CleanCharField(required=False, allow_blank=True)
    notes = CleanCharField(required=False, allow_blank=True)
    nextVisitDate = serializers.DateTimeField(source='next_visit_date', required=False, allow_null=True)

    def validate(self, attrs):
        visit_date = attrs.get('visit_date') or getattr(self.instance, 'visit_date', None)
        next_date = attrs.get('next_visit_date')
        if visit_date and next_date and next_date <= visit_date:
            raise serializers.ValidationError({'nextVisitDate': 'Next visit must be after this visit'})
        return attrs


class MeasureValueSerializer(serializers.Serializer):
    measureId = serializers.IntegerField(source='measure_id')
    value = serializers.JSONField(allow_null=True)


class CompleteVisitSerializer(serializers.Serializer):
    chiefComplaint = CleanCharField(source='chief_complaint', required=False, allow_blank=True)
    assessment = CleanCharField(required=False, allow_blank=True)
    recommendations = CleanCharField(required=False, allow_blank=True)
    notes = CleanCharField(required=False, allow_blank=True)
    nextVisitDate = serializers.DateTimeField(source='next_visit_date', required=False, allow_null=True)
    measures = MeasureValueSerializer(many=True, required=False)
