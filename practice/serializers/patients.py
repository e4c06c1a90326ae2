from django.utils import timezone
from rest_framework import serializers

from practice.models import Patient
from practice.serializers.common import CleanCharField, PageQuerySerializer


class PatientListQuerySerializer(PageQuerySerializer):
    q = serializers.CharField(required=False, allow_blank=True)
    isActive = serializers.BooleanField(required=False, allow_null=True, default=True)
    dietitianId = serializers.IntegerField(required=False)


class PatientSerializer(serializers.Serializer):
    firstName = CleanCharField(source='first_name', max_length=100)
    lastName = CleanCharField(source='last_name', max_length=100)
    dateOfBirth = serializers.DateField(source='date_of_birth', required=False, allow_null=True)
    gender = serializers.ChoiceField(choices=[c for c, _ in Patient.GENDER_CHOICES], required=False, allow_blank=True)
    email = serializers.EmailField(required=False, allow_blank=True)
    phone = CleanCharField(required=False, allow_blank=True, max_length=30)
    address = CleanCharField(required=False, allow_blank=True, max_length=255)
    city = CleanCharField(required=False, allow_blank=True, max_length=100)
    postalCode = CleanCharField(source='postal_code', required=False, allow_blank=True, max_length=20)
    medicalNotes = CleanCharField(source='medical_notes', required=False, allow_blank=True)
    dietaryPreferences = CleanCharField(source='dietary_preferences', required=False, allow_blank=True)
    allergies = CleanCharField(required=False, allow_blank=True)
    isActive = serializers.BooleanField(source='is_active', required=False)

    def validate_firstName(self, v):
        if not v:
            raise serializers.ValidationError('First name is required')
        return v

    def validate_lastName(self, v):
        if not v:
            raise serializers.ValidationError('Last name is required')
        return v

    def validate_dateOfBirth(self, v):
        if v and v > timezone.localdate():
            raise serializers.ValidationError('Date of birth cannot be in the future')
        return v


class DeleteQuerySerializer(serializers.Serializer):
    hard = serializers.BooleanField(required=False, default=False)


class DietitianLinkSerializer(serializers.Serializer):
    dietitianId = serializers.IntegerField()


class PortalAccountSerializer(serializers.Serializer):
    password = serializers.CharField(trim_whitespace=False, write_only=True)
