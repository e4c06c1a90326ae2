from django.utils import timezone
from rest_framework import serializers


class LoginSerializer(serializers.Serializer):
    username = serializers.CharField()
    password = serializers.CharField(trim_whitespace=False)
    rememberMe = serializers.BooleanField(required=False, default=False)

    def validate_username(self, v):
        v = (v or '').strip()
        if not v:
            raise serializers.ValidationError('Username is required')
        return v


class LogoutSerializer(serializers.Serializer):
    refresh = serializers.CharField(required=False, allow_blank=True)
    allDevices = serializers.BooleanField(required=False, default=False)

    def validate(self, attrs):
        if not attrs.get('refresh') and not attrs.get('allDevices'):
            raise serializers.ValidationError({'refresh': 'Provide a refresh token or allDevices=true'})
        return attrs


class ChangePasswordSerializer(serializers.Serializer):
    currentPassword = serializers.CharField(trim_whitespace=False)
    newPassword = serializers.CharField(trim_whitespace=False)


class ForgotPasswordSerializer(serializers.Serializer):
    email = serializers.EmailField()


class ResetPasswordSerializer(serializers.Serializer):
    token = serializers.RegexField(r'^[0-9a-f]{64}$', error_messages={'invalid': 'Invalid reset token'})
    newPassword = serializers.CharField(trim_whitespace=False)


class ApiKeyCreateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=100)
    expiresAt = serializers.DateTimeField(required=False, allow_null=True)

    def validate_expiresAt(self, v):
        if v is not None and v <= timezone.now():
            raise serializers.ValidationError('Expiry must be in the future')
        return v
