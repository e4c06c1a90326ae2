from rest_framework import serializers

from practice.serializers.common import CleanCharField, PageQuerySerializer


class UserListQuerySerializer(PageQuerySerializer):
    q = serializers.CharField(required=False, allow_blank=True)
    role = serializers.CharField(required=False, allow_blank=True)
    isActive = serializers.BooleanField(required=False, allow_null=True, default=None)


class UserCreateSerializer(serializers.Serializer):
    username = serializers.RegexField(r'^[\w.@+-]{3,150}$',
                                      error_messages={'invalid': 'Letters, digits and @.+-_ only (3-150 chars)'})
    password = serializers.CharField(trim_whitespace=False, write_only=True)
    email = serializers.EmailField(required=False, allow_blank=True, default='')
    firstName = CleanCharField(source='first_name', required=False, allow_blank=True, max_length=150, default='')
    lastName = CleanCharField(source='last_name', required=False, allow_blank=True, max_length=150, default='')
    phone = CleanCharField(required=False, allow_blank=True, max_length=30, default='')
    role = serializers.CharField(required=False, default='DIETITIAN')


class UserUpdateSerializer(serializers.Serializer):
    email = serializers.EmailField(required=False, allow_blank=True)
    firstName = CleanCharField(source='first_name', required=False, allow_blank=True, max_length=150)
    lastName = CleanCharField(source='last_name', required=False, allow_blank=True, max_length=150)
    phone = CleanCharField(required=False, allow_blank=True, max_length=30)
    role = serializers.CharField(required=False)
    password = serializers.CharField(required=False, trim_whitespace=False, write_only=True)


class ActiveToggleSerializer(serializers.Serializer):
    isActive = serializers.BooleanField()


class ThemeSelectSerializer(serializers.Serializer):
    themeId = serializers.IntegerField(allow_null=True)


class RoleCreateSerializer(serializers.Serializer):
    name = serializers.RegexField(r'^[A-Z][A-Z0-9_]{1,49}$',
                                  error_messages={'invalid': 'Upper-case letters, digits and underscores only'})
    description = CleanCharField(required=False, allow_blank=True, default='')
    permissions = serializers.ListField(child=serializers.CharField(), required=False, default=list)


class RoleUpdateSerializer(serializers.Serializer):
    name = serializers.RegexField(r'^[A-Z][A-Z0-9_]{1,49}$', required=False,
                                  error_messages={'invalid': 'Upper-case letters, digits and underscores only'})
    description = CleanCharField(required=False, allow_blank=True)
    isActive = serializers.BooleanField(source='is_active', required=False)


class RolePermissionsSerializer(serializers.Serializer):
    permissions = serializers.ListField(child=serializers.CharField(), allow_empty=True)
