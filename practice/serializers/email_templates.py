from rest_framework import serializers

from practice.models import EmailLog, EmailTemplate
from practice.serializers.common import CleanCharField, DateRangeQuerySerializer


class TemplateListQuerySerializer(serializers.Serializer):
    category = serializers.ChoiceField(choices=[c for c, _ in EmailTemplate.CATEGORY_CHOICES], required=False)
    isActive = serializers.BooleanField(required=False, allow_null=True, default=None)


class TemplateSerializer(serializers.Serializer):
    slug = serializers.SlugField(max_length=100)
    name = CleanCharField(max_length=200)
    category = serializers.ChoiceField(choices=[c for c, _ in EmailTemplate.CATEGORY_CHOICES], required=False)
    description = CleanCharField(required=False, allow_blank=True, max_length=255)
    subject = serializers.CharField(max_length=255)
    # bodies keep their markup; values are escaped at render time
    bodyHtml = serializers.CharField(source='body_html', required=False, allow_blank=True)
    bodyText = serializers.CharField(source='body_text', required=False, allow_blank=True)
    isActive = serializers.BooleanField(source='is_active', required=False)

    def validate(self, attrs):
        if self.partial:
            return attrs
        if not attrs.get('body_html') and not attrs.get('body_text'):
            raise serializers.ValidationError({'bodyText': 'Provide an HTML or a text body'})
        return attrs


class PreviewSerializer(serializers.Serializer):
    variables = serializers.DictField(child=serializers.CharField(allow_blank=True), required=False, default=dict)


class EmailLogQuerySerializer(DateRangeQuerySerializer):
    patientId = serializers.IntegerField(required=False)
    emailType = serializers.CharField(required=False, allow_blank=True)
    status = serializers.ChoiceField(choices=[c for c, _ in EmailLog.STATUS_CHOICES], required=False)
