from rest_framework import serializers

from practice.services.ai_provider import PROVIDERS
from practice.services.followups import LANGUAGES, TONES


class GenerateFollowupSerializer(serializers.Serializer):
    visitId = serializers.IntegerField()
    language = serializers.ChoiceField(choices=LANGUAGES, required=False, default='fr')
    tone = serializers.ChoiceField(choices=TONES, required=False, default='professional')
    includeNextSteps = serializers.BooleanField(required=False, default=True)
    includeNextAppointment = serializers.BooleanField(required=False, default=True)


class SendFollowupSerializer(serializers.Serializer):
    visitId = serializers.IntegerField()
    subject = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')
    bodyHtml = serializers.CharField(required=False, allow_blank=True, default='')
    bodyText = serializers.CharField(required=False, allow_blank=True, default='')
    useTemplate = serializers.BooleanField(required=False, default=False)

    def validate(self, attrs):
        if attrs['useTemplate']:
            return attrs
        if not attrs['subject']:
            raise serializers.ValidationError({'subject': 'This field is required.'})
        if not attrs['bodyHtml'] and not attrs['bodyText']:
            raise serializers.ValidationError({'bodyText': 'Provide an HTML or a text body'})
        return attrs


class AIConfigSerializer(serializers.Serializer):
    provider = serializers.ChoiceField(choices=list(PROVIDERS))
    model = serializers.CharField(required=False, allow_blank=True)
