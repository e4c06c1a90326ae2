from rest_framework import serializers

from practice.models import Document
from practice.serializers.common import CleanCharField, PageQuerySerializer

CATEGORIES = [c for c, _ in Document.CATEGORY_CHOICES]


class DocumentListQuerySerializer(PageQuerySerializer):
    patientId = serializers.IntegerField(required=False)
    visitId = serializers.IntegerField(required=False)
    category = serializers.ChoiceField(choices=CATEGORIES, required=False)


class DocumentCreateSerializer(serializers.Serializer):
    patientId = serializers.IntegerField()
    visitId = serializers.IntegerField(required=False, allow_null=True)
    file = serializers.FileField(required=False, allow_empty_file=False)
    fileName = CleanCharField(source='file_name', required=False, allow_blank=True, max_length=255, default='')
    category = serializers.ChoiceField(choices=CATEGORIES, required=False, default='other')
    description = serializers.CharField(required=False, allow_blank=True, default='')


class DocumentUpdateSerializer(serializers.Serializer):
    fileName = CleanCharField(source='file_name', required=False, max_length=255)
    category = serializers.ChoiceField(choices=CATEGORIES, required=False)
    description = serializers.CharField(required=False, allow_blank=True)
