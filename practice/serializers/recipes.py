from decimal import Decimal

from rest_framework import serializers

from practice.models import Recipe
from practice.serializers.common import CleanCharField, PageQuerySerializer


class IngredientListQuerySerializer(PageQuerySerializer):
    q = serializers.CharField(required=False, allow_blank=True)
    category = serializers.CharField(required=False, allow_blank=True)
    includeInactive = serializers.BooleanField(required=False, default=False)


class IngredientSerializer(serializers.Serializer):
    name = CleanCharField(max_length=200)
    category = CleanCharField(required=False, allow_blank=True, max_length=50)
    defaultUnit = serializers.CharField(source='default_unit', required=False, max_length=20)
    nutritionPer100g = serializers.DictField(source='nutrition_per_100g', required=False, allow_empty=True)
    allergens = serializers.ListField(child=CleanCharField(max_length=50), required=False)
    isActive = serializers.BooleanField(source='is_active', required=False)


class RecipeListQuerySerializer(PageQuerySerializer):
    q = serializers.CharField(required=False, allow_blank=True)
    status = serializers.ChoiceField(choices=[c for c, _ in Recipe.STATUS_CHOICES], required=False)
    tag = serializers.CharField(required=False, allow_blank=True)


class RecipeItemSerializer(serializers.Serializer):
    ingredientId = serializers.IntegerField(source='ingredient_id')
    quantity = serializers.DecimalField(max_digits=10, decimal_places=2, required=False, allow_null=True,
                                        min_value=Decimal('0'))
    unit = serializers.CharField(required=False, allow_blank=True, max_length=20)
    notes = CleanCharField(required=False, allow_blank=True, max_length=255)
    isOptional = serializers.BooleanField(source='is_optional', required=False, default=False)


class RecipeSerializer(serializers.Serializer):
    title = CleanCharField(max_length=200)
    description = CleanCharField(required=False, allow_blank=True)
    instructions = CleanCharField(required=False, allow_blank=True)
    prepTimeMinutes = serializers.IntegerField(source='prep_time_minutes', required=False, allow_null=True,
                                               min_value=0)
    cookTimeMinutes = serializers.IntegerField(source='cook_time_minutes', required=False, allow_null=True,
                                               min_value=0)
    servings = serializers.IntegerField(required=False, min_value=1, max_value=100)
    difficulty = serializers.ChoiceField(choices=[c for c, _ in Recipe.DIFFICULTY_CHOICES], required=False)
    tags = serializers.ListField(child=CleanCharField(max_length=50), required=False)
    ingredients = RecipeItemSerializer(many=True, required=False)


class RecipeStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[c for c, _ in Recipe.STATUS_CHOICES])
