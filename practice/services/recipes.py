"""
Recipe library and ingredient catalog.

Per-serving nutrition is derived from each ingredient's
``nutrition_per_100g``.  Quantities are converted to grams with
``UNIT_GRAMS`` (millilitres count as grams); items in any other unit, or
without a quantity, are left out of the totals.
"""
from __future__ import annotations

import logging
from decimal import Decimal

from django.db import transaction
from django.db.models import Q
from django.utils import timezone
from django.utils.text import slugify
from rest_framework.exceptions import ValidationError

from practice.exceptions import Conflict
from practice.models import Ingredient, Recipe, RecipeIngredient

logger = logging.getLogger(__name__)

NUTRIENTS = ('calories', 'protein', 'carbs', 'fat', 'fiber', 'sugar', 'sodium')
UNIT_GRAMS = {
    'g': Decimal('1'),
    'kg': Decimal('1000'),
    'mg': Decimal('0.001'),
    'ml': Decimal('1'),
    'cl': Decimal('10'),
    'dl': Decimal('100'),
    'l': Decimal('1000'),
    'tsp': Decimal('5'),
    'tbsp': Decimal('15'),
    'cup': Decimal('240'),
}


# ---------------------------------------------------------------------
# Ingredients
# ---------------------------------------------------------------------
def format_ingredient(ingredient: Ingredient) -> dict:
    return {
        'id': ingredient.id,
        'name': ingredient.name,
        'category': ingredient.category or None,
        'defaultUnit': ingredient.default_unit,
        'nutritionPer100g': ingredient.nutrition_per_100g or {},
        'allergens': ingredient.allergens or [],
        'isActive': ingredient.is_active,
    }


def _clean_nutrition(data) -> dict:
    if data in (None, ''):
        return {}
    if not isinstance(data, dict):
        raise ValidationError({'nutritionPer100g': 'Must be an object'})
    cleaned = {}
    for key, value in data.items():
        if key not in NUTRIENTS:
            raise ValidationError({'nutritionPer100g': f'Unknown nutrient: {key}'})
        if value is None:
            continue
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise ValidationError({'nutritionPer100g': f'{key} must be a number'})
        if number < 0:
            raise ValidationError({'nutritionPer100g': f'{key} cannot be negative'})
        cleaned[key] = number
    return cleaned


def search_ingredients(*, q=None, category=None, include_inactive=False):
    qs = Ingredient.objects.all()
    if not include_inactive:
        qs = qs.filter(is_active=True)
    if q:
        qs = qs.filter(name__icontains=q)
    if category:
        qs = qs.filter(category=category)
    return qs.order_by('name')


def save_ingredient(ingredient: Ingredient, data: dict, *, user=None) -> Ingredient:
    if 'name' in data:
        name = data['name'].strip()
        if Ingredient.objects.filter(name__iexact=name).exclude(pk=ingredient.pk).exists():
            raise Conflict(f"Ingredient '{name}' already exists")
        ingredient.name = name
    if 'nutrition_per_100g' in data:
        ingredient.nutrition_per_100g = _clean_nutrition(data['nutrition_per_100g'])
    for attr in ('category', 'default_unit', 'allergens', 'is_active'):
        if attr in data and data[attr] is not None:
            setattr(ingredient, attr, data[attr])
    if ingredient.pk is None:
        ingredient.created_by = user
    ingredient.save()
    return ingredient


def delete_ingredient(ingredient: Ingredient) -> str:
    if ingredient.recipe_items.exists():
        ingredient.is_active = False
        ingredient.save(update_fields=['is_active'])
        return 'deactivated'
    ingredient.delete()
    return 'deleted'


def duplicate_ingredient(ingredient: Ingredient, *, user=None) -> Ingredient:
    base = f"{ingredient.name} (copy)"
    name, n = base, 2
    while Ingredient.objects.filter(name__iexact=name).exists():
        name = f"{base} {n}"
        n += 1
    return Ingredient.objects.create(
        name=name, category=ingredient.category, default_unit=ingredient.default_unit,
        nutrition_per_100g=dict(ingredient.nutrition_per_100g or {}),
        allergens=list(ingredient.allergens or []), created_by=user,
    )


# ---------------------------------------------------------------------
# Recipes
# ---------------------------------------------------------------------
def unique_slug(title: str, exclude_pk=None) -> str:
    base = slugify(title)[:200] or 'recipe'
    slug, n = base, 2
    qs = Recipe.objects.all()
    if exclude_pk:
        qs = qs.exclude(pk=exclude_pk)
    while qs.filter(slug=slug).exists():
        slug = f"{base}-{n}"
        n += 1
    return slug


def compute_nutrition(items, servings: int) -> dict:
    totals = {key: Decimal('0') for key in NUTRIENTS}
    counted = False
    for item in items:
        factor = UNIT_GRAMS.get((item.unit or item.ingredient.default_unit or '').lower())
        if factor is None or item.quantity is None:
            continue
        grams = Decimal(item.quantity) * factor
        for key, value in (item.ingredient.nutrition_per_100g or {}).items():
            if key in totals and value is not None:
                totals[key] += grams * Decimal(str(value)) / 100
                counted = True
    if not counted:
        return {}
    servings = max(int(servings or 1), 1)
    return {key: float(round(value / servings, 1)) for key, value in totals.items()}


def format_recipe(recipe: Recipe, *, detailed: bool = False) -> dict:
    data = {
        'id': recipe.id,
        'title': recipe.title,
        'slug': recipe.slug,
        'description': recipe.description,
        'prepTimeMinutes': recipe.prep_time_minutes,
        'cookTimeMinutes': recipe.cook_time_minutes,
        'servings': recipe.servings,
        'difficulty': recipe.difficulty,
        'status': recipe.status,
        'tags': recipe.tags or [],
        'nutritionPerServing': recipe.nutrition_per_serving or {},
        'publishedAt': recipe.published_at.isoformat() if recipe.published_at else None,
        'createdBy': recipe.created_by_id,
        'createdAt': recipe.created_at.isoformat() if recipe.created_at else None,
    }
    if detailed:
        data['instructions'] = recipe.instructions
        data['ingredients'] = [{
            'id': item.id,
            'ingredientId': item.ingredient_id,
            'name': item.ingredient.name,
            'quantity': float(item.quantity) if item.quantity is not None else None,
            'unit': item.unit or item.ingredient.default_unit,
            'notes': item.notes,
            'isOptional': item.is_optional,
            'allergens': item.ingredient.allergens or [],
        } for item in recipe.items.select_related('ingredient')]
        allergens = sorted({a for i in data['ingredients'] for a in i['allergens']})
        data['allergens'] = allergens
    return data


def search_recipes(*, q=None, status=None, tag=None):
    qs = Recipe.objects.all()
    if q:
        qs = qs.filter(Q(title__icontains=q) | Q(description__icontains=q))
    if status:
        qs = qs.filter(status=status)
    if tag:
        qs = qs.filter(tags__icontains=tag)
    return qs.order_by('-created_at', '-id')


def _set_items(recipe: Recipe, items) -> None:
    ids = [i['ingredient_id'] for i in items]
    ingredients = {i.pk: i for i in Ingredient.objects.filter(pk__in=ids)}
    missing = [pk for pk in ids if pk not in ingredients]
    if missing:
        raise ValidationError({'ingredients': f"Unknown ingredient id(s): {', '.join(map(str, missing))}"})
    recipe.items.all().delete()
    RecipeIngredient.objects.bulk_create([
        RecipeIngredient(
            recipe=recipe, ingredient=ingredients[item['ingredient_id']], quantity=item.get('quantity'),
            unit=item.get('unit') or ingredients[item['ingredient_id']].default_unit,
            notes=item.get('notes') or '', is_optional=bool(item.get('is_optional')), display_order=index,
        )
        for index, item in enumerate(items)
    ])


RECIPE_FIELDS = ('description', 'instructions', 'prep_time_minutes', 'cook_time_minutes', 'servings',
                 'difficulty', 'tags')


def save_recipe(recipe: Recipe, data: dict, *, user=None) -> Recipe:
    with transaction.atomic():
        if data.get('title'):
            if recipe.pk is None or data['title'] != recipe.title:
                recipe.slug = unique_slug(data['title'], exclude_pk=recipe.pk)
            recipe.title = data['title']
        for attr in RECIPE_FIELDS:
            if attr in data and data[attr] is not None:
                setattr(recipe, attr, data[attr])
        if recipe.pk is None:
            recipe.created_by = user
        recipe.save()
        if data.get('ingredients') is not None:
            _set_items(recipe, data['ingredients'])
        recipe.nutrition_per_serving = compute_nutrition(
            recipe.items.select_related('ingredient'), recipe.servings)
        recipe.save(update_fields=['nutrition_per_serving', 'updated_at'])
    return recipe


def set_status(recipe: Recipe, status: str) -> Recipe:
    if status == Recipe.PUBLISHED:
        if not recipe.items.exists():
            raise ValidationError({'status': 'Add at least one ingredient before publishing'})
        recipe.published_at = recipe.published_at or timezone.now()
    recipe.status = status
    recipe.save(update_fields=['status', 'published_at', 'updated_at'])
    return recipe


def duplicate_recipe(recipe: Recipe, *, user=None) -> Recipe:
    with transaction.atomic():
        title = f"{recipe.title} (copy)"
        copy = Recipe.objects.create(
            title=title, slug=unique_slug(title), description=recipe.description,
            instructions=recipe.instructions, prep_time_minutes=recipe.prep_time_minutes,
            cook_time_minutes=recipe.cook_time_minutes, servings=recipe.servings,
            difficulty=recipe.difficulty, tags=list(recipe.tags or []),
            nutrition_per_serving=dict(recipe.nutrition_per_serving or {}), created_by=user,
        )
        RecipeIngredient.objects.bulk_create([
            RecipeIngredient(recipe=copy, ingredient_id=item.ingredient_id, quantity=item.quantity, unit=item.unit,
                             notes=item.notes, is_optional=item.is_optional, display_order=item.display_order)
            for item in recipe.items.all()
        ])
    return copy
