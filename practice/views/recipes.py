"""
Recipe library and ingredient catalog views.

Both resources share the ``recipes.*`` permission codes.
"""
from __future__ import annotations

from rest_framework.decorators import api_view, permission_classes

from practice.models import Ingredient, Recipe
from practice.permissions import IsStaffRole, method_permissions, permission_required
from practice.responses import created, get_object, ok, paginated
from practice.serializers.recipes import (
    IngredientListQuerySerializer,
    IngredientSerializer,
    RecipeListQuerySerializer,
    RecipeSerializer,
    RecipeStatusSerializer,
)
from practice.services import recipes as recipe_service
from practice.services.audit import log_action

READ_WRITE = method_permissions(GET='recipes.read', POST='recipes.create', PUT='recipes.update',
                                DELETE='recipes.delete')


# ---------------------------------------------------------------------
# Ingredients
# ---------------------------------------------------------------------
@api_view(['GET', 'POST'])
@permission_classes([IsStaffRole, READ_WRITE])
def ingredients_view(request):
    if request.method == 'GET':
        q = IngredientListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        vd = q.validated_data
        qs = recipe_service.search_ingredients(q=vd.get('q'), category=vd.get('category'),
                                               include_inactive=vd['includeInactive'])
        return paginated(qs, vd, recipe_service.format_ingredient)

    s = IngredientSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    ingredient = recipe_service.save_ingredient(Ingredient(), s.validated_data, user=request.user)
    return created(recipe_service.format_ingredient(ingredient))


@api_view(['GET', 'PUT', 'DELETE'])
@permission_classes([IsStaffRole, READ_WRITE])
def ingredient_detail_view(request, pk: int):
    ingredient = get_object(Ingredient.objects.all(), pk, 'Ingredient')
    if request.method == 'GET':
        return ok(recipe_service.format_ingredient(ingredient))
    if request.method == 'PUT':
        s = IngredientSerializer(data=request.data, partial=True)
        s.is_valid(raise_exception=True)
        ingredient = recipe_service.save_ingredient(ingredient, s.validated_data)
        return ok(recipe_service.format_ingredient(ingredient))
    return ok({'id': pk, 'result': recipe_service.delete_ingredient(ingredient)})


@api_view(['POST'])
@permission_classes([IsStaffRole, permission_required('recipes.create')])
def ingredient_duplicate_view(request, pk: int):
    ingredient = get_object(Ingredient.objects.all(), pk, 'Ingredient')
    copy = recipe_service.duplicate_ingredient(ingredient, user=request.user)
    return created(recipe_service.format_ingredient(copy))


# ---------------------------------------------------------------------
# Recipes
# ---------------------------------------------------------------------
@api_view(['GET', 'POST'])
@permission_classes([IsStaffRole, READ_WRITE])
def recipes_view(request):
    if request.method == 'GET':
        q = RecipeListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        vd = q.validated_data
        qs = recipe_service.search_recipes(q=vd.get('q'), status=vd.get('status'), tag=vd.get('tag'))
        return paginated(qs, vd, recipe_service.format_recipe)

    s = RecipeSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    recipe = recipe_service.save_recipe(Recipe(), s.validated_data, user=request.user)
    log_action(user=request.user, action='CREATE', resource_type='recipe', resource_id=recipe.pk,
               changes={'title': recipe.title}, request=request)
    return created(recipe_service.format_recipe(recipe, detailed=True))


@api_view(['GET', 'PUT', 'DELETE'])
@permission_classes([IsStaffRole, READ_WRITE])
def recipe_detail_view(request, pk: int):
    recipe = get_object(Recipe.objects.all(), pk, 'Recipe')
    if request.method == 'GET':
        return ok(recipe_service.format_recipe(recipe, detailed=True))
    if request.method == 'PUT':
        s = RecipeSerializer(data=request.data, partial=True)
        s.is_valid(raise_exception=True)
        recipe = recipe_service.save_recipe(recipe, s.validated_data)
        return ok(recipe_service.format_recipe(recipe, detailed=True))
    recipe.delete()
    log_action(user=request.user, action='DELETE', resource_type='recipe', resource_id=pk, request=request)
    return ok({'deleted': True})


@api_view(['PUT'])
@permission_classes([IsStaffRole, permission_required('recipes.update')])
def recipe_status_view(request, pk: int):
    recipe = get_object(Recipe.objects.all(), pk, 'Recipe')
    s = RecipeStatusSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    recipe = recipe_service.set_status(recipe, s.validated_data['status'])
    return ok(recipe_service.format_recipe(recipe))


@api_view(['POST'])
@permission_classes([IsStaffRole, permission_required('recipes.create')])
def recipe_duplicate_view(request, pk: int):
    recipe = get_object(Recipe.objects.all(), pk, 'Recipe')
    copy = recipe_service.duplicate_recipe(recipe, user=request.user)
    return created(recipe_service.format_recipe(copy, detailed=True))
