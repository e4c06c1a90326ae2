import pytest
from django.urls import reverse

from practice.models import Ingredient, Recipe

pytestmark = pytest.mark.django_db


@pytest.fixture
def oats(db):
    return Ingredient.objects.create(name='Rolled oats', category='grains',
                                     nutrition_per_100g={'calories': 380, 'protein': 13}, allergens=['gluten'])


@pytest.fixture
def milk(db):
    return Ingredient.objects.create(name='Milk', default_unit='ml', nutrition_per_100g={'calories': 50, 'protein': 3.4},
                                     allergens=['milk'])


def overnight_oats(client, oats, milk, **extra):
    payload = {
        'title': 'Overnight oats', 'servings': 2, 'tags': ['breakfast'],
        'ingredients': [
            {'ingredientId': oats.pk, 'quantity': '80'},
            {'ingredientId': milk.pk, 'quantity': '200'},
            {'ingredientId': oats.pk, 'quantity': '1', 'unit': 'handful', 'isOptional': True},
        ],
    }
    payload.update(extra)
    return client.post(reverse('recipes_view'), payload, format='json')


def test_create_ingredient_validates_nutrition(client_for, dietitian):
    client = client_for(dietitian)
    r = client.post(reverse('ingredients_view'), {'name': 'Apple', 'nutritionPer100g': {'calories': 52}},
                    format='json')
    assert r.status_code == 201
    assert r.data['data']['nutritionPer100g'] == {'calories': 52.0}
    assert client.post(reverse('ingredients_view'), {'name': 'apple'}, format='json').status_code == 409
    bad = client.post(reverse('ingredients_view'), {'name': 'Pear', 'nutritionPer100g': {'vitamins': 1}},
                      format='json')
    assert bad.status_code == 400
    negative = client.post(reverse('ingredients_view'), {'name': 'Pear', 'nutritionPer100g': {'fat': -1}},
                           format='json')
    assert negative.status_code == 400


def test_recipe_nutrition_per_serving(client_for, dietitian, oats, milk):
    r = overnight_oats(client_for(dietitian), oats, milk)
    assert r.status_code == 201
    data = r.data['data']
    assert data['slug'] == 'overnight-oats'
    assert data['status'] == Recipe.DRAFT
    assert data['nutritionPerServing']['calories'] == 202.0
    assert data['nutritionPerServing']['protein'] == 8.6
    assert data['allergens'] == ['gluten', 'milk']
    assert [i['unit'] for i in data['ingredients']] == ['g', 'ml', 'handful']


def test_slugs_are_unique(client_for, dietitian, oats, milk):
    client = client_for(dietitian)
    overnight_oats(client, oats, milk)
    assert overnight_oats(client, oats, milk).data['data']['slug'] == 'overnight-oats-2'


def test_update_recomputes_nutrition(client_for, dietitian, oats, milk):
    client = client_for(dietitian)
    recipe_id = overnight_oats(client, oats, milk).data['data']['id']
    r = client.put(reverse('recipe_detail_view', args=[recipe_id]), {'servings': 4}, format='json')
    assert r.status_code == 200
    assert r.data['data']['nutritionPerServing']['calories'] == 101.0
    assert r.data['data']['slug'] == 'overnight-oats'


def test_unknown_ingredient(client_for, dietitian):
    r = client_for(dietitian).post(reverse('recipes_view'), {
        'title': 'Mystery', 'ingredients': [{'ingredientId': 999, 'quantity': '1'}],
    }, format='json')
    assert r.status_code == 400
    assert not Recipe.objects.exists()


def test_publish_requires_ingredients(client_for, dietitian, oats, milk):
    client = client_for(dietitian)
    empty = client.post(reverse('recipes_view'), {'title': 'Empty'}, format='json').data['data']
    r = client.put(reverse('recipe_status_view', args=[empty['id']]), {'status': 'published'}, format='json')
    assert r.status_code == 400

    recipe_id = overnight_oats(client, oats, milk).data['data']['id']
    r = client.put(reverse('recipe_status_view', args=[recipe_id]), {'status': 'published'}, format='json')
    assert r.status_code == 200
    assert r.data['data']['publishedAt'] is not None
    listed = client.get(reverse('recipes_view'), {'status': 'published'}).data['data']
    assert [x['id'] for x in listed] == [recipe_id]


def test_duplicate_recipe(client_for, dietitian, oats, milk):
    client = client_for(dietitian)
    recipe_id = overnight_oats(client, oats, milk).data['data']['id']
    r = client.post(reverse('recipe_duplicate_view', args=[recipe_id]))
    assert r.status_code == 201
    copy = r.data['data']
    assert copy['title'] == 'Overnight oats (copy)'
    assert copy['status'] == Recipe.DRAFT
    assert len(copy['ingredients']) == 3


def test_ingredient_delete_and_duplicate(client_for, dietitian, oats, milk):
    client = client_for(dietitian)
    overnight_oats(client, oats, milk)
    apple = Ingredient.objects.create(name='Apple')

    assert client.delete(reverse('ingredient_detail_view', args=[apple.pk])).data['data']['result'] == 'deleted'
    assert client.delete(reverse('ingredient_detail_view', args=[oats.pk])).data['data']['result'] == 'deactivated'
    names = [i['name'] for i in client.get(reverse('ingredients_view')).data['data']]
    assert names == ['Milk']

    first = client.post(reverse('ingredient_duplicate_view', args=[milk.pk])).data['data']
    second = client.post(reverse('ingredient_duplicate_view', args=[milk.pk])).data['data']
    assert (first['name'], second['name']) == ('Milk (copy)', 'Milk (copy) 2')
    assert second['allergens'] == ['milk']


def test_read_only_roles(client_for, viewer, oats):
    client = client_for(viewer)
    assert client.get(reverse('ingredients_view')).status_code == 200
    assert client.post(reverse('ingredients_view'), {'name': 'Kale'}, format='json').status_code == 403
    assert client.post(reverse('ingredient_duplicate_view', args=[oats.pk])).status_code == 403
