"""
Response envelope helpers.

Every successful response is ``{"ok": true, "data": ...}``; list endpoints
add ``"pagination": {"total", "page", "pageSize"}``.  Errors are shaped by
:func:`practice.exceptions.api_exception_handler`.
"""
from __future__ import annotations

from typing import Callable, Iterable

from rest_framework import status as http
from rest_framework.exceptions import NotFound
from rest_framework.response import Response


def ok(data=None, status: int = http.HTTP_200_OK, **extra) -> Response:
    body = {'ok': True, 'data': data}
    body.update(extra)
    return Response(body, status=status)


def created(data=None, **extra) -> Response:
    return ok(data, status=http.HTTP_201_CREATED, **extra)


def paginated(queryset, query: dict, formatter: Callable) -> Response:
    page = query.get('page') or 1
    page_size = query.get('pageSize') or 20
    total = queryset.count()
    start = (page - 1) * page_size
    rows: Iterable = queryset[start:start + page_size]
    return ok(
        [formatter(row) for row in rows],
        pagination={'total': total, 'page': page, 'pageSize': page_size},
    )


def get_object(queryset, pk, label: str = 'Resource'):
    obj = queryset.filter(pk=pk).first()
    if obj is None:
        raise NotFound(f'{label} not found')
    return obj
