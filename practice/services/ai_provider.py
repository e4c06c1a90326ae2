"""
LLM providers for follow-up generation.

OpenAI and Mistral speak the OpenAI chat-completions protocol, Anthropic
its messages API and Ollama its local ``/api/chat``.  The active provider
and model live in :class:`SystemSetting` (``ai_provider``/``ai_model``),
falling back to the ``AI_PROVIDER``/``AI_MODEL`` settings.  A provider is
available when its API key (or base URL for Ollama) is configured.
"""
from __future__ import annotations

import logging
import re

import requests
from django.conf import settings
from rest_framework.exceptions import ValidationError

from practice.exceptions import UpstreamError
from practice.models import SystemSetting

logger = logging.getLogger(__name__)

PROVIDERS = {
    'openai': {
        'name': 'OpenAI',
        'models': ['gpt-4o-mini', 'gpt-4o', 'gpt-4-turbo'],
        'setting': 'OPENAI_API_KEY',
        'url': 'https://api.openai.com/v1/chat/completions',
    },
    'anthropic': {
        'name': 'Anthropic',
        'models': ['claude-3-haiku-20240307', 'claude-sonnet-4-20250514', 'claude-opus-4-20250514'],
        'setting': 'ANTHROPIC_API_KEY',
        'url': 'https://api.anthropic.com/v1/messages',
    },
    'mistral': {
        'name': 'Mistral AI',
        'models': ['mistral-small-latest', 'mistral-medium-latest', 'mistral-large-latest', 'open-mistral-7b'],
        'setting': 'MISTRAL_API_KEY',
        'url': 'https://api.mistral.ai/v1/chat/completions',
    },
    'ollama': {
        'name': 'Ollama (local)',
        'models': ['llama3.2', 'llama3.1:8b', 'mistral', 'gemma2', 'qwen2.5'],
        'setting': 'OLLAMA_BASE_URL',
        'url': None,
    },
}

FENCE_START = re.compile(r'^```(?:json)?\s*')
FENCE_END = re.compile(r'\s*```$')


def strip_fences(content: str) -> str:
    content = FENCE_START.sub('', (content or '').strip())
    return FENCE_END.sub('', content.strip())


def is_available(provider: str) -> bool:
    info = PROVIDERS.get(provider)
    return bool(info and getattr(settings, info['setting'], ''))


def list_providers() -> list[dict]:
    return [
        {'id': key, 'name': info['name'], 'models': info['models'], 'available': is_available(key)}
        for key, info in PROVIDERS.items()
    ]


def get_configuration() -> dict:
    provider = SystemSetting.get_value('ai_provider', settings.AI_PROVIDER or None)
    model = SystemSetting.get_value('ai_model', settings.AI_MODEL or None)
    if provider in PROVIDERS and not model:
        model = PROVIDERS[provider]['models'][0]
    return {
        'provider': provider if provider in PROVIDERS else None,
        'model': model if provider in PROVIDERS else None,
        'available': bool(provider in PROVIDERS and is_available(provider)),
    }


def save_configuration(provider: str, model: str | None = None) -> dict:
    info = PROVIDERS.get(provider)
    if info is None:
        raise ValidationError({'provider': f'Unknown provider: {provider}'})
    model = model or info['models'][0]
    if model not in info['models']:
        raise ValidationError({'model': f'Invalid model {model} for provider {provider}'})
    SystemSetting.set_value('ai_provider', provider, 'AI provider for follow-up generation')
    SystemSetting.set_value('ai_model', model, 'AI model for follow-up generation')
    logger.info('AI provider set to %s/%s', provider, model)
    return get_configuration()


def _raise_for_status(provider: str, response: requests.Response) -> None:
    if response.status_code < 400:
        return
    if response.status_code == 401:
        message = f'{PROVIDERS[provider]["name"]}: invalid API key'
    elif response.status_code == 429:
        message = f'{PROVIDERS[provider]["name"]}: rate limit exceeded, try again later'
    else:
        message = f'{PROVIDERS[provider]["name"]} returned HTTP {response.status_code}'
    logger.warning('AI provider error %s: %s', response.status_code, response.text[:500])
    raise UpstreamError(message)


def _post(provider: str, url: str, *, headers: dict, payload: dict) -> dict:
    try:
        response = requests.post(url, json=payload, headers=headers, timeout=settings.AI_TIMEOUT)
    except requests.RequestException as e:
        logger.warning('AI provider %s unreachable: %s', provider, e)
        raise UpstreamError(f'{PROVIDERS[provider]["name"]} is unreachable')
    _raise_for_status(provider, response)
    try:
        return response.json()
    except ValueError:
        raise UpstreamError(f'{PROVIDERS[provider]["name"]} returned an invalid response')


def generate(system_prompt: str, user_prompt: str, *, provider: str, model: str,
             max_tokens: int | None = None, temperature: float = 0.7) -> str:
    """Return the model's text answer with code fences removed."""
    max_tokens = max_tokens or settings.AI_MAX_TOKENS
    if provider in ('openai', 'mistral'):
        key = getattr(settings, PROVIDERS[provider]['setting'])
        data = _post(provider, PROVIDERS[provider]['url'],
                     headers={'Authorization': f'Bearer {key}'},
                     payload={
                         'model': model,
                         'messages': [
                             {'role': 'system', 'content': system_prompt},
                             {'role': 'user', 'content': user_prompt},
                         ],
                         'max_tokens': max_tokens,
                         'temperature': temperature,
                     })
        content = data['choices'][0]['message']['content']
    elif provider == 'anthropic':
        data = _post(provider, PROVIDERS[provider]['url'],
                     headers={'x-api-key': settings.ANTHROPIC_API_KEY, 'anthropic-version': '2023-06-01'},
                     payload={
                         'model': model,
                         'system': system_prompt,
                         'messages': [{'role': 'user', 'content': user_prompt}],
                         'max_tokens': max_tokens,
                         'temperature': temperature,
                     })
        content = ''.join(block.get('text', '') for block in data.get('content', []) if block.get('type') == 'text')
    elif provider == 'ollama':
        data = _post(provider, f"{settings.OLLAMA_BASE_URL.rstrip('/')}/api/chat",
                     headers={},
                     payload={
                         'model': model,
                         'messages': [
                             {'role': 'system', 'content': system_prompt},
                             {'role': 'user', 'content': user_prompt},
                         ],
                         'stream': False,
                         'options': {'temperature': temperature, 'num_predict': max_tokens},
                     })
        content = data.get('message', {}).get('content', '')
    else:
        raise ValidationError({'provider': f'Unknown provider: {provider}'})
    return strip_fences(content)
