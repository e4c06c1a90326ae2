"""
E-mail template rendering.

Templates use two constructs only:

* ``{{name}}``, replaced by the context value (HTML-escaped in HTML bodies,
  empty when missing);
* ``{{#if name}}...{{/if}}``, kept when ``name`` is truthy and dropped
  otherwise.  Blocks may nest.
"""
from __future__ import annotations

import re

from django.db import transaction
from django.utils.html import escape
from rest_framework.exceptions import ValidationError

from practice.exceptions import Conflict
from practice.models import EmailTemplate

VAR_RE = re.compile(r'\{\{\s*([a-zA-Z_][a-zA-Z0-9_]*)\s*\}\}')
# innermost block: the body may not open another block
IF_RE = re.compile(r'\{\{#if\s+([a-zA-Z_][a-zA-Z0-9_]*)\s*\}\}((?:(?!\{\{#if\s).)*?)\{\{/if\}\}', re.S)

COMMON_VARIABLES = ['patient_name', 'patient_first_name', 'dietitian_name', 'practice_name']

CATEGORY_VARIABLES: dict[str, list[str]] = {
    'invoice': COMMON_VARIABLES + ['invoice_number', 'invoice_date', 'due_date', 'amount_total',
                                   'amount_due', 'service_description'],
    'appointment_reminder': COMMON_VARIABLES + ['appointment_date', 'appointment_time', 'visit_type',
                                                'duration_minutes'],
    'followup': COMMON_VARIABLES + ['visit_date', 'summary', 'next_visit_date'],
    'document_share': COMMON_VARIABLES + ['document_name', 'document_description', 'share_link'],
    'password_reset': ['user_name', 'reset_link', 'expires_minutes', 'practice_name'],
    'general': COMMON_VARIABLES,
}

SAMPLE_DATA = {
    'patient_name': 'Marie Dupont',
    'patient_first_name': 'Marie',
    'dietitian_name': 'Dr. Jean Martin',
    'practice_name': 'NutriVault',
    'invoice_number': 'INV-2024-000042',
    'invoice_date': '2024-03-01',
    'due_date': '2024-03-31',
    'amount_total': '60.00',
    'amount_due': '60.00',
    'service_description': 'Follow-up consultation',
    'appointment_date': '2024-03-15',
    'appointment_time': '14:30',
    'visit_type': 'Follow-up',
    'duration_minutes': '45',
    'visit_date': '2024-03-01',
    'summary': 'Good progress on the meal plan.',
    'next_visit_date': '2024-04-01',
    'document_name': 'meal-plan.pdf',
    'document_description': 'Weekly meal plan',
    'share_link': 'https://example.com/share/abc',
    'user_name': 'Jean Martin',
    'reset_link': 'https://example.com/reset-password?token=abc',
    'expires_minutes': '60',
}

DEFAULT_TEMPLATES = [
    {
        'slug': 'invoice',
        'name': 'Invoice',
        'category': 'invoice',
        'subject': 'Invoice {{invoice_number}}',
        'body_text': 'Hello {{patient_name}},\n\nPlease find invoice {{invoice_number}} dated {{invoice_date}} '
                     'for {{service_description}}.\nTotal: {{amount_total}}\nAmount due: {{amount_due}} '
                     'before {{due_date}}.\n\n{{dietitian_name}}',
        'body_html': '<p>Hello {{patient_name}},</p><p>Please find invoice <strong>{{invoice_number}}</strong> '
                     'dated {{invoice_date}} for {{service_description}}.</p><p>Total: {{amount_total}}<br>'
                     'Amount due: {{amount_due}} before {{due_date}}.</p><p>{{dietitian_name}}</p>',
    },
    {
        'slug': 'appointment_reminder',
        'name': 'Appointment reminder',
        'category': 'appointment_reminder',
        'subject': 'Reminder: your appointment on {{appointment_date}}',
        'body_text': 'Hello {{patient_first_name}},\n\nThis is a reminder of your {{visit_type}} appointment on '
                     '{{appointment_date}} at {{appointment_time}}.{{#if dietitian_name}} You will see '
                     '{{dietitian_name}}.{{/if}}\n\n{{practice_name}}',
        'body_html': '<p>Hello {{patient_first_name}},</p><p>This is a reminder of your {{visit_type}} appointment '
                     'on <strong>{{appointment_date}}</strong> at <strong>{{appointment_time}}</strong>.'
                     '{{#if dietitian_name}} You will see {{dietitian_name}}.{{/if}}</p><p>{{practice_name}}</p>',
    },
    {
        'slug': 'followup',
        'name': 'Visit follow-up',
        'category': 'followup',
        'subject': 'Following your visit on {{visit_date}}',
        'body_text': 'Hello {{patient_first_name}},\n\nThank you for coming on {{visit_date}}.'
                     '{{#if summary}}\n\n{{summary}}{{/if}}'
                     '{{#if next_visit_date}}\n\nOur next appointment is on {{next_visit_date}}.{{/if}}'
                     '\n\n{{dietitian_name}}',
        'body_html': '<p>Hello {{patient_first_name}},</p><p>Thank you for coming on {{visit_date}}.</p>'
                     '{{#if summary}}<p>{{summary}}</p>{{/if}}'
                     '{{#if next_visit_date}}<p>Our next appointment is on <strong>{{next_visit_date}}</strong>.'
                     '</p>{{/if}}<p>{{dietitian_name}}</p>',
    },
    {
        'slug': 'password_reset',
        'name': 'Password reset',
        'category': 'password_reset',
        'subject': 'Reset your password',
        'body_text': 'Hello {{user_name}},\n\nUse the link below to choose a new password. It expires in '
                     '{{expires_minutes}} minutes.\n\n{{reset_link}}\n\nIf you did not ask for this, ignore this e-mail.',
        'body_html': '<p>Hello {{user_name}},</p><p>Use the link below to choose a new password. It expires in '
                     '{{expires_minutes}} minutes.</p><p><a href="{{reset_link}}">{{reset_link}}</a></p>'
                     '<p>If you did not ask for this, ignore this e-mail.</p>',
    },
]


def default_template(slug: str) -> dict:
    return next(entry for entry in DEFAULT_TEMPLATES if entry['slug'] == slug)


def render_string(template: str, context: dict, *, html: bool = False) -> str:
    out = template or ''
    while True:
        replaced = IF_RE.sub(lambda m: m.group(2) if context.get(m.group(1)) else '', out)
        if replaced == out:
            break
        out = replaced

    def _value(match):
        value = context.get(match.group(1))
        if value is None:
            return ''
        value = str(value)
        return escape(value) if html else value

    return VAR_RE.sub(_value, out)


def render_template(template: EmailTemplate, context: dict) -> dict:
    return {
        'subject': render_string(template.subject, context),
        'html': render_string(template.body_html, context, html=True),
        'text': render_string(template.body_text, context),
    }


def used_variables(*texts: str) -> list[str]:
    names = []
    for text in texts:
        for pattern in (VAR_RE, re.compile(r'\{\{#if\s+([a-zA-Z_][a-zA-Z0-9_]*)\s*\}\}')):
            for name in pattern.findall(text or ''):
                if name not in names:
                    names.append(name)
    return names


def check_blocks(text: str) -> None:
    opened = len(re.findall(r'\{\{#if\s', text or ''))
    closed = len(re.findall(r'\{\{/if\}\}', text or ''))
    if opened != closed:
        raise ValidationError({'template': 'Unbalanced {{#if}} / {{/if}} blocks'})


def preview(template: EmailTemplate, overrides: dict | None = None) -> dict:
    context = dict(SAMPLE_DATA)
    context.update(overrides or {})
    return render_template(template, context)


def save_template(template: EmailTemplate, data: dict, *, user=None) -> EmailTemplate:
    for attr in ('slug', 'name', 'category', 'description', 'subject', 'body_html', 'body_text', 'is_active'):
        if attr in data and data[attr] is not None:
            setattr(template, attr, data[attr])
    for text in (template.subject, template.body_html, template.body_text):
        check_blocks(text)
    if EmailTemplate.objects.filter(slug=template.slug).exclude(pk=template.pk).exists():
        raise Conflict(f"Template slug '{template.slug}' already exists")
    if template.pk is None and user is not None:
        template.created_by = user
    template.save()
    return template


def delete_template(template: EmailTemplate) -> None:
    if template.is_system:
        raise ValidationError({'template': 'System templates cannot be deleted'})
    template.delete()


@transaction.atomic
def ensure_default_templates() -> int:
    created = 0
    for info in DEFAULT_TEMPLATES:
        _, was_created = EmailTemplate.objects.get_or_create(
            slug=info['slug'], defaults={**info, 'is_system': True},
        )
        created += int(was_created)
    return created


def format_template(template: EmailTemplate) -> dict:
    return {
        'id': template.id,
        'slug': template.slug,
        'name': template.name,
        'category': template.category,
        'description': template.description,
        'subject': template.subject,
        'bodyHtml': template.body_html,
        'bodyText': template.body_text,
        'isActive': template.is_active,
        'isSystem': template.is_system,
        'variables': used_variables(template.subject, template.body_html, template.body_text),
        'createdAt': template.created_at.isoformat() if template.created_at else None,
        'updatedAt': template.updated_at.isoformat() if template.updated_at else None,
    }
