"""
AI-assisted follow-up e-mails after a visit.

Identifying names never reach the model: every occurrence of the
patient's and dietitian's names in the visit notes is replaced with
``[PATIENT_NAME]`` / ``[DIETITIAN_NAME]`` before the prompt is built, and
the placeholders in the model's answer are swapped back afterwards by plain
string replacement.
"""
from __future__ import annotations

import json
import logging

from django.utils import timezone
from django.utils.html import escape, linebreaks
from rest_framework.exceptions import ValidationError

from practice.exceptions import UpstreamError
from practice.models import Visit
from practice.services import ai_provider, templates
from practice.services.email import send_email, send_templated

logger = logging.getLogger(__name__)

PATIENT_PLACEHOLDER = '[PATIENT_NAME]'
DIETITIAN_PLACEHOLDER = '[DIETITIAN_NAME]'

LANGUAGES = ('fr', 'en')
TONES = ('professional', 'friendly', 'formal')
CONTENT_KEYS = ('subject', 'greeting', 'summary', 'keyPoints', 'recommendations', 'nextSteps', 'closing',
                'signature')

LANGUAGE_INSTRUCTIONS = {
    'fr': "Rédigez l'email en français. Utilisez un français correct et professionnel.",
    'en': 'Write the email in English. Use proper and professional English.',
}
TONE_INSTRUCTIONS = {
    'professional': 'Use a professional but warm tone, typical of a healthcare practitioner.',
    'friendly': 'Use a friendly and approachable tone while remaining professional.',
    'formal': 'Use a formal and elevated tone.',
}
LABELS = {
    'fr': {'key_points': 'Points clés', 'recommendations': 'Recommandations', 'next_steps': 'Prochaines étapes',
           'next_visit': 'Prochain rendez-vous :', 'dietitian': 'Votre diététicien(ne)',
           'disclaimer': "Cet email a été généré avec l'assistance de l'IA et vérifié par votre praticien."},
    'en': {'key_points': 'Key points', 'recommendations': 'Recommendations', 'next_steps': 'Next steps',
           'next_visit': 'Next appointment:', 'dietitian': 'Your dietitian',
           'disclaimer': 'This email was generated with AI assistance and reviewed by your practitioner.'},
}

SYSTEM_PROMPT = """You are an assistant helping a dietitian write follow-up emails to their patients.
{language}
{tone}

Generate a personalized follow-up email based on the visit notes provided. The email should be warm and
encouraging, summarize the key points discussed and highlight the main recommendations in an actionable way.
{extras}
The patient is referred to as [PATIENT_NAME] and the dietitian as [DIETITIAN_NAME]; keep these placeholders
verbatim wherever a name is needed.

Return a JSON object with exactly these fields:
{{"subject": "...", "greeting": "...", "summary": "...", "keyPoints": ["..."], "recommendations": "...",
"nextSteps": ["..."], "closing": "...", "signature": "..."}}
Return ONLY valid JSON, no markdown formatting, no code blocks."""


def _name_variants(first: str, last: str, full: str) -> list[str]:
    variants = {v.strip() for v in (full, f"{first} {last}", f"{last} {first}", first, last) if v and v.strip()}
    # longest first so "Marie Dupont" wins over "Marie"
    return sorted(variants, key=len, reverse=True)


def anonymize(text: str, visit: Visit) -> str:
    if not text:
        return ''
    patient = visit.patient
    for name in _name_variants(patient.first_name, patient.last_name, patient.full_name):
        text = text.replace(name, PATIENT_PLACEHOLDER)
    if visit.dietitian is not None:
        d = visit.dietitian
        for name in _name_variants(d.first_name, d.last_name, d.get_full_name()):
            text = text.replace(name, DIETITIAN_PLACEHOLDER)
    return text


def _dietitian_name(visit: Visit, language: str) -> str:
    if visit.dietitian is not None:
        return visit.dietitian.get_display_name()
    return LABELS[language]['dietitian']


def restore_names(value, patient_name: str, dietitian_name: str):
    if isinstance(value, str):
        return value.replace(PATIENT_PLACEHOLDER, patient_name).replace(DIETITIAN_PLACEHOLDER, dietitian_name)
    if isinstance(value, list):
        return [restore_names(v, patient_name, dietitian_name) for v in value]
    if isinstance(value, dict):
        return {k: restore_names(v, patient_name, dietitian_name) for k, v in value.items()}
    return value


def _format_date(value) -> str | None:
    if value is None:
        return None
    return timezone.localtime(value).strftime('%Y-%m-%d') if timezone.is_aware(value) else value.strftime('%Y-%m-%d')


def build_prompts(visit: Visit, *, language: str, tone: str, include_next_steps: bool = True,
                  include_next_appointment: bool = True) -> tuple[str, str]:
    next_visit = _format_date(visit.next_visit_date) if include_next_appointment else None
    extras = []
    if include_next_steps:
        extras.append('Include a list of next steps with specific actions for the patient.')
    if next_visit:
        extras.append('Mention the next scheduled appointment.')
    system_prompt = SYSTEM_PROMPT.format(
        language=LANGUAGE_INSTRUCTIONS[language], tone=TONE_INSTRUCTIONS[tone], extras='\n'.join(extras),
    )
    sections = [
        f"PATIENT: {PATIENT_PLACEHOLDER}",
        f"DIETITIAN: {DIETITIAN_PLACEHOLDER}",
        f"CONSULTATION DATE: {_format_date(visit.visit_date)}",
        f"VISIT TYPE: {visit.visit_type or 'Consultation'}",
    ]
    for label, text in (('REASON FOR VISIT', visit.chief_complaint), ('ASSESSMENT', visit.assessment),
                        ('RECOMMENDATIONS', visit.recommendations), ('ADDITIONAL NOTES', visit.notes)):
        if text and text.strip():
            sections.append(f"{label}:\n{anonymize(text, visit)}")
    if next_visit:
        sections.append(f"NEXT APPOINTMENT: {next_visit}")
    user_prompt = 'Generate a follow-up email for this consultation:\n\n' + '\n\n'.join(sections)
    return system_prompt, user_prompt


def parse_content(raw: str) -> dict:
    try:
        content = json.loads(ai_provider.strip_fences(raw))
    except ValueError:
        logger.warning('AI follow-up response is not JSON: %.200s', raw)
        raise UpstreamError('AI response was not valid JSON, please try again')
    if not isinstance(content, dict):
        raise UpstreamError('AI response was not a JSON object, please try again')
    for key in ('keyPoints', 'nextSteps'):
        items = content.get(key) or []
        content[key] = [str(i) for i in items] if isinstance(items, list) else [str(items)]
    for key in CONTENT_KEYS:
        if key not in ('keyPoints', 'nextSteps'):
            content[key] = str(content.get(key) or '')
    return {key: content[key] for key in CONTENT_KEYS}


def mock_content(visit: Visit, *, language: str) -> dict:
    visit_date = _format_date(visit.visit_date)
    if language == 'fr':
        return {
            'subject': f"Suite à votre consultation du {visit_date}",
            'greeting': f"Bonjour {PATIENT_PLACEHOLDER},",
            'summary': 'Suite à notre consultation, voici un récapitulatif des points importants abordés ensemble.',
            'keyPoints': [visit.chief_complaint or 'Discussion de vos objectifs nutritionnels',
                          visit.assessment or 'Évaluation de votre alimentation actuelle',
                          "Définition d'un plan d'action personnalisé"],
            'recommendations': visit.recommendations or 'Je vous encourage à suivre les recommandations établies.',
            'nextSteps': ['Mettre en place les changements alimentaires discutés',
                          'Noter vos repas dans un carnet alimentaire',
                          'Pratiquer une activité physique régulière'],
            'closing': 'Je reste à votre disposition pour toute question.',
            'signature': DIETITIAN_PLACEHOLDER,
        }
    return {
        'subject': f"Follow-up: your consultation on {visit_date}",
        'greeting': f"Hello {PATIENT_PLACEHOLDER},",
        'summary': 'Following our consultation, here is a summary of the key points we discussed.',
        'keyPoints': [visit.chief_complaint or 'Discussion of your nutritional goals',
                      visit.assessment or 'Assessment of your current diet',
                      'Definition of a personalized action plan'],
        'recommendations': visit.recommendations or 'I encourage you to follow the recommendations we set together.',
        'nextSteps': ['Implement the dietary changes we discussed', 'Keep a food diary',
                      'Maintain regular physical activity'],
        'closing': 'I remain at your disposal for any questions.',
        'signature': DIETITIAN_PLACEHOLDER,
    }


def build_html(content: dict, *, language: str, next_visit: str | None) -> str:
    labels = LABELS[language]
    parts = [f"<p>{escape(content['greeting'])}</p>", linebreaks(content['summary'])]
    if content['keyPoints']:
        items = ''.join(f"<li>{escape(p)}</li>" for p in content['keyPoints'])
        parts.append(f"<h3>{labels['key_points']}</h3><ul>{items}</ul>")
    if content['recommendations']:
        parts.append(f"<h3>{labels['recommendations']}</h3>{linebreaks(content['recommendations'])}")
    if content['nextSteps']:
        items = ''.join(f"<li>{escape(s)}</li>" for s in content['nextSteps'])
        parts.append(f"<h3>{labels['next_steps']}</h3><ol>{items}</ol>")
    if next_visit:
        parts.append(f"<p><strong>{labels['next_visit']}</strong> {escape(next_visit)}</p>")
    parts.append(f"<p>{escape(content['closing'])}</p>")
    parts.append(f"<p>{escape(content['signature'])}<br><em>{labels['dietitian']}</em></p>")
    parts.append(f"<p><small>{labels['disclaimer']}</small></p>")
    return '\n'.join(parts)


def build_text(content: dict, *, language: str, next_visit: str | None) -> str:
    labels = LABELS[language]
    lines = [content['greeting'], '', content['summary'], '']
    if content['keyPoints']:
        lines += [labels['key_points'].upper()] + [f"- {p}" for p in content['keyPoints']] + ['']
    if content['recommendations']:
        lines += [labels['recommendations'].upper(), content['recommendations'], '']
    if content['nextSteps']:
        lines += [labels['next_steps'].upper()] + [f"{i}. {s}" for i, s in enumerate(content['nextSteps'], 1)] + ['']
    if next_visit:
        lines += [f"{labels['next_visit']} {next_visit}", '']
    lines += [content['closing'], '', content['signature'], labels['dietitian'], '', labels['disclaimer']]
    return '\n'.join(lines)


def generate_followup(visit: Visit, *, language: str = 'fr', tone: str = 'professional',
                      include_next_steps: bool = True, include_next_appointment: bool = True) -> dict:
    if language not in LANGUAGES:
        raise ValidationError({'language': f"Supported languages: {', '.join(LANGUAGES)}"})
    if tone not in TONES:
        raise ValidationError({'tone': f"Supported tones: {', '.join(TONES)}"})
    if not visit.has_clinical_content():
        raise ValidationError({'visit': 'Visit has no clinical notes to generate a follow-up from. '
                                        'Add an assessment, recommendations or notes first.'})

    config = ai_provider.get_configuration()
    if config['available']:
        system_prompt, user_prompt = build_prompts(
            visit, language=language, tone=tone, include_next_steps=include_next_steps,
            include_next_appointment=include_next_appointment,
        )
        raw = ai_provider.generate(system_prompt, user_prompt, provider=config['provider'], model=config['model'])
        content = parse_content(raw)
        provider, model = config['provider'], config['model']
    else:
        logger.info('No AI provider configured, returning mock follow-up for visit %s', visit.pk)
        content = mock_content(visit, language=language)
        provider = model = 'mock'

    patient_name = visit.patient.full_name
    content = restore_names(content, patient_name, _dietitian_name(visit, language))
    if not include_next_steps:
        content['nextSteps'] = []
    next_visit = _format_date(visit.next_visit_date) if include_next_appointment else None
    return {
        'subject': content['subject'],
        'bodyHtml': build_html(content, language=language, next_visit=next_visit),
        'bodyText': build_text(content, language=language, next_visit=next_visit),
        'aiContent': content,
        'visit': {
            'id': visit.pk,
            'visitDate': visit.visit_date.isoformat() if visit.visit_date else None,
            'visitType': visit.visit_type,
            'patientName': patient_name,
        },
        'metadata': {
            'provider': provider,
            'model': model,
            'language': language,
            'tone': tone,
            'generatedAt': timezone.now().isoformat(),
        },
    }


def template_context(visit: Visit) -> dict:
    patient = visit.patient
    return {
        'patient_name': patient.full_name,
        'patient_first_name': patient.first_name,
        'dietitian_name': visit.dietitian.get_display_name() if visit.dietitian else '',
        'practice_name': 'NutriVault',
        'visit_date': _format_date(visit.visit_date),
        'summary': visit.recommendations or visit.assessment,
        'next_visit_date': _format_date(visit.next_visit_date),
    }


def send_followup(visit: Visit, *, subject: str = '', body_html: str = '', body_text: str = '',
                  use_template: bool = False, user=None):
    """Send a follow-up e-mail, either as written or from the ``followup`` template."""
    patient = visit.patient
    if not patient.email:
        raise ValidationError({'email': 'Patient has no e-mail address'})
    if use_template:
        log = send_templated('followup', template_context(visit), to=patient.email,
                             fallback=templates.default_template('followup'),
                             patient=patient, visit=visit, sent_by=user)
        logger.info('Template follow-up for visit %s sent to patient %s', visit.pk, patient.pk)
        return log
    if not (body_html or body_text):
        raise ValidationError({'body': 'E-mail body is empty'})
    log = send_email(
        to=patient.email, subject=subject, body_text=body_text, body_html=body_html, email_type='followup',
        patient=patient, visit=visit, sent_by=user,
    )
    logger.info('Follow-up for visit %s sent to patient %s', visit.pk, patient.pk)
    return log
