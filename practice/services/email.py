"""
Outgoing e-mail.  Every attempt is recorded in :class:`EmailLog`, whether
the backend accepted the message or not.
"""
from __future__ import annotations

import logging
import smtplib

from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.utils.html import strip_tags

from practice.exceptions import UpstreamError
from practice.models import EmailLog, EmailTemplate
from practice.services.templates import render_template

logger = logging.getLogger(__name__)


def send_email(*, to: str, subject: str, body_text: str = '', body_html: str = '', email_type: str,
               template: EmailTemplate | None = None, patient=None, visit=None, invoice=None,
               sent_by=None, fail_silently: bool = False) -> EmailLog:
    message = EmailMultiAlternatives(
        subject=subject,
        body=body_text or strip_tags(body_html),
        from_email=settings.DEFAULT_FROM_EMAIL,
        to=[to],
    )
    if body_html:
        message.attach_alternative(body_html, 'text/html')

    log = EmailLog(
        template=template, email_type=email_type, patient=patient, visit=visit, invoice=invoice,
        to_email=to, subject=subject[:255], sent_by=sent_by if getattr(sent_by, 'pk', None) else None,
    )
    try:
        message.send()
    except (smtplib.SMTPException, OSError) as e:
        logger.warning('E-mail %s to %s failed: %s', email_type, to, e)
        log.status = EmailLog.FAILED
        log.error_message = str(e)
        log.save()
        if not fail_silently:
            raise UpstreamError(f'E-mail delivery failed: {e}')
        return log
    log.status = EmailLog.SENT
    log.save()
    logger.info('E-mail %s sent to %s', email_type, to)
    return log


def send_templated(slug: str, context: dict, *, to: str, fallback: dict, email_type: str | None = None,
                   **log_fields) -> EmailLog:
    """Render the active template ``slug`` (or ``fallback``) and send it.

    ``fallback`` holds ``subject``/``body_text``/``body_html`` strings with the
    same ``{{variable}}`` syntax, used when no active template exists.
    """
    template = EmailTemplate.objects.filter(slug=slug, is_active=True).first()
    source = template or EmailTemplate(
        slug=slug, subject=fallback.get('subject', ''),
        body_text=fallback.get('body_text', ''), body_html=fallback.get('body_html', ''),
    )
    rendered = render_template(source, context)
    return send_email(
        to=to, subject=rendered['subject'], body_text=rendered['text'], body_html=rendered['html'],
        email_type=email_type or slug, template=template, **log_fields,
    )


def format_email_log(log: EmailLog) -> dict:
    return {
        'id': log.id,
        'emailType': log.email_type,
        'templateId': log.template_id,
        'patientId': log.patient_id,
        'visitId': log.visit_id,
        'invoiceId': log.invoice_id,
        'to': log.to_email,
        'subject': log.subject,
        'status': log.status,
        'errorMessage': log.error_message or None,
        'sentBy': log.sent_by_id,
        'sentAt': log.sent_at.isoformat() if log.sent_at else None,
    }
