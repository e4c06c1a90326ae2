"""
Cron-style background jobs.

Each registered job has a :class:`ScheduledJob` row holding its cron
expression (five fields: minute hour day-of-month month day-of-week),
enabled flag and last-run bookkeeping.  Expressions are parsed and
evaluated with Celery's ``crontab`` schedule; ``run_scheduled_jobs`` (a
management command meant to be called every minute from the system cron
or a container scheduler) runs whatever is due.
"""
from __future__ import annotations

import logging
from datetime import timedelta

from celery.schedules import ParseException, crontab
from django.db.models import F
from django.utils import timezone
from rest_framework.exceptions import ValidationError
from rest_framework_simplejwt.token_blacklist.models import OutstandingToken

from practice.models import ScheduledJob, Visit
from practice.services import auth as auth_service
from practice.services import billing
from practice.services.email import send_templated

logger = logging.getLogger(__name__)

SUCCESS = 'success'
FAILED = 'failed'


def send_appointment_reminders(now=None) -> dict:
    """E-mail every patient with a scheduled visit in the next 24 hours, once per visit."""
    now = now or timezone.now()
    visits = (Visit.objects.select_related('patient', 'dietitian')
              .filter(status=Visit.SCHEDULED, reminder_sent_at__isnull=True,
                      visit_date__gt=now, visit_date__lte=now + timedelta(hours=24))
              .exclude(patient__email=''))
    sent = failed = 0
    for visit in visits:
        local = timezone.localtime(visit.visit_date)
        log = send_templated(
            'appointment_reminder',
            {
                'patient_name': visit.patient.full_name,
                'patient_first_name': visit.patient.first_name,
                'dietitian_name': visit.dietitian.get_display_name() if visit.dietitian else '',
                'practice_name': 'NutriVault',
                'appointment_date': local.strftime('%Y-%m-%d'),
                'appointment_time': local.strftime('%H:%M'),
                'visit_type': visit.visit_type,
                'duration_minutes': visit.duration_minutes,
            },
            to=visit.patient.email,
            fallback={
                'subject': 'Reminder: your appointment on {{appointment_date}}',
                'body_text': 'Hello {{patient_first_name}}, this is a reminder of your appointment on '
                             '{{appointment_date}} at {{appointment_time}}.',
            },
            patient=visit.patient,
            visit=visit,
            fail_silently=True,
        )
        if log.status == log.SENT:
            Visit.objects.filter(pk=visit.pk).update(reminder_sent_at=now)
            sent += 1
        else:
            failed += 1
    return {'sent': sent, 'failed': failed}


def mark_overdue_invoices(now=None) -> dict:
    today = timezone.localdate(now) if now else timezone.localdate()
    return {'updated': billing.mark_overdue(today)}


def purge_expired_tokens(now=None) -> dict:
    now = now or timezone.now()
    tokens, _ = OutstandingToken.objects.filter(expires_at__lte=now).delete()
    resets = auth_service.purge_expired_reset_tokens(now)
    return {'tokens': tokens, 'resetTokens': resets}


JOBS = {
    'appointment_reminders': {
        'func': send_appointment_reminders,
        'cron': '0 * * * *',
        'description': 'E-mail patients about visits scheduled in the next 24 hours',
    },
    'overdue_invoices': {
        'func': mark_overdue_invoices,
        'cron': '0 6 * * *',
        'description': 'Mark sent or partially paid invoices past their due date as overdue',
    },
    'purge_expired_tokens': {
        'func': purge_expired_tokens,
        'cron': '30 3 * * *',
        'description': 'Delete expired refresh tokens and password reset tokens',
    },
}


def schedule_for(expression: str) -> crontab:
    fields = (expression or '').split()
    if len(fields) != 5:
        raise ValidationError({'cron': 'Cron expression needs 5 fields: minute hour day month weekday'})
    minute, hour, day_of_month, month_of_year, day_of_week = fields
    try:
        return crontab(minute=minute, hour=hour, day_of_month=day_of_month, month_of_year=month_of_year,
                       day_of_week=day_of_week, nowfun=timezone.now)
    except (ParseException, ValueError) as e:
        raise ValidationError({'cron': f'Invalid cron expression: {e}'})


def validate_cron(expression: str) -> str:
    schedule_for(expression)
    return ' '.join(expression.split())


def next_run(job: ScheduledJob, now=None):
    if not job.is_enabled:
        return None
    now = now or timezone.now()
    reference = job.last_run_at or job.created_at or now
    return now + schedule_for(job.cron).remaining_estimate(reference)


def is_due(job: ScheduledJob) -> bool:
    if not job.is_enabled or job.name not in JOBS:
        return False
    reference = job.last_run_at or job.created_at or timezone.now()
    return schedule_for(job.cron).is_due(reference).is_due


def format_job(job: ScheduledJob) -> dict:
    upcoming = next_run(job)
    return {
        'id': job.id,
        'name': job.name,
        'description': job.description,
        'cron': job.cron,
        'isEnabled': job.is_enabled,
        'isRegistered': job.name in JOBS,
        'lastRunAt': job.last_run_at.isoformat() if job.last_run_at else None,
        'lastStatus': job.last_status or None,
        'lastError': job.last_error or None,
        'lastResult': job.last_result or {},
        'runCount': job.run_count,
        'nextRunAt': upcoming.isoformat() if upcoming else None,
    }


def ensure_default_jobs() -> int:
    created = 0
    for name, info in JOBS.items():
        _, was_created = ScheduledJob.objects.get_or_create(
            name=name, defaults={'cron': info['cron'], 'description': info['description']},
        )
        created += int(was_created)
    return created


def update_job(job: ScheduledJob, *, cron=None, is_enabled=None, description=None) -> ScheduledJob:
    if cron is not None:
        job.cron = validate_cron(cron)
    if is_enabled is not None:
        job.is_enabled = is_enabled
    if description is not None:
        job.description = description
    job.save()
    logger.info('Scheduled job %s updated (cron=%s, enabled=%s)', job.name, job.cron, job.is_enabled)
    return job


def run_job(job: ScheduledJob) -> ScheduledJob:
    info = JOBS.get(job.name)
    if info is None:
        raise ValidationError({'job': f'No handler registered for job {job.name}'})
    started = timezone.now()
    logger.info('Running scheduled job %s', job.name)
    try:
        result = info['func']()
    except Exception as e:
        logger.exception('Scheduled job %s failed', job.name)
        job.last_status, job.last_error, job.last_result = FAILED, str(e), {}
    else:
        job.last_status, job.last_error, job.last_result = SUCCESS, '', result or {}
        logger.info('Scheduled job %s finished: %s', job.name, result)
    job.last_run_at = started
    job.save(update_fields=['last_run_at', 'last_status', 'last_error', 'last_result', 'updated_at'])
    ScheduledJob.objects.filter(pk=job.pk).update(run_count=F('run_count') + 1)
    job.refresh_from_db(fields=['run_count'])
    return job


def due_jobs() -> list[ScheduledJob]:
    return [job for job in ScheduledJob.objects.filter(is_enabled=True) if is_due(job)]


def run_due_jobs(*, force: bool = False) -> list[ScheduledJob]:
    jobs = ScheduledJob.objects.filter(is_enabled=True, name__in=list(JOBS)) if force else due_jobs()
    return [run_job(job) for job in jobs]
