from django.core.management.base import BaseCommand

from practice.services import measures, rbac, scheduler, templates, themes


class Command(BaseCommand):
    help = "Seed roles, permissions, default measures, e-mail templates, scheduled jobs and the default theme (idempotent)."

    def handle(self, *args, **opts):
        roles = rbac.ensure_default_roles()
        self.stdout.write(self.style.SUCCESS(f"roles: {', '.join(sorted(roles))}"))
        self.stdout.write(self.style.SUCCESS(f"measures created: {measures.ensure_default_measures()}"))
        self.stdout.write(self.style.SUCCESS(f"templates created: {templates.ensure_default_templates()}"))
        self.stdout.write(self.style.SUCCESS(f"jobs created: {scheduler.ensure_default_jobs()}"))
        created = themes.ensure_default_theme()
        self.stdout.write(self.style.SUCCESS(f"default theme {'created' if created else 'present'}"))
        self.stdout.write(self.style.SUCCESS("Seeding complete."))
