from django.core.management.base import BaseCommand

from practice.services import scheduler


class Command(BaseCommand):
    help = "Run every enabled scheduled job that is due. Meant to be called from cron every minute."

    def add_arguments(self, parser):
        parser.add_argument("--force", action="store_true", help="Run all enabled jobs regardless of schedule")

    def handle(self, *args, **opts):
        jobs = scheduler.run_due_jobs(force=opts["force"])
        if not jobs:
            self.stdout.write("no jobs due")
        for job in jobs:
            style = self.style.SUCCESS if job.last_status == scheduler.SUCCESS else self.style.ERROR
            self.stdout.write(style(f"{job.name}: {job.last_status}"))
