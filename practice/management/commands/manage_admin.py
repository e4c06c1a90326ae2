from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError

from practice.models import Role
from practice.services import rbac
from practice.services.users import unlock

User = get_user_model()


class Command(BaseCommand):
    help = "Create an ADMIN account, or reset the password of an existing one."

    def add_arguments(self, parser):
        parser.add_argument("username")
        parser.add_argument("--password", required=True)
        parser.add_argument("--email", default="")

    def handle(self, *args, **opts):
        username, password = opts["username"], opts["password"]
        if len(password) < 8:
            raise CommandError("Password must be at least 8 characters")
        roles = rbac.ensure_default_roles()
        user = User.objects.filter(username=username).first()
        if user is None:
            user = User.objects.create_user(username=username, password=password, email=opts["email"],
                                            role=roles[Role.ADMIN])
            self.stdout.write(self.style.SUCCESS(f"created admin {username}"))
            return
        user.set_password(password)
        user.role = roles[Role.ADMIN]
        user.is_active = True
        if opts["email"]:
            user.email = opts["email"]
        user.save()
        unlock(user)
        self.stdout.write(self.style.SUCCESS(f"reset admin {username}"))
