from django.contrib.auth.hashers import make_password
from django.core.management.base import BaseCommand
from django.db import transaction

from care.models import PatientProfile, User

DEMO_SET = [
    ("admin1", User.ROLE_ADMIN, User.TYPE_OPERATOR),
    ("support1", User.ROLE_SUPPORT, User.TYPE_OPERATOR),
    ("operator1", User.ROLE_BASIC, User.TYPE_OPERATOR),
    ("patient1", User.ROLE_BASIC, User.TYPE_PATIENT),
]


class Command(BaseCommand):
    help = "Ensure demo users exist with the given password (idempotent)."

    def add_arguments(self, parser):
        parser.add_argument("--password", default="Demo-pass-123", help="password set on every demo user")

    @transaction.atomic
    def handle(self, *args, **opts):
        password = make_password(opts["password"])
        for username, role, user_type in DEMO_SET:
            u, created = User.objects.get_or_create(
                username=username,
                defaults={"role": role, "user_type": user_type, "password": password, "is_active": True},
            )
            if not created:
                # reset password, activation and role
                u.password = password
                u.role = role
                u.user_type = user_type
                u.is_active = True
                u.save(update_fields=["password", "role", "user_type", "is_active"])
            if user_type == User.TYPE_PATIENT:
                PatientProfile.objects.get_or_create(user=u)
            self.stdout.write(self.style.SUCCESS(f"ok: {username} ({user_type}/{role})"))
        self.stdout.write(self.style.SUCCESS("All demo users ensured."))
