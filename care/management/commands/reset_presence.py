from django.core.management.base import BaseCommand

from care.services.presence import reset_all


class Command(BaseCommand):
    help = "Mark every user offline and clear the in-process presence registry (run at process start)."

    def handle(self, *args, **options):
        n = reset_all()
        self.stdout.write(self.style.SUCCESS(f"Marked {n} users offline."))
