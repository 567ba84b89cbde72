from django.conf import settings
from django.core.management.base import BaseCommand

from jobs.store import JobStore


class Command(BaseCommand):
    help = "Delete old inputs/outputs and DB rows."

    def add_arguments(self, parser):
        parser.add_argument(
            "--seconds",
            type=int,
            default=None,
            help="Delete jobs older than N seconds (default: JOB_RETENTION_SECONDS)",
        )
        parser.add_argument("--days", type=int, default=None, help="Delete jobs older than N days")

    def handle(self, *args, **opts):
        if opts["seconds"] is not None:
            retention = int(opts["seconds"])
        elif opts["days"] is not None:
            retention = int(opts["days"]) * 86400
        else:
            retention = settings.JOB_RETENTION_SECONDS

        n = JobStore().purge_expired(retention)

        self.stdout.write(self.style.SUCCESS(f"Deleted {n} jobs older than {retention} seconds"))
