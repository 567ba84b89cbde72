import time

from django.conf import settings
from django.core.management.base import BaseCommand

from jobs.converter import ImageConverter
from jobs.disk_storage import ensure_dirs
from jobs.processor import JobProcessor
from jobs.store import JobStore
from jobs.worker import WorkerLoop


class Command(BaseCommand):
    help = "Run the conversion worker (claims queued jobs from the DB)."

    def add_arguments(self, parser):
        parser.add_argument(
            "--max-seconds",
            type=float,
            default=None,
            help="Stop claiming new jobs after this many seconds (default: WORKER_MAX_SECONDS)",
        )
        parser.add_argument(
            "--lock-timeout",
            type=int,
            default=None,
            help="Lease length in seconds before another worker may reclaim a job",
        )
        parser.add_argument(
            "--forever",
            action="store_true",
            help="Keep polling instead of exiting when the queue is empty",
        )
        parser.add_argument("--poll-seconds", type=float, default=None, help="Idle sleep in --forever mode")

    def handle(self, *args, **opts):
        ensure_dirs()

        if not ImageConverter.capabilities()["webp"]:
            self.stderr.write(self.style.ERROR("Pillow was built without WebP support"))
            self.stderr.write("Install a Pillow wheel with libwebp, or build it against libwebp.")

        lock_timeout = opts["lock_timeout"] if opts["lock_timeout"] is not None else settings.WORKER_LOCK_TIMEOUT
        max_seconds = opts["max_seconds"] if opts["max_seconds"] is not None else settings.WORKER_MAX_SECONDS
        poll = opts["poll_seconds"] if opts["poll_seconds"] is not None else settings.WORKER_POLL_SECONDS

        store = JobStore(lock_timeout=lock_timeout)
        loop = WorkerLoop(store, JobProcessor(store), max_seconds=max_seconds)

        self.stdout.write(self.style.SUCCESS(f"Worker started [{loop.claimant}]"))

        if not opts["forever"]:
            processed = loop.run()
            self.stdout.write(self.style.SUCCESS(f"Worker finished. Processed: {processed}"))
            return

        while True:
            if loop.run() == 0:
                time.sleep(poll)
