import logging
import time

from django.db import DatabaseError

from .models import Job
from .processor import JobProcessor
from .store import JobStore, new_claimant_id

logger = logging.getLogger(__name__)


class WorkerLoop:
    """Claims and processes jobs one at a time until the queue is empty or time runs out.

    Instances share nothing but the job table; run as many as you like.
    """

    def __init__(
        self,
        store: JobStore,
        processor: JobProcessor,
        claimant: str | None = None,
        max_seconds: float = 50.0,
        error_backoff: float = 1.0,
        clock=time.monotonic,
        sleep=time.sleep,
    ):
        self.store = store
        self.processor = processor
        self.claimant = claimant or new_claimant_id()
        self.max_seconds = max_seconds
        self.error_backoff = error_backoff
        self._clock = clock
        self._sleep = sleep

    def run_once(self) -> bool:
        """One claim + process cycle. False when no job was available."""
        job = self.store.claim(self.claimant)
        if job is None:
            return False
        self.handle(job)
        return True

    def handle(self, job: Job) -> None:
        try:
            result = self.processor.process(job, self.claimant)
        except Exception as e:
            logger.exception("Job %s failed", job.id)
            self.store.fail(job.id, self.claimant, f"exception:{type(e).__name__}:{e}")
            return
        if result.ok:
            logger.info("Job %s processed successfully", job.id)

    def run(self) -> int:
        started = self._clock()
        processed = 0
        logger.info("Worker started [%s]", self.claimant)

        while self._clock() - started < self.max_seconds:
            try:
                claimed = self.run_once()
            except DatabaseError as e:
                # The job stays queued (or its partial lease expires); try again next cycle.
                logger.error("Error getting next job: %s", e)
                self._sleep(self.error_backoff)
                continue

            if not claimed:
                logger.info("No jobs available.")
                break
            processed += 1

        logger.info("Worker finished [%s]. Total processed: %d", self.claimant, processed)
        return processed


def process_job_now(store: JobStore, processor: JobProcessor, job_id, claimant: str | None = None) -> bool:
    """Claim one specific job and run it in the caller's process.

    False when the job is not claimable (already taken, finished or missing).
    """
    loop = WorkerLoop(store, processor, claimant=claimant)
    job = store.claim(loop.claimant, job_id=job_id)
    if job is None:
        return False
    loop.handle(job)
    return True
