import logging
import os
import time
import uuid
from dataclasses import dataclass

from .converter import ImageConverter
from .disk_storage import output_path, remove_file, staging_path
from .fetch import default_fetcher
from .models import Job
from .security import is_valid_image_mime, sniff_file_mime
from .store import JobStore

logger = logging.getLogger(__name__)


@dataclass
class ProcessResult:
    ok: bool
    error: str | None = None
    lease_lost: bool = False


class JobProcessor:
    """Runs one claimed job to a terminal state.

    acquire input -> validate -> convert -> persist output -> remove staged input.
    Every failure is terminal; nothing is retried here.
    """

    def __init__(self, store: JobStore, converter=None, fetcher=None):
        self.store = store
        self.converter = converter or ImageConverter()
        self.fetcher = fetcher or default_fetcher()

    def process(self, job: Job, claimant: str) -> ProcessResult:
        staged: list[str] = []
        result = None
        try:
            result = self._run(job, claimant, staged)
            return result
        finally:
            # A reclaimed job's input belongs to the new lease holder.
            if staged and not (result and result.lease_lost):
                remove_file(staged[0])

    def _run(self, job: Job, claimant: str, staged: list[str]) -> ProcessResult:
        start = time.monotonic()

        path, error = self._acquire(job)
        if error:
            return self._failed(job, claimant, error)
        staged.append(path)

        mime = sniff_file_mime(path)
        if not is_valid_image_mime(mime):
            return self._failed(job, claimant, f"Invalid image type: {mime}")

        if not self.store.record_input(
            job.id, claimant, input_path=path, input_mime=mime, input_size=os.path.getsize(path)
        ):
            return ProcessResult(ok=False, error="lease lost", lease_lost=True)

        out = output_path(job.id)
        converted = self.converter.convert(
            path,
            out,
            quality=job.quality,
            width=job.width,
            height=job.height,
            fit=job.fit,
            strip_metadata=job.strip_metadata,
        )
        if not converted.success:
            return self._failed(job, claimant, converted.error or "Conversion failed")
        if not os.path.exists(out):
            return self._failed(job, claimant, "Conversion failed - output file not created")

        elapsed_ms = int(round((time.monotonic() - start) * 1000))
        if not self.store.complete(
            job.id,
            claimant,
            output_path=out,
            output_size=os.path.getsize(out),
            processing_time_ms=elapsed_ms,
        ):
            return ProcessResult(ok=False, error="lease lost", lease_lost=True)

        logger.info("Job completed: %s (%d ms)", job.id, elapsed_ms)
        return ProcessResult(ok=True)

    def _acquire(self, job: Job) -> tuple[str | None, str | None]:
        """Staged input path, or an error message."""
        if job.source_type == Job.SOURCE_URL:
            dest = staging_path(job.id, f"_{uuid.uuid4().hex[:8]}.tmp")
            fetched = self.fetcher.fetch(job.source_url, dest)
            if not fetched.ok:
                return None, fetched.error or "Failed to download image from URL"
            return fetched.path, None

        if not job.input_path or not os.path.exists(job.input_path):
            return None, f"Input file not found: {job.input_path}"
        return job.input_path, None

    def _failed(self, job: Job, claimant: str, message: str) -> ProcessResult:
        logger.error("Job failed: %s - %s", job.id, message)
        if not self.store.fail(job.id, claimant, message):
            return ProcessResult(ok=False, error=message, lease_lost=True)
        return ProcessResult(ok=False, error=message)
