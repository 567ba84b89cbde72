"""Persistent job table and the lease-based claim protocol.

Workers coordinate only through this table. A claim stamps a job with the
claimant id and a lock timestamp; the lock is a lease that any other claimant
may take over once it is older than ``lock_timeout`` seconds. Every write after
the claim is fenced on ``locked_by``, so a worker whose lease was reclaimed
cannot overwrite the new owner's result.
"""

import logging
import os
import socket
import uuid
from dataclasses import dataclass
from datetime import timedelta

from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from .disk_storage import remove_file, remove_stale_files
from .models import Job
from .security import hash_api_key

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT = 300
MAX_ERROR_LENGTH = 2000

_FIT_VALUES = dict(Job.FIT_CHOICES)


@dataclass
class JobParams:
    """Conversion parameters carried by a job."""

    quality: int = 85
    width: int | None = None
    height: int | None = None
    fit: str = Job.FIT_CONTAIN
    strip_metadata: bool = True
    filename: str | None = None

    def validate(self) -> None:
        if isinstance(self.quality, bool) or not isinstance(self.quality, int) or not 1 <= self.quality <= 100:
            raise ValueError(f"quality must be an integer in 1..100, got {self.quality!r}")
        for name in ("width", "height"):
            v = getattr(self, name)
            if v is not None and (isinstance(v, bool) or not isinstance(v, int) or v < 1):
                raise ValueError(f"{name} must be a positive integer, got {v!r}")
        if self.fit not in _FIT_VALUES:
            raise ValueError(f"fit must be one of {sorted(_FIT_VALUES)}, got {self.fit!r}")


def new_claimant_id() -> str:
    """pid + host + a random suffix, so two loops in one process never share an id."""
    host = socket.gethostname()[:40]
    return f"{os.getpid()}_{host}_{uuid.uuid4().hex[:8]}"


class JobStore:
    def __init__(self, lock_timeout: int = DEFAULT_LOCK_TIMEOUT):
        self.lock_timeout = int(lock_timeout)

    # Records ------------------------------------------------------------

    def create(
        self,
        source_type: str,
        params: JobParams,
        *,
        source_url: str | None = None,
        input_path: str | None = None,
        client_ip: str | None = None,
        api_key: str | None = None,
        input_mime: str | None = None,
        input_size: int | None = None,
    ) -> Job:
        if source_type == Job.SOURCE_URL:
            if not source_url or input_path:
                raise ValueError("url jobs need source_url and no input_path")
        elif source_type == Job.SOURCE_UPLOAD:
            if not input_path or source_url:
                raise ValueError("upload jobs need input_path and no source_url")
        else:
            raise ValueError(f"unknown source_type {source_type!r}")
        params.validate()

        job = Job.objects.create(
            status=Job.STATUS_QUEUED,
            source_type=source_type,
            source_url=source_url,
            input_path=input_path,
            quality=params.quality,
            width=params.width,
            height=params.height,
            fit=params.fit,
            strip_metadata=params.strip_metadata,
            filename=params.filename,
            client_ip=client_ip,
            api_key_hash=hash_api_key(api_key),
            input_mime=input_mime,
            input_size=input_size,
        )
        logger.info("Job created: %s", job.id)
        return job

    def get(self, job_id) -> Job | None:
        try:
            return Job.objects.filter(id=job_id).first()
        except (ValidationError, ValueError):
            return None

    def list_expired(self, age_seconds: int, now=None) -> list[Job]:
        cutoff = (now or timezone.now()) - timedelta(seconds=age_seconds)
        return list(Job.objects.filter(created_at__lt=cutoff).order_by("created_at"))

    def purge(self, age_seconds: int, now=None) -> int:
        cutoff = (now or timezone.now()) - timedelta(seconds=age_seconds)
        deleted, _ = Job.objects.filter(created_at__lt=cutoff).delete()
        return deleted

    def purge_expired(self, retention_seconds: int, now=None) -> int:
        """Delete jobs older than the retention window along with their files.

        Safe to run next to live workers and safe to repeat: files that are
        already gone are skipped.
        """
        now = now or timezone.now()
        expired = self.list_expired(retention_seconds, now=now)
        for job in expired:
            remove_file(job.input_path)
            remove_file(job.output_path)
        deleted = self.purge(retention_seconds, now=now)
        logger.info("Cleaned up %d old jobs", deleted)
        swept = remove_stale_files((now - timedelta(seconds=retention_seconds)).timestamp())
        if swept:
            logger.info("Removed %d stale files", swept)
        return deleted

    # Claim protocol -----------------------------------------------------

    def lease_cutoff(self, now=None):
        return (now or timezone.now()) - timedelta(seconds=self.lock_timeout)

    @staticmethod
    def _claimable(cutoff) -> Q:
        # Unlocked queued jobs, plus any queued/processing job whose lease ran out.
        return Q(status=Job.STATUS_QUEUED, locked_at__isnull=True) | Q(
            status__in=(Job.STATUS_QUEUED, Job.STATUS_PROCESSING),
            locked_at__lt=cutoff,
        )

    def try_lock(self, job_id, claimant: str, now=None) -> bool:
        """Compare-and-swap the lease onto claimant. True iff this call won."""
        now = now or timezone.now()
        rows = Job.objects.filter(self._claimable(self.lease_cutoff(now)), id=job_id).update(
            status=Job.STATUS_PROCESSING,
            locked_at=now,
            locked_by=claimant,
            started_at=now,
            updated_at=now,
        )
        return rows == 1

    def claim(self, claimant: str, job_id=None) -> Job | None:
        """Claim the oldest eligible job (or job_id only), or None if there is none.

        Postgres skips rows another claimant holds FOR UPDATE. The conditional
        update in try_lock is what makes the claim race-free everywhere else.
        """
        now = timezone.now()
        cutoff = self.lease_cutoff(now)
        with transaction.atomic():
            qs = Job.objects.filter(self._claimable(cutoff))
            if job_id is not None:
                qs = qs.filter(id=job_id)
            candidate = (
                qs.select_for_update(skip_locked=True)
                .order_by("created_at")
                .values_list("id", flat=True)
                .first()
            )
            if candidate is None:
                return None
            if not self.try_lock(candidate, claimant, now=now):
                logger.debug("Lost claim race for %s", candidate)
                return None

        job = Job.objects.get(id=candidate)
        logger.info("Job %s claimed by %s", job.id, claimant)
        return job

    # Transitions (fenced on the lease holder) ---------------------------

    def _held(self, job_id, claimant: str):
        return Job.objects.filter(id=job_id, status=Job.STATUS_PROCESSING, locked_by=claimant)

    def record_input(self, job_id, claimant: str, *, input_path: str, input_mime: str, input_size: int) -> bool:
        rows = self._held(job_id, claimant).update(
            input_path=input_path,
            input_mime=input_mime,
            input_size=input_size,
            updated_at=timezone.now(),
        )
        if rows != 1:
            logger.warning("Job %s: input not recorded, %s no longer holds the lease", job_id, claimant)
        return rows == 1

    def _finish(self, job_id, claimant: str, status: str, **fields) -> bool:
        sources = [s for s, targets in Job.TRANSITIONS.items() if status in targets]
        now = timezone.now()
        rows = Job.objects.filter(id=job_id, status__in=sources, locked_by=claimant).update(
            status=status,
            locked_at=None,
            locked_by=None,
            finished_at=now,
            updated_at=now,
            **fields,
        )
        if rows != 1:
            logger.warning("Job %s: %s -> %s rejected, lease not held", job_id, claimant, status)
        return rows == 1

    def complete(self, job_id, claimant: str, *, output_path: str, output_size: int, processing_time_ms: int) -> bool:
        return self._finish(
            job_id,
            claimant,
            Job.STATUS_DONE,
            output_path=output_path,
            output_size=output_size,
            processing_time_ms=processing_time_ms,
            error_message=None,
        )

    def fail(self, job_id, claimant: str, message: str) -> bool:
        return self._finish(
            job_id,
            claimant,
            Job.STATUS_ERROR,
            output_path=None,
            output_size=None,
            error_message=(message or "unknown error")[:MAX_ERROR_LENGTH],
        )
