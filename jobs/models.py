import uuid
from django.db import models


class Job(models.Model):
    STATUS_QUEUED = "queued"
    STATUS_PROCESSING = "processing"
    STATUS_DONE = "done"
    STATUS_ERROR = "error"

    STATUS_CHOICES = [
        (STATUS_QUEUED, "Queued"),
        (STATUS_PROCESSING, "Processing"),
        (STATUS_DONE, "Done"),
        (STATUS_ERROR, "Error"),
    ]

    TERMINAL_STATUSES = (STATUS_DONE, STATUS_ERROR)

    # Reclaiming a stale processing job re-stamps its lock; it is not a transition.
    TRANSITIONS = {
        STATUS_QUEUED: (STATUS_PROCESSING,),
        STATUS_PROCESSING: (STATUS_DONE, STATUS_ERROR),
        STATUS_DONE: (),
        STATUS_ERROR: (),
    }

    SOURCE_URL = "url"
    SOURCE_UPLOAD = "upload"

    SOURCE_CHOICES = [
        (SOURCE_URL, "URL"),
        (SOURCE_UPLOAD, "Upload"),
    ]

    FIT_CONTAIN = "contain"
    FIT_COVER = "cover"
    FIT_INSIDE = "inside"
    FIT_OUTSIDE = "outside"

    FIT_CHOICES = [
        (FIT_CONTAIN, "Contain"),
        (FIT_COVER, "Cover"),
        (FIT_INSIDE, "Inside"),
        (FIT_OUTSIDE, "Outside"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_QUEUED)

    source_type = models.CharField(max_length=8, choices=SOURCE_CHOICES)
    source_url = models.TextField(blank=True, null=True)
    input_path = models.CharField(max_length=512, blank=True, null=True)
    output_path = models.CharField(max_length=512, blank=True, null=True)

    quality = models.PositiveSmallIntegerField(default=85)  # 1..100
    width = models.PositiveIntegerField(blank=True, null=True)
    height = models.PositiveIntegerField(blank=True, null=True)
    fit = models.CharField(max_length=8, choices=FIT_CHOICES, default=FIT_CONTAIN)
    strip_metadata = models.BooleanField(default=True)
    filename = models.CharField(max_length=255, blank=True, null=True)

    input_mime = models.CharField(max_length=50, blank=True, null=True)
    input_size = models.PositiveIntegerField(blank=True, null=True)
    output_size = models.PositiveIntegerField(blank=True, null=True)
    processing_time_ms = models.PositiveIntegerField(blank=True, null=True)

    client_ip = models.CharField(max_length=45, blank=True, null=True)
    api_key_hash = models.CharField(max_length=64, blank=True, null=True, db_index=True)

    error_message = models.TextField(blank=True, null=True)

    locked_at = models.DateTimeField(blank=True, null=True, db_index=True)
    locked_by = models.CharField(max_length=64, blank=True, null=True)

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)
    started_at = models.DateTimeField(blank=True, null=True)
    finished_at = models.DateTimeField(blank=True, null=True)

    class Meta:
        ordering = ["created_at"]
        indexes = [
            models.Index(fields=["status", "created_at"], name="jobs_status_created_idx"),
        ]

    def __str__(self):
        return f"{self.id} {self.status} {self.source_type}"

    @classmethod
    def can_transition(cls, current: str, target: str) -> bool:
        return target in cls.TRANSITIONS.get(current, ())

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    @property
    def progress(self) -> int:
        if self.status == self.STATUS_DONE:
            return 100
        if self.status == self.STATUS_PROCESSING:
            return 50
        return 0

    def as_dict(self) -> dict:
        """Status view shared by the API and the admin."""

        def iso(dt):
            return dt.isoformat() if dt else None

        return {
            "job_id": str(self.id),
            "status": self.status,
            "progress": self.progress,
            "error": self.error_message,
            "output_path": self.output_path,
            "meta": {
                "input_mime": self.input_mime,
                "input_size": int(self.input_size or 0),
                "output_size": int(self.output_size or 0),
                "time_ms": self.processing_time_ms,
                "created_at": iso(self.created_at),
                "started_at": iso(self.started_at),
                "finished_at": iso(self.finished_at),
            },
        }
