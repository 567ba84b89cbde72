import uuid

from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Job",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("queued", "Queued"),
                            ("processing", "Processing"),
                            ("done", "Done"),
                            ("error", "Error"),
                        ],
                        default="queued",
                        max_length=16,
                    ),
                ),
                ("source_type", models.CharField(choices=[("url", "URL"), ("upload", "Upload")], max_length=8)),
                ("source_url", models.TextField(blank=True, null=True)),
                ("input_path", models.CharField(blank=True, max_length=512, null=True)),
                ("output_path", models.CharField(blank=True, max_length=512, null=True)),
                ("quality", models.PositiveSmallIntegerField(default=85)),
                ("width", models.PositiveIntegerField(blank=True, null=True)),
                ("height", models.PositiveIntegerField(blank=True, null=True)),
                (
                    "fit",
                    models.CharField(
                        choices=[
                            ("contain", "Contain"),
                            ("cover", "Cover"),
                            ("inside", "Inside"),
                            ("outside", "Outside"),
                        ],
                        default="contain",
                        max_length=8,
                    ),
                ),
                ("strip_metadata", models.BooleanField(default=True)),
                ("filename", models.CharField(blank=True, max_length=255, null=True)),
                ("input_mime", models.CharField(blank=True, max_length=50, null=True)),
                ("input_size", models.PositiveIntegerField(blank=True, null=True)),
                ("output_size", models.PositiveIntegerField(blank=True, null=True)),
                ("processing_time_ms", models.PositiveIntegerField(blank=True, null=True)),
                ("client_ip", models.CharField(blank=True, max_length=45, null=True)),
                ("api_key_hash", models.CharField(blank=True, db_index=True, max_length=64, null=True)),
                ("error_message", models.TextField(blank=True, null=True)),
                ("locked_at", models.DateTimeField(blank=True, db_index=True, null=True)),
                ("locked_by", models.CharField(blank=True, max_length=64, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("finished_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "ordering": ["created_at"],
                "indexes": [
                    models.Index(fields=["status", "created_at"], name="jobs_status_created_idx"),
                ],
            },
        ),
    ]
