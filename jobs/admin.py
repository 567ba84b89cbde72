from django.contrib import admin
from .models import Job


@admin.register(Job)
class JobAdmin(admin.ModelAdmin):
    list_display = ("id", "status", "source_type", "fit", "quality", "locked_by", "created_at", "finished_at")
    list_filter = ("status", "source_type", "fit")
    search_fields = ("id", "source_url", "output_path", "locked_by")
    readonly_fields = ("api_key_hash", "locked_at", "locked_by", "started_at", "finished_at", "created_at", "updated_at")
