from django.contrib import admin
from django.urls import path
from jobs import views

urlpatterns = [
    path("admin/", admin.site.urls),

    # Healthcheck
    path("healthz", views.healthz, name="healthz"),
    path("api/v1/health", views.healthz, name="health"),

    # API
    path("api/v1/jobs", views.create_job, name="create_job"),
    path("api/v1/jobs/<uuid:job_id>", views.job_status, name="job_status"),
    path("api/v1/jobs/<uuid:job_id>/download", views.download_output, name="download_output"),
    path("api/v1/convert", views.convert_now, name="convert_now"),
    path("api/v1/results/<uuid:result_id>", views.download_result, name="download_result"),
]
