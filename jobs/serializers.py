from rest_framework import serializers
from rest_framework.fields import empty

from .models import Job
from .security import is_http_url, sanitize_filename
from .store import JobParams

_FITS = dict(Job.FIT_CHOICES)


class LenientBooleanField(serializers.BooleanField):
    """Form-friendly boolean: an absent field means the default, an unrecognised value means true."""

    default_empty_html = empty

    def to_internal_value(self, data):
        try:
            return super().to_internal_value(data)
        except serializers.ValidationError:
            return True


class JobParamsSerializer(serializers.Serializer):
    quality = serializers.IntegerField(required=False, default=85)
    width = serializers.IntegerField(required=False, allow_null=True, min_value=1, default=None)
    height = serializers.IntegerField(required=False, allow_null=True, min_value=1, default=None)
    fit = serializers.CharField(required=False, allow_blank=True, default=Job.FIT_CONTAIN)
    strip_metadata = LenientBooleanField(required=False, default=True)
    filename = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=255, default=None)

    def validate_quality(self, value):
        return max(1, min(100, value))

    def validate_fit(self, value):
        value = (value or "").strip().lower()
        return value if value in _FITS else Job.FIT_CONTAIN

    def validate_filename(self, value):
        if not value:
            return None
        return sanitize_filename(value) or None

    def to_params(self) -> JobParams:
        return JobParams(**self.validated_data)


class UrlJobSerializer(JobParamsSerializer):
    source_url = serializers.URLField(max_length=2048)

    def validate_source_url(self, value):
        if not is_http_url(value):
            raise serializers.ValidationError("Only http and https URLs are accepted.")
        return value

    def to_params(self) -> JobParams:
        data = dict(self.validated_data)
        data.pop("source_url", None)
        return JobParams(**data)
