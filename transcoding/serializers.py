from django.conf import settings
from rest_framework import serializers

from .errors import InvalidJobId
from .models import Job
from .pipeline import parse_job_id


class RenditionDescriptorSerializer(serializers.Serializer):
    resolution = serializers.CharField()
    width = serializers.IntegerField()
    height = serializers.IntegerField()
    bitrate = serializers.IntegerField()
    url = serializers.CharField()
    size_bytes = serializers.IntegerField()


class JobSerializer(serializers.ModelSerializer):
    resolution_variants = RenditionDescriptorSerializer(many=True, read_only=True)

    class Meta:
        model = Job
        fields = [
            "id",
            "original_filename",
            "input_file_url",
            "output_format",
            "status",
            "progress",
            "output_url",
            "resolution_variants",
            "total_size_bytes",
            "error_message",
            "processing_node",
            "priority",
            "estimated_duration",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class JobCreateSerializer(serializers.Serializer):
    original_filename = serializers.CharField(max_length=255)
    key = serializers.CharField(max_length=1024)
    output_format = serializers.ChoiceField(choices=Job.OutputFormat.choices, default=Job.OutputFormat.HLS)
    priority = serializers.IntegerField(required=False, min_value=0, max_value=10, default=5)

    def validate_key(self, value):
        """Users may only register sources under their own upload prefix."""
        user = self.context["request"].user
        if not value.startswith(f"{user.pk}/"):
            raise serializers.ValidationError("Key is outside your upload area.")
        return value


class PresignRequestSerializer(serializers.Serializer):
    filename = serializers.CharField()
    content_type = serializers.CharField(required=False, allow_blank=True)


class PresignResponseSerializer(serializers.Serializer):
    key = serializers.CharField()
    url = serializers.URLField()
    headers = serializers.DictField(child=serializers.CharField(), required=False)


class StartTranscodeSerializer(serializers.Serializer):
    jobId = serializers.CharField()

    def validate_jobId(self, value):
        try:
            return parse_job_id(value)
        except InvalidJobId as e:
            raise serializers.ValidationError(str(e))


class BulkTranscodeSerializer(serializers.Serializer):
    jobIds = serializers.ListField(child=serializers.CharField(), allow_empty=False)

    def validate_jobIds(self, value):
        limit = settings.TRANSCODE_BULK_MAX_JOBS
        if len(value) > limit:
            raise serializers.ValidationError(f"Maximum {limit} jobs per batch")
        seen = set()
        deduped = []
        for raw in value:
            try:
                job_id = parse_job_id(raw)
            except InvalidJobId:
                raise serializers.ValidationError(f"Invalid job ID format: {raw}")
            if job_id not in seen:
                seen.add(job_id)
                deduped.append(job_id)
        return deduped
