import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Job",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("original_filename", models.CharField(max_length=255)),
                ("input_file_url", models.CharField(max_length=1024)),
                (
                    "output_format",
                    models.CharField(choices=[("hls", "Hls"), ("dash", "Dash")], default="hls", max_length=8),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                        ],
                        default="pending",
                        max_length=16,
                    ),
                ),
                ("progress", models.PositiveSmallIntegerField(default=0)),
                ("output_url", models.CharField(blank=True, default="", max_length=2048)),
                ("resolution_variants", models.JSONField(blank=True, default=list)),
                ("total_size_bytes", models.BigIntegerField(default=0)),
                ("error_message", models.TextField(blank=True, default="")),
                ("processing_node", models.CharField(blank=True, default="", max_length=255)),
                ("priority", models.IntegerField(default=5)),
                ("retry_count", models.IntegerField(default=0)),
                ("estimated_duration", models.IntegerField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "owner",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="transcoding_jobs",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "db_table": "transcoding_jobs",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "-priority", "created_at"], name="idx_jobs_status_priority"),
                    models.Index(fields=["owner", "status"], name="idx_jobs_owner_status"),
                ],
            },
        ),
    ]
