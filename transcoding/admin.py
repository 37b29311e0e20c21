from django.contrib import admin

from .models import Job


@admin.register(Job)
class JobAdmin(admin.ModelAdmin):
    list_display = ("id", "original_filename", "owner", "status", "progress", "created_at")
    list_filter = ("status", "output_format")
    search_fields = ("id", "original_filename")
    readonly_fields = ("id", "created_at", "updated_at")
