"""
Django app configuration for core infrastructure.
"""

from django.apps import AppConfig


class CoreConfig(AppConfig):
    """Configuration for the core application (no concrete models)."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "core"
    verbose_name = "Core"
