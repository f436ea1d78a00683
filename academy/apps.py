"""
Academy Application Configuration

Django application configuration for the Web3 course marketplace. The app is
split into logical sub-packages (users, courses, learning, payments,
certifications) that share a single model registry and URL namespace.

Author: Academy Development Team
Version: 1.0.0
"""

from django.apps import AppConfig


class AcademyConfig(AppConfig):
    """
    Configuration class for the academy Django application.

    Attributes:
        default_auto_field: Default primary key field type for models
        name: Application name for Django registration
        verbose_name: Human-readable application name for admin interface
    """

    default_auto_field: str = "django.db.models.BigAutoField"
    name: str = "academy"
    verbose_name: str = "Academy Marketplace"

    def ready(self) -> None:
        """
        Register signal handlers once the app registry is populated.

        Profile creation lives in users.models and is connected on import;
        the dj-stripe webhook handlers live in payments.signals.
        """
        super().ready()
        from .payments import signals  # noqa: F401
