# dugsi/apps.py

from django.apps import AppConfig


class DugsiConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "dugsi"
    verbose_name = "Dugsi Classes & Attendance"

    def ready(self):
        import dugsi.signals  # noqa: F401
