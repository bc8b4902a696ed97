from django.apps import AppConfig


class HomeConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "home"
    verbose_name = "Users and routing"

    def ready(self):
        from . import signals  # noqa: F401
