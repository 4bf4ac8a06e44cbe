from django.apps import AppConfig


class FreightConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "freight"
    verbose_name = "Dispatch & Settlement"
