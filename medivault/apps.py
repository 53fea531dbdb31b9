from django.apps import AppConfig


class MedivaultConfig(AppConfig):
    name = 'medivault'
    default_auto_field = 'django.db.models.BigAutoField'
