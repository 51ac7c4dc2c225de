from django.apps import AppConfig


class LocationsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'locations'

    def ready(self):
        from django.db.models.signals import post_save
        from locations.models import City
        from locations.signals import city_post_save

        post_save.connect(city_post_save, sender=City)
