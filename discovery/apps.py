from django.apps import AppConfig


class DiscoveryConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'discovery'

    def ready(self):
        from celery.signals import task_failure, task_success
        from discovery.signals import source_task_failure, source_task_success

        task_success.connect(source_task_success, dispatch_uid='discovery_source_task_success')
        task_failure.connect(source_task_failure, dispatch_uid='discovery_source_task_failure')
