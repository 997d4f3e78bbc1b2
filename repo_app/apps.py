from django.apps import AppConfig


class RepoAppConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'repo_app'
    verbose_name = 'CTS repositories'
