"""writing.apps module.

Django application configuration for the *writing* app used by the **kalem**
project.
"""

from django.apps import AppConfig


class WritingConfig(AppConfig):
    """Django ``AppConfig`` for the **writing** application."""

    default_auto_field = 'django.db.models.BigAutoField'
    name = 'writing'
    verbose_name = 'Writing practice'
