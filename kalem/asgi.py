"""ASGI entry point for the kalem project; the writing views are async."""

import os

from django.core.asgi import get_asgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'kalem.settings')

application = get_asgi_application()
