"""
kalem.urls module.

Root URL configuration: Django admin plus the writing application.
"""

from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path('admin/', admin.site.urls),
    path('', include('writing.urls')),
]
