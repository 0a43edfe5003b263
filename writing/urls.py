"""
writing.urls module.

URL configuration for the writing application.
"""

from django.urls import path
from . import views

urlpatterns = [
    # Random daily prompt
    path('prompt/', views.writing_prompt, name='writing_prompt'),
    # Store a new exercise and analyse it
    path('exercises/', views.submit_writing, name='submit_writing'),
    # Analyse an existing exercise
    path('analyze/', views.analyze_writing, name='analyze_writing'),
    # Mistake tracker
    path('mistakes/', views.mistake_tracker, name='mistake_tracker'),
    path(
        'mistakes/<int:mistake_id>/mastery/',
        views.update_mastery,
        name='update_mastery',
    ),
    # Idiom library, folded from all analyses
    path('idioms/', views.idiom_library, name='idiom_library'),
]
