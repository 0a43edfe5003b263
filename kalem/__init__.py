"""
kalem package - Django project for AI-assisted foreign-language writing practice.

This is the main package for the kalem project, a Django application that sends
a learner's free-form writing to a Gemini model through Pydantic AI and keeps
longitudinal statistics about the learner's mistakes and idioms.

Key features:
- Daily writing exercises with AI corrections and three stylistic rewrites
- Idiom suggestions collected into a per-user idiom library
- Per-user mistake tracker with occurrence counts and mastery levels

The project uses Python 3.13 and Django 5.2.
"""
