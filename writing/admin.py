"""
writing.admin module.

Django-admin registrations for the *kalem* writing application.
"""

from django.contrib import admin

from .models import MistakeStat, WritingAnalysis, WritingExercise

# ---------------------------------------------------------------------------
# Admin registrations
# ---------------------------------------------------------------------------


@admin.register(WritingExercise)
class WritingExerciseAdmin(admin.ModelAdmin):
    """Admin configuration for :class:`writing.models.WritingExercise`."""

    list_display = ("id", "short_text", "user", "word_count", "created_at")
    list_filter = ("user",)
    search_fields = ("user_text", "prompt_text", "user__username")
    readonly_fields = ("created_at",)
    ordering = ("-created_at",)

    @staticmethod
    def short_text(obj: "WritingExercise") -> str:
        """Return a truncated preview of the submitted text."""
        text: str = str(obj.user_text)
        return text[:60] + ("…" if len(text) > 60 else "")


@admin.register(WritingAnalysis)
class WritingAnalysisAdmin(admin.ModelAdmin):
    """Admin configuration for :class:`writing.models.WritingAnalysis`."""

    list_display = ("id", "exercise", "correction_count", "created_at")
    search_fields = ("exercise__user_text", "exercise__user__username")
    readonly_fields = ("created_at",)
    ordering = ("-created_at",)

    def get_queryset(self, request):
        """Optimize queryset with select_related."""
        return super().get_queryset(request).select_related('exercise')

    @staticmethod
    def correction_count(obj: "WritingAnalysis") -> int:
        return len(obj.corrections or [])

    correction_count.short_description = "Corrections"


# --------------------------------------------------------------------------- #
# Mistake tracker admin                                                       #
# --------------------------------------------------------------------------- #


@admin.register(MistakeStat)
class MistakeStatAdmin(admin.ModelAdmin):
    """Admin configuration for :class:`writing.models.MistakeStat`."""

    list_display = (
        "user",
        "pattern",
        "category",
        "occurrences",
        "mastery_level",
        "is_recent_display",
        "last_seen",
    )
    list_editable = ("mastery_level",)
    list_filter = ("category", "mastery_level", "last_seen")
    search_fields = ("user__username", "pattern", "example_wrong")
    readonly_fields = ("occurrences", "first_seen", "last_seen")
    ordering = ("-occurrences", "-last_seen")

    @staticmethod
    def is_recent_display(obj: "MistakeStat") -> str:
        """Display whether the pattern was reported in the last week."""
        return "Yes" if obj.is_recent() else "No"

    is_recent_display.short_description = "Recent"
