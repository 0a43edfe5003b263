"""Database models for the writing application.

Contains the WritingExercise and WritingAnalysis records produced by each
submission, plus the per-user MistakeStat aggregate that the analysis pipeline
upserts.
"""

# ---------------------------------------------------------------------------
# Django
from django.db import models
from django.contrib.auth.models import User
from django.core.validators import MinValueValidator, MaxValueValidator
from django.utils import timezone
from datetime import timedelta


MAX_MASTERY_LEVEL = 5


class WritingExercise(models.Model):
    """A single free-form text a user wrote for a daily prompt."""

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name="writing_exercises",
        help_text="Author of this text",
    )
    prompt_text = models.TextField(
        blank=True, default="", help_text="Prompt the user answered"
    )
    user_text = models.TextField(help_text="Submitted text in the target language")
    word_count = models.PositiveIntegerField(
        default=0, help_text="Whitespace-separated word count of the text"
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        """Django model metadata."""

        ordering = ["-created_at"]
        verbose_name = "Writing Exercise"
        verbose_name_plural = "Writing Exercises"

    def __str__(self) -> str:
        """Return a truncated preview of the submitted text."""
        text: str = str(self.user_text)
        return text[:50] + ("…" if len(text) > 50 else "")

    @staticmethod
    def count_words(text: str) -> int:
        """Count whitespace-separated words."""
        return len(text.split())


class WritingAnalysis(models.Model):
    """
    Structured feedback for exactly one exercise.

    Written once by the analysis pipeline and never updated. The three variant
    columns hold rewrites in different registers; an empty string means the
    model produced no variant for that register.
    """

    exercise = models.OneToOneField(
        WritingExercise,
        on_delete=models.CASCADE,
        related_name="analysis",
        help_text="Exercise this analysis belongs to",
    )
    corrections = models.JSONField(
        default=list, help_text="Ordered corrections with category and explanation"
    )
    variant_formal = models.TextField(
        blank=True, default="", help_text="Formal business-register rewrite"
    )
    variant_colloquial = models.TextField(
        blank=True, default="", help_text="Quick-witted colloquial rewrite"
    )
    variant_sophisticated = models.TextField(
        blank=True, default="", help_text="Sophisticated rewrite using idioms"
    )
    suggested_idioms = models.JSONField(
        default=list, help_text="Idioms suggested for this text"
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        """Django model metadata."""

        ordering = ["-created_at"]
        verbose_name = "Writing Analysis"
        verbose_name_plural = "Writing Analyses"

    def __str__(self) -> str:
        friendly_date: str = self.created_at.strftime("%Y-%m-%d %H:%M")
        return f"Analysis of exercise {self.exercise_id} ({friendly_date})"


class MistakeStat(models.Model):
    """
    Running statistics for one recurring mistake pattern of one user.

    The (user, pattern) pair is unique; the pipeline increments ``occurrences``
    in place. ``mastery_level`` belongs to the user and is never touched by the
    pipeline.
    """

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name="mistake_stats",
        help_text="User who made these mistakes",
    )
    pattern = models.TextField(help_text="Short description of the mistake pattern")
    # Free text from the analysis model, no length bound
    category = models.TextField(
        blank=True,
        default="",
        help_text="Category of the mistake, as reported by the analysis",
    )
    example_wrong = models.TextField(
        blank=True, default="", help_text="Most recent wrong example"
    )
    example_correct = models.TextField(
        blank=True, default="", help_text="Correction of the most recent example"
    )
    occurrences = models.PositiveIntegerField(
        default=1, help_text="How many analyses reported this pattern"
    )
    mastery_level = models.PositiveSmallIntegerField(
        default=0,
        validators=[MinValueValidator(0), MaxValueValidator(MAX_MASTERY_LEVEL)],
        help_text="Self-assessed mastery (0 = not learned, 5 = mastered)",
    )
    first_seen = models.DateTimeField(
        default=timezone.now, help_text="When this pattern was first reported"
    )
    last_seen = models.DateTimeField(
        default=timezone.now, help_text="When this pattern was last reported"
    )

    class Meta:
        verbose_name = "Mistake Statistic"
        verbose_name_plural = "Mistake Statistics"
        ordering = ["-occurrences", "-last_seen"]
        constraints = [
            models.UniqueConstraint(
                fields=['user', 'pattern'], name='unique_mistake_pattern_per_user'
            ),
        ]
        indexes = [
            models.Index(
                fields=['user', 'occurrences'], name='mistake_user_occurrences_idx'
            ),
            models.Index(fields=['last_seen'], name='mistake_last_seen_idx'),
        ]

    def __str__(self) -> str:
        return f"{self.user.username} - {self.pattern} ({self.occurrences}x)"

    def is_recent(self, days: int = 7) -> bool:
        """Check if the pattern was reported recently."""
        cutoff = timezone.now() - timedelta(days=days)
        return self.last_seen >= cutoff

    def is_mastered(self) -> bool:
        return self.mastery_level >= MAX_MASTERY_LEVEL
