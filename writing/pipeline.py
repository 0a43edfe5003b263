"""
Writing analysis pipeline.

:func:`analyze_submission` runs one submission end to end:

1. Build the instruction and call the analysis model (:mod:`writing.ai_service`)
2. Validate and normalise the answer (:class:`WritingAnalysisResult`)
3. Store the analysis, then fold its mistake patterns into ``MistakeStat`` rows

Mistake counting is an atomic insert-or-increment keyed on (user, pattern).
The idiom library is never stored: :func:`aggregate_idioms` recomputes it from
the user's analyses on every read.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import logfire
from asgiref.sync import sync_to_async
from django.conf import settings
from django.contrib.auth.models import User
from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from .ai_service import ai_service
from .analysis_models import (
    IdiomView,
    MistakePattern,
    SuggestedIdiom,
    WritingAnalysisResult,
)
from .exceptions import (
    AggregationWarning,
    InvalidRequestError,
    MalformedAnalysisError,
    PersistenceError,
)
from .models import MAX_MASTERY_LEVEL, MistakeStat, WritingAnalysis, WritingExercise

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


async def analyze_submission(
    exercise_id: Any, user_text: Optional[str], user: User
) -> WritingAnalysisResult:
    """
    Analyse the text of one exercise and record the results.

    Args:
        exercise_id: Primary key of a ``WritingExercise`` owned by ``user``
        user_text: The submitted text, passed to the model unchanged
        user: Owner of the exercise

    Returns:
        The validated analysis, as returned to the caller

    Raises:
        InvalidRequestError: Missing input, unknown exercise, or an exercise
            that already has an analysis. No model call is made.
        AnalysisServiceError: The analysis model failed.
        AnalysisFormatError: The answer was unusable; nothing is stored.
        PersistenceError: The analysis could not be stored; no mistake
            statistics are updated.
    """
    if not exercise_id or not isinstance(user_text, str) or not user_text.strip():
        raise InvalidRequestError("exerciseId and userText are required")
    exercise_pk = _parse_exercise_id(exercise_id)

    exercise = await WritingExercise.objects.filter(pk=exercise_pk, user=user).afirst()
    if exercise is None:
        raise InvalidRequestError(f"Exercise {exercise_pk} not found")
    # Re-analysis is not supported: one analysis per exercise, ever
    if await WritingAnalysis.objects.filter(exercise=exercise).aexists():
        raise InvalidRequestError(
            f"Exercise {exercise_pk} has already been analyzed"
        )

    with logfire.span(
        'analyze writing exercise {exercise_id}', exercise_id=exercise_pk
    ):
        logger.info(
            "Analyzing exercise %s (%d characters)", exercise_pk, len(user_text)
        )
        prompt = ai_service.build_analysis_prompt(user_text)
        raw_text = await ai_service.request_analysis(prompt)
        result = validate_analysis(raw_text)
        await persist_analysis(exercise, user.pk, result)

    return result


def _parse_exercise_id(value: Any) -> int:
    """Accept an int or a decimal string; booleans and floats are rejected."""
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise InvalidRequestError("exerciseId must be an integer")
    try:
        return int(value)
    except ValueError:
        raise InvalidRequestError("exerciseId must be an integer") from None


async def submit_exercise(
    user: User, prompt_text: str, user_text: str
) -> Tuple[WritingExercise, WritingAnalysisResult]:
    """Store a new exercise for ``user`` and analyse it right away."""
    if not isinstance(user_text, str):
        raise InvalidRequestError("text is required")
    if len(user_text.strip()) < settings.WRITING_MIN_LENGTH:
        raise InvalidRequestError(
            f"Text must be at least {settings.WRITING_MIN_LENGTH} characters long"
        )

    exercise = await WritingExercise.objects.acreate(
        user=user,
        prompt_text=prompt_text or "",
        user_text=user_text,
        word_count=WritingExercise.count_words(user_text),
    )
    result = await analyze_submission(exercise.pk, user_text, user)
    return exercise, result


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_analysis(raw_text: str) -> WritingAnalysisResult:
    """Parse the model's answer, logging anything that will be passed through."""
    try:
        result = WritingAnalysisResult.from_response_text(raw_text)
    except MalformedAnalysisError as e:
        logger.error("Discarding analysis response: %s", e.message)
        raise

    unknown = result.unknown_categories()
    if unknown:
        logger.info(
            "Unknown correction categories kept as-is: %s", ", ".join(unknown)
        )

    registers = {'formal', 'colloquial', 'sophisticated'}
    missing = registers - set(result.variants.available())
    if missing:
        logger.info("No variant produced for: %s", ", ".join(sorted(missing)))

    logger.info(
        "Analysis complete: %d corrections, %d idioms, %d mistake patterns",
        len(result.corrections),
        len(result.suggested_idioms),
        len(result.mistake_patterns),
    )
    return result


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


def analysis_fields(result: WritingAnalysisResult) -> Dict[str, Any]:
    """Map a validated result onto ``WritingAnalysis`` columns."""
    return {
        'corrections': [c.model_dump(by_alias=True) for c in result.corrections],
        'variant_formal': result.variants.formal,
        'variant_colloquial': result.variants.colloquial,
        'variant_sophisticated': result.variants.sophisticated,
        'suggested_idioms': [
            idiom.model_dump(by_alias=True) for idiom in result.suggested_idioms
        ],
    }


async def persist_analysis(
    exercise: WritingExercise, user_id: int, result: WritingAnalysisResult
) -> WritingAnalysis:
    """
    Store the analysis, then count each of its mistake patterns.

    The analysis insert comes first and is fatal on failure. Each mistake
    pattern is counted independently: a failing pattern is logged and the
    remaining ones are still counted. Nothing is rolled back.

    Args:
        exercise: Exercise the analysis belongs to
        user_id: Owner whose mistake statistics are updated
        result: Validated analysis

    Returns:
        The stored ``WritingAnalysis``

    Raises:
        PersistenceError: If the analysis row could not be written
    """
    try:
        analysis = await WritingAnalysis.objects.acreate(
            exercise=exercise, **analysis_fields(result)
        )
    except DatabaseError as e:
        logger.error("Could not store analysis for exercise %s: %s", exercise.pk, e)
        raise PersistenceError(
            f"Could not store analysis for exercise {exercise.pk}"
        ) from e

    counted = 0
    for pattern in result.mistake_patterns:
        try:
            await record_mistake(user_id, pattern)
        except AggregationWarning as warning:
            logger.warning("AggregationWarning: %s", warning.message)
        else:
            counted += 1

    logger.info(
        "Stored analysis %s; counted %d of %d mistake patterns",
        analysis.pk,
        counted,
        len(result.mistake_patterns),
    )
    return analysis


# ---------------------------------------------------------------------------
# Mistake statistics
# ---------------------------------------------------------------------------


def _create_mistake_stat(
    user_id: int, pattern: MistakePattern, seen_at: datetime
) -> MistakeStat:
    with transaction.atomic():
        return MistakeStat.objects.create(
            user_id=user_id,
            pattern=pattern.pattern,
            category=pattern.category,
            example_wrong=pattern.example_wrong,
            example_correct=pattern.example_correct,
            occurrences=1,
            mastery_level=0,
            first_seen=seen_at,
            last_seen=seen_at,
        )


def upsert_mistake_stat(
    user_id: int, pattern: MistakePattern, seen_at: Optional[datetime] = None
) -> MistakeStat:
    """
    Insert a new ``MistakeStat`` or increment the existing one.

    The increment is a single ``UPDATE ... SET occurrences = occurrences + 1``
    executed by the database, and the unique (user, pattern) constraint
    rejects a second insert. A request that loses the insert race therefore
    falls back to the increment instead of creating a duplicate or losing a
    count. Category, first_seen and mastery_level of an existing row are
    left alone.

    Args:
        user_id: Owner of the statistic
        pattern: Mistake pattern reported by the analysis
        seen_at: Timestamp of the occurrence; defaults to now

    Returns:
        The statistic after the update
    """
    seen_at = seen_at or timezone.now()
    existing = MistakeStat.objects.filter(user_id=user_id, pattern=pattern.pattern)
    increment = {
        'occurrences': F('occurrences') + 1,
        'example_wrong': pattern.example_wrong,
        'example_correct': pattern.example_correct,
        'last_seen': seen_at,
    }

    if existing.update(**increment):
        return existing.get()

    try:
        return _create_mistake_stat(user_id, pattern, seen_at)
    except IntegrityError:
        # A concurrent request created the row after our update missed it
        logger.info("Concurrent insert of mistake pattern %r", pattern.pattern)
        existing.update(**increment)
        return existing.get()


async def record_mistake(user_id: int, pattern: MistakePattern) -> MistakeStat:
    """
    Count one reported mistake pattern for ``user_id``.

    Raises:
        AggregationWarning: If the pattern has no description, the database
            rejected the write, or the row was gone before it could be read back
    """
    if not pattern.pattern.strip():
        raise AggregationWarning("Skipped a mistake pattern without description")
    try:
        return await sync_to_async(upsert_mistake_stat)(user_id, pattern)
    except (DatabaseError, MistakeStat.DoesNotExist) as e:
        raise AggregationWarning(
            f"Could not count mistake pattern {pattern.pattern!r}: {e}"
        ) from e


async def set_mastery_level(stat: MistakeStat, level: Any) -> MistakeStat:
    """Set the user's own mastery level (0-5); occurrences are not touched."""
    if isinstance(level, bool):
        raise InvalidRequestError("Mastery level must be an integer")
    try:
        value = int(level)
    except (TypeError, ValueError):
        raise InvalidRequestError("Mastery level must be an integer") from None
    if not 0 <= value <= MAX_MASTERY_LEVEL:
        raise InvalidRequestError(
            f"Mastery level must be between 0 and {MAX_MASTERY_LEVEL}"
        )

    stat.mastery_level = value
    await stat.asave(update_fields=['mastery_level'])
    return stat


async def top_mistakes(user: User, limit: int = 10) -> List[MistakeStat]:
    """Return the user's most frequent mistake patterns."""
    return [
        stat
        async for stat in MistakeStat.objects.filter(user=user).order_by(
            '-occurrences', '-last_seen'
        )[:limit]
    ]


# ---------------------------------------------------------------------------
# Idiom library
# ---------------------------------------------------------------------------


def aggregate_idioms(analyses: Iterable[Any]) -> List[IdiomView]:
    """
    Fold analyses into one ``IdiomView`` per distinct idiom text.

    ``analyses`` are expected newest first, but the result does not depend on
    the order: an idiom's example and ``last_seen`` come from the analysis
    with the newest ``created_at``. ``occurrences`` counts analyses, so an
    idiom suggested twice in one analysis counts once.

    Args:
        analyses: Objects with ``created_at`` and ``suggested_idioms``
            (``WritingAnalysis`` rows or equivalents)

    Returns:
        Idiom views sorted by occurrences, most frequent first
    """
    views: Dict[str, IdiomView] = {}

    for analysis in analyses:
        seen_at: datetime = analysis.created_at
        counted: Set[str] = set()

        for raw in analysis.suggested_idioms or []:
            idiom = (
                raw
                if isinstance(raw, SuggestedIdiom)
                else SuggestedIdiom.model_validate(raw)
            )
            key = idiom.idiom
            if not key.strip() or key in counted:
                continue
            counted.add(key)

            view = views.get(key)
            if view is None:
                views[key] = IdiomView(
                    idiom=key,
                    meaning=idiom.meaning,
                    usage_note=idiom.usage_note,
                    example_in_context=idiom.example_in_context,
                    occurrences=1,
                    last_seen=seen_at,
                )
                continue

            view.occurrences += 1
            if seen_at > view.last_seen:
                view.last_seen = seen_at
                view.example_in_context = idiom.example_in_context

    return sorted(views.values(), key=lambda view: view.occurrences, reverse=True)


async def load_idiom_library(user: User, search: str = "") -> List[IdiomView]:
    """Recompute the user's idiom library, optionally filtered by ``search``."""
    analyses = [
        analysis
        async for analysis in WritingAnalysis.objects.filter(exercise__user=user)
        .only('suggested_idioms', 'created_at')
        .order_by('-created_at')
    ]
    views = aggregate_idioms(analyses)
    if search.strip():
        views = [view for view in views if view.matches(search)]
    return views
