"""
Tests for mistake statistics and the idiom library fold.
"""

from datetime import datetime, timedelta, timezone as dt_timezone
from types import SimpleNamespace
from unittest.mock import patch

from django.contrib.auth.models import User
from django.db import DatabaseError, IntegrityError, transaction
from django.test import TestCase, TransactionTestCase
from django.utils import timezone

from . import pipeline
from .analysis_models import MistakePattern, SuggestedIdiom, WritingAnalysisResult
from .exceptions import AggregationWarning, InvalidRequestError, PersistenceError
from .models import MistakeStat, WritingAnalysis, WritingExercise
from .pipeline import (
    aggregate_idioms,
    persist_analysis,
    record_mistake,
    set_mastery_level,
    top_mistakes,
    upsert_mistake_stat,
)


def make_pattern(
    pattern: str = "Akkusativendung vergessen",
    example_wrong: str = "kitap okudum",
    example_correct: str = "kitabı okudum",
) -> MistakePattern:
    return MistakePattern(
        pattern=pattern,
        category="grammar",
        example_wrong=example_wrong,
        example_correct=example_correct,
    )


class MistakeUpsertTest(TestCase):
    """Test insert-or-increment of MistakeStat rows."""

    def setUp(self) -> None:
        self.user = User.objects.create_user(username='learner', password='pw')

    def test_first_occurrence_creates_row(self) -> None:
        seen_at = timezone.now()

        stat = upsert_mistake_stat(self.user.pk, make_pattern(), seen_at)

        self.assertEqual(stat.occurrences, 1)
        self.assertEqual(stat.mastery_level, 0)
        self.assertEqual(stat.category, "grammar")
        self.assertEqual(stat.first_seen, seen_at)
        self.assertEqual(stat.last_seen, seen_at)

    def test_repeat_increments_and_replaces_examples(self) -> None:
        first_seen = timezone.now() - timedelta(days=2)
        created = upsert_mistake_stat(self.user.pk, make_pattern(), first_seen)
        created.mastery_level = 3
        created.save()

        later = timezone.now()
        repeated = MistakePattern(
            pattern="Akkusativendung vergessen",
            category="vocabulary",
            example_wrong="ev gördüm",
            example_correct="evi gördüm",
        )
        stat = upsert_mistake_stat(self.user.pk, repeated, later)

        self.assertEqual(stat.pk, created.pk)
        self.assertEqual(stat.occurrences, 2)
        self.assertEqual(stat.example_wrong, "ev gördüm")
        self.assertEqual(stat.example_correct, "evi gördüm")
        self.assertEqual(stat.last_seen, later)
        # Untouched by the increment
        self.assertEqual(stat.first_seen, first_seen)
        self.assertEqual(stat.category, "grammar")
        self.assertEqual(stat.mastery_level, 3)

    def test_patterns_are_matched_exactly(self) -> None:
        upsert_mistake_stat(self.user.pk, make_pattern("Vokalharmonie"))
        upsert_mistake_stat(self.user.pk, make_pattern("vokalharmonie"))
        upsert_mistake_stat(self.user.pk, make_pattern("Vokalharmonie "))

        self.assertEqual(MistakeStat.objects.filter(user=self.user).count(), 3)

    def test_patterns_are_per_user(self) -> None:
        other = User.objects.create_user(username='other', password='pw')

        upsert_mistake_stat(self.user.pk, make_pattern())
        upsert_mistake_stat(other.pk, make_pattern())

        self.assertEqual(
            list(MistakeStat.objects.values_list('occurrences', flat=True)), [1, 1]
        )

    def test_long_category_is_counted(self) -> None:
        """Categories are free model text and are stored without truncation."""
        category = "Verbkonjugation im Aorist bei zusammengesetzten Verben " * 4
        pattern = MistakePattern(pattern="Aorist vergessen", category=category)

        upsert_mistake_stat(self.user.pk, pattern)
        stat = upsert_mistake_stat(self.user.pk, pattern)

        self.assertEqual(stat.occurrences, 2)
        self.assertEqual(stat.category, category)
        self.assertIsNone(MistakeStat._meta.get_field('category').max_length)

    def test_unique_constraint(self) -> None:
        MistakeStat.objects.create(user=self.user, pattern="Vokalharmonie")

        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                MistakeStat.objects.create(user=self.user, pattern="Vokalharmonie")

    def test_lost_insert_race_falls_back_to_increment(self) -> None:
        """A concurrent insert between update and create is not lost."""

        def concurrent_create(user_id, pattern, seen_at):
            MistakeStat.objects.create(
                user_id=user_id, pattern=pattern.pattern, occurrences=1
            )
            raise IntegrityError("duplicate key value")

        with patch(
            'writing.pipeline._create_mistake_stat', side_effect=concurrent_create
        ):
            stat = upsert_mistake_stat(self.user.pk, make_pattern())

        self.assertEqual(stat.occurrences, 2)
        self.assertEqual(stat.example_wrong, "kitap okudum")
        self.assertEqual(MistakeStat.objects.count(), 1)


class MistakeRecordingTest(TransactionTestCase):
    """Test async recording of mistake patterns after an analysis."""

    async def asetUp(self) -> None:
        self.user = await User.objects.acreate_user(username='learner', password='pw')
        self.exercise = await WritingExercise.objects.acreate(
            user=self.user, user_text="Bugün kitap okudum."
        )

    async def test_blank_pattern_is_skipped(self) -> None:
        await self.asetUp()

        with self.assertRaises(AggregationWarning):
            await record_mistake(self.user.pk, make_pattern("   "))

        self.assertEqual(await MistakeStat.objects.acount(), 0)

    async def test_database_error_becomes_warning(self) -> None:
        await self.asetUp()

        def failing_upsert(user_id, pattern, seen_at=None):
            raise DatabaseError("connection lost")

        with patch('writing.pipeline.upsert_mistake_stat', new=failing_upsert):
            with self.assertRaises(AggregationWarning) as ctx:
                await record_mistake(self.user.pk, make_pattern())

        self.assertIn("connection lost", ctx.exception.message)

    async def test_vanished_row_becomes_warning(self) -> None:
        """Insert rejected but no row to increment: warn, do not abort."""
        await self.asetUp()
        real_create = pipeline._create_mistake_stat

        def create_or_conflict(user_id, pattern, seen_at):
            if pattern.pattern == "Vokalharmonie":
                raise IntegrityError("duplicate key value")
            return real_create(user_id, pattern, seen_at)

        result = WritingAnalysisResult(
            mistake_patterns=[
                make_pattern("Vokalharmonie"),
                make_pattern("Akkusativendung vergessen"),
            ]
        )

        with patch(
            'writing.pipeline._create_mistake_stat', side_effect=create_or_conflict
        ):
            with self.assertRaises(AggregationWarning):
                await record_mistake(self.user.pk, make_pattern("Vokalharmonie"))
            with self.assertLogs('writing.pipeline', level='WARNING'):
                await persist_analysis(self.exercise, self.user.pk, result)

        stats = {
            stat.pattern: stat.occurrences
            async for stat in MistakeStat.objects.filter(user=self.user)
        }
        self.assertEqual(stats, {"Akkusativendung vergessen": 1})

    async def test_persist_continues_after_bad_pattern(self) -> None:
        """One unusable pattern does not stop the others."""
        await self.asetUp()
        result = WritingAnalysisResult(
            mistake_patterns=[
                make_pattern("Vokalharmonie"),
                make_pattern(""),
                make_pattern("Vokalharmonie"),
                make_pattern("Akkusativendung vergessen"),
            ]
        )

        with self.assertLogs('writing.pipeline', level='WARNING') as logs:
            analysis = await persist_analysis(self.exercise, self.user.pk, result)

        self.assertEqual(analysis.exercise_id, self.exercise.pk)
        self.assertIn("AggregationWarning", logs.output[0])
        stats = {
            stat.pattern: stat.occurrences
            async for stat in MistakeStat.objects.filter(user=self.user)
        }
        self.assertEqual(
            stats, {"Vokalharmonie": 2, "Akkusativendung vergessen": 1}
        )

    async def test_persist_rejects_second_analysis(self) -> None:
        """The one-to-one link stops a second analysis of the same exercise."""
        await self.asetUp()
        await WritingAnalysis.objects.acreate(exercise=self.exercise)
        result = WritingAnalysisResult(mistake_patterns=[make_pattern()])

        with self.assertRaises(PersistenceError):
            await persist_analysis(self.exercise, self.user.pk, result)

        self.assertEqual(await MistakeStat.objects.acount(), 0)

    async def test_top_mistakes(self) -> None:
        await self.asetUp()
        now = timezone.now()
        for index, occurrences in enumerate((2, 5, 5, 1)):
            await MistakeStat.objects.acreate(
                user=self.user,
                pattern=f"pattern {index}",
                occurrences=occurrences,
                last_seen=now - timedelta(hours=index),
            )

        mistakes = await top_mistakes(self.user, limit=3)

        self.assertEqual(
            [m.pattern for m in mistakes], ["pattern 1", "pattern 2", "pattern 0"]
        )


class MasteryLevelTest(TransactionTestCase):
    """Test user-controlled mastery levels."""

    async def asetUp(self) -> None:
        user = await User.objects.acreate_user(username='learner', password='pw')
        self.stat = await MistakeStat.objects.acreate(
            user=user, pattern="Vokalharmonie", occurrences=4
        )

    async def test_valid_levels(self) -> None:
        await self.asetUp()

        for level in (0, 5, "3"):
            stat = await set_mastery_level(self.stat, level)
            await stat.arefresh_from_db()
            self.assertEqual(stat.mastery_level, int(level))
            self.assertEqual(stat.occurrences, 4)

    async def test_invalid_levels(self) -> None:
        await self.asetUp()

        for level in (-1, 6, None, "high", True):
            with self.assertRaises(InvalidRequestError):
                await set_mastery_level(self.stat, level)

        await self.stat.arefresh_from_db()
        self.assertEqual(self.stat.mastery_level, 0)


class IdiomFoldTest(TestCase):
    """Test folding analyses into the idiom library."""

    def analysis(self, day: int, *idioms: dict) -> SimpleNamespace:
        return SimpleNamespace(
            created_at=datetime(2024, 5, day, 12, 0, tzinfo=dt_timezone.utc),
            suggested_idioms=list(idioms),
        )

    def idiom(self, text: str, example: str = "", meaning: str = "") -> dict:
        return {
            "deyim": text,
            "meaning_de": meaning,
            "usage": "",
            "example_in_context": example,
        }

    def test_empty(self) -> None:
        self.assertEqual(aggregate_idioms([]), [])

    def test_newest_example_wins_in_any_order(self) -> None:
        old = self.analysis(1, self.idiom("göz atmak", "old"))
        new = self.analysis(9, self.idiom("göz atmak", "new"))
        middle = self.analysis(5, self.idiom("göz atmak", "middle"))

        for order in ([new, middle, old], [old, middle, new], [middle, old, new]):
            (view,) = aggregate_idioms(order)
            self.assertEqual(view.occurrences, 3)
            self.assertEqual(view.example_in_context, "new")
            self.assertEqual(view.last_seen, new.created_at)

    def test_counted_once_per_analysis(self) -> None:
        doubled = self.analysis(
            2, self.idiom("el atmak", "first"), self.idiom("el atmak", "second")
        )

        (view,) = aggregate_idioms([doubled])

        self.assertEqual(view.occurrences, 1)
        self.assertEqual(view.example_in_context, "first")

    def test_sorted_by_occurrences(self) -> None:
        analyses = [
            self.analysis(3, self.idiom("a"), self.idiom("b")),
            self.analysis(2, self.idiom("b"), self.idiom("c")),
            self.analysis(1, self.idiom("b"), self.idiom("c")),
        ]

        views = aggregate_idioms(analyses)

        self.assertEqual(
            [(v.idiom, v.occurrences) for v in views], [("b", 3), ("c", 2), ("a", 1)]
        )

    def test_equal_counts_keep_first_seen_order(self) -> None:
        analyses = [
            self.analysis(3, self.idiom("z")),
            self.analysis(2, self.idiom("a")),
        ]

        self.assertEqual([v.idiom for v in aggregate_idioms(analyses)], ["z", "a"])

    def test_blank_idioms_skipped(self) -> None:
        views = aggregate_idioms(
            [self.analysis(1, self.idiom(""), self.idiom("  "), {"meaning_de": "x"})]
        )

        self.assertEqual(views, [])

    def test_accepts_parsed_idioms(self) -> None:
        parsed = SuggestedIdiom(idiom="göz atmak", meaning="einen Blick werfen")

        (view,) = aggregate_idioms([self.analysis(4, parsed)])

        self.assertEqual(view.meaning, "einen Blick werfen")

    def test_search_matches_idiom_and_meaning(self) -> None:
        (view,) = aggregate_idioms(
            [self.analysis(1, self.idiom("Göz atmak", meaning="Einen Blick werfen"))]
        )

        self.assertTrue(view.matches("göz"))
        self.assertTrue(view.matches("BLICK"))
        self.assertTrue(view.matches(""))
        self.assertFalse(view.matches("el atmak"))


class ModelHelpersTest(TestCase):
    """Test small model helpers."""

    def setUp(self) -> None:
        self.user = User.objects.create_user(username='learner', password='pw')

    def test_count_words(self) -> None:
        self.assertEqual(WritingExercise.count_words("  Bir  iki\nüç\t"), 3)
        self.assertEqual(WritingExercise.count_words(""), 0)

    def test_exercise_str(self) -> None:
        exercise = WritingExercise.objects.create(user=self.user, user_text="k" * 60)

        self.assertEqual(str(exercise), "k" * 50 + "…")

    def test_mistake_helpers(self) -> None:
        stat = MistakeStat.objects.create(
            user=self.user,
            pattern="Vokalharmonie",
            occurrences=3,
            mastery_level=5,
            last_seen=timezone.now() - timedelta(days=10),
        )

        self.assertTrue(stat.is_mastered())
        self.assertFalse(stat.is_recent())
        self.assertTrue(stat.is_recent(days=30))
        self.assertEqual(str(stat), "learner - Vokalharmonie (3x)")
