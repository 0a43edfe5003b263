"""
Tests for the writing application's async views and the end-to-end pipeline.

The analysis model is never called: ``writing.pipeline.ai_service`` is patched
with mocks that return canned response text.
"""

import json
from datetime import timedelta
from typing import Any, Dict
from unittest.mock import AsyncMock, MagicMock, patch

from asgiref.sync import sync_to_async
from django.contrib.auth.models import User
from django.core.cache import caches
from django.core.management import call_command
from django.db import DatabaseError
from django.test import RequestFactory, TransactionTestCase, override_settings
from django.test.client import AsyncClient
from django.urls import reverse
from django.utils import timezone
from django_ratelimit.exceptions import Ratelimited

from kalem.ratelimit_middleware import RATE_LIMIT_MESSAGE, RateLimitMiddleware

from .exceptions import AnalysisServiceError
from .models import MistakeStat, WritingAnalysis, WritingExercise
from .views import WRITING_PROMPTS

TURKISH_TEXT = (
    "Dün toplantıda müşteriyle yeni projenin bütçesini konuştuk "
    "ve bence çok verimli geçti."
)


def make_analysis_payload(
    example_wrong: str = "müşteriyle konuştuk",
    example_correct: str = "müşteri ile görüştük",
    idiom: str = "işin içinden çıkmak",
) -> Dict[str, Any]:
    """Return an analysis as the model would send it."""
    return {
        "corrections": [
            {
                "original": "bence çok verimli geçti",
                "corrected": "bence oldukça verimli geçti",
                "type": "word_choice",
                "explanation_de": "'Oldukça' klingt im Geschäftskontext natürlicher.",
            }
        ],
        "variants": {
            "business_formal": "Dünkü toplantıda müşterimizle bütçeyi görüştük.",
            "colloquial_smart": "Dün müşteriyle bütçeyi konuştuk, süper geçti.",
            "c1_sophisticated": "Dün müşteriyle **işin içinden çıktık**.",
        },
        "suggested_deyimler": [
            {
                "deyim": idiom,
                "meaning_de": "eine Sache bewältigen",
                "usage": "bei schwierigen Aufgaben",
                "example_in_context": "Bütçe konusunda işin içinden çıktık.",
            }
        ],
        "mistake_patterns": [
            {
                "pattern": "Verbwahl bei Gesprächen",
                "type": "word_choice",
                "example_wrong": example_wrong,
                "example_correct": example_correct,
            }
        ],
    }


class AnalyzeWritingViewTest(TransactionTestCase):
    """Test the analysis endpoint and the pipeline behind it."""

    def setUp(self) -> None:
        """Set up test data."""
        self.client = AsyncClient()

    async def asetUp(self) -> None:
        """Set up async test data."""
        self.user = await User.objects.acreate_user(
            username='learner', password='testpass123'
        )
        self.exercise = await WritingExercise.objects.acreate(
            user=self.user,
            prompt_text='Beschreibe deine letzte Geschäftsverhandlung',
            user_text=TURKISH_TEXT,
            word_count=WritingExercise.count_words(TURKISH_TEXT),
        )

    async def post_analysis(self, body: Any) -> Any:
        return await self.client.post(
            reverse('analyze_writing'),
            data=body if isinstance(body, str) else json.dumps(body),
            content_type='application/json',
        )

    @patch('writing.pipeline.ai_service')
    async def test_analyze_success(self, mock_ai_service: MagicMock) -> None:
        """A valid submission stores the analysis and counts mistakes."""
        await self.asetUp()
        await sync_to_async(self.client.force_login)(self.user)
        mock_ai_service.build_analysis_prompt.return_value = 'prompt'
        mock_ai_service.request_analysis = AsyncMock(
            return_value=json.dumps(make_analysis_payload())
        )

        response = await self.post_analysis(
            {'exerciseId': self.exercise.pk, 'userText': TURKISH_TEXT}
        )

        self.assertEqual(response.status_code, 200)
        data = json.loads(response.content)
        self.assertEqual(data['status'], 'success')
        analysis = data['analysis']
        self.assertEqual(analysis['corrections'][0]['type'], 'word_choice')
        self.assertEqual(
            analysis['variants']['business_formal'],
            'Dünkü toplantıda müşterimizle bütçeyi görüştük.',
        )
        self.assertEqual(
            analysis['suggested_deyimler'][0]['deyim'], 'işin içinden çıkmak'
        )
        self.assertEqual(
            analysis['mistake_patterns'][0]['pattern'], 'Verbwahl bei Gesprächen'
        )

        # The text reaches the model unchanged, in exactly one call
        mock_ai_service.build_analysis_prompt.assert_called_once_with(TURKISH_TEXT)
        mock_ai_service.request_analysis.assert_called_once_with('prompt')

        stored = await WritingAnalysis.objects.aget(exercise=self.exercise)
        self.assertEqual(
            stored.variant_colloquial, analysis['variants']['colloquial_smart']
        )
        self.assertEqual(stored.suggested_idioms[0]['deyim'], 'işin içinden çıkmak')
        self.assertEqual(stored.corrections[0]['explanation_de'][:8], "'Oldukça")

        stat = await MistakeStat.objects.aget(user=self.user)
        self.assertEqual(stat.pattern, 'Verbwahl bei Gesprächen')
        self.assertEqual(stat.category, 'word_choice')
        self.assertEqual(stat.occurrences, 1)
        self.assertEqual(stat.mastery_level, 0)

    @patch('writing.pipeline.ai_service')
    async def test_repeated_pattern_increments_and_replaces_examples(
        self, mock_ai_service: MagicMock
    ) -> None:
        """The same pattern in a second analysis increments the same row."""
        await self.asetUp()
        await sync_to_async(self.client.force_login)(self.user)
        second = await WritingExercise.objects.acreate(
            user=self.user, user_text=TURKISH_TEXT, word_count=13
        )
        mock_ai_service.request_analysis = AsyncMock(
            side_effect=[
                json.dumps(make_analysis_payload()),
                json.dumps(
                    make_analysis_payload(
                        example_wrong='patronla konuştuk',
                        example_correct='patron ile görüştük',
                    )
                ),
            ]
        )

        first_response = await self.post_analysis(
            {'exerciseId': self.exercise.pk, 'userText': TURKISH_TEXT}
        )
        self.assertEqual(first_response.status_code, 200)
        first_stat = await MistakeStat.objects.aget(user=self.user)

        second_response = await self.post_analysis(
            {'exerciseId': second.pk, 'userText': TURKISH_TEXT}
        )
        self.assertEqual(second_response.status_code, 200)

        self.assertEqual(await MistakeStat.objects.filter(user=self.user).acount(), 1)
        stat = await MistakeStat.objects.aget(user=self.user)
        self.assertEqual(stat.pk, first_stat.pk)
        self.assertEqual(stat.occurrences, 2)
        self.assertEqual(stat.example_wrong, 'patronla konuştuk')
        self.assertEqual(stat.example_correct, 'patron ile görüştük')
        self.assertEqual(stat.first_seen, first_stat.first_seen)
        self.assertGreaterEqual(stat.last_seen, first_stat.last_seen)

    @patch('writing.pipeline.ai_service')
    async def test_malformed_response_stores_nothing(
        self, mock_ai_service: MagicMock
    ) -> None:
        """Text that is not JSON is rejected before any write."""
        await self.asetUp()
        await sync_to_async(self.client.force_login)(self.user)
        mock_ai_service.request_analysis = AsyncMock(return_value='not json')

        response = await self.post_analysis(
            {'exerciseId': self.exercise.pk, 'userText': TURKISH_TEXT}
        )

        self.assertEqual(response.status_code, 502)
        data = json.loads(response.content)
        self.assertEqual(data['status'], 'error')
        self.assertIn('not valid JSON', data['error'])
        self.assertEqual(await WritingAnalysis.objects.acount(), 0)
        self.assertEqual(await MistakeStat.objects.acount(), 0)

    @patch('writing.pipeline.ai_service')
    async def test_fenced_response_is_accepted(
        self, mock_ai_service: MagicMock
    ) -> None:
        await self.asetUp()
        await sync_to_async(self.client.force_login)(self.user)
        fenced = "```json\n" + json.dumps(make_analysis_payload()) + "\n```"
        mock_ai_service.request_analysis = AsyncMock(return_value=fenced)

        response = await self.post_analysis(
            {'exerciseId': self.exercise.pk, 'userText': TURKISH_TEXT}
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(await WritingAnalysis.objects.acount(), 1)

    @patch('writing.pipeline.ai_service')
    async def test_persistence_failure_skips_mistake_stats(
        self, mock_ai_service: MagicMock
    ) -> None:
        """If the analysis cannot be stored, no mistake is counted."""
        await self.asetUp()
        await sync_to_async(self.client.force_login)(self.user)
        mock_ai_service.request_analysis = AsyncMock(
            return_value=json.dumps(make_analysis_payload())
        )

        with patch.object(
            WritingAnalysis.objects,
            'acreate',
            new=AsyncMock(side_effect=DatabaseError('disk full')),
        ):
            response = await self.post_analysis(
                {'exerciseId': self.exercise.pk, 'userText': TURKISH_TEXT}
            )

        self.assertEqual(response.status_code, 500)
        data = json.loads(response.content)
        self.assertIn(str(self.exercise.pk), data['error'])
        self.assertEqual(await MistakeStat.objects.acount(), 0)

    @patch('writing.pipeline.ai_service')
    async def test_service_error(self, mock_ai_service: MagicMock) -> None:
        await self.asetUp()
        await sync_to_async(self.client.force_login)(self.user)
        mock_ai_service.request_analysis = AsyncMock(
            side_effect=AnalysisServiceError('Analysis service returned HTTP 503')
        )

        response = await self.post_analysis(
            {'exerciseId': self.exercise.pk, 'userText': TURKISH_TEXT}
        )

        self.assertEqual(response.status_code, 502)
        data = json.loads(response.content)
        self.assertEqual(data['error'], 'Analysis service returned HTTP 503')
        self.assertEqual(await WritingAnalysis.objects.acount(), 0)

    @patch('writing.pipeline.ai_service')
    async def test_missing_input_never_calls_model(
        self, mock_ai_service: MagicMock
    ) -> None:
        """Missing fields are rejected before the model is contacted."""
        await self.asetUp()
        await sync_to_async(self.client.force_login)(self.user)
        mock_ai_service.request_analysis = AsyncMock()

        for body in (
            {'exerciseId': self.exercise.pk},
            {'userText': TURKISH_TEXT},
            {'exerciseId': self.exercise.pk, 'userText': '   '},
        ):
            response = await self.post_analysis(body)
            self.assertEqual(response.status_code, 400)
            self.assertEqual(
                json.loads(response.content)['error'],
                'exerciseId and userText are required',
            )

        mock_ai_service.request_analysis.assert_not_called()

    @patch('writing.pipeline.ai_service')
    async def test_invalid_json_body(self, mock_ai_service: MagicMock) -> None:
        await self.asetUp()
        await sync_to_async(self.client.force_login)(self.user)
        mock_ai_service.request_analysis = AsyncMock()

        response = await self.post_analysis('{"exerciseId": ')

        self.assertEqual(response.status_code, 400)
        mock_ai_service.request_analysis.assert_not_called()

    @patch('writing.pipeline.ai_service')
    async def test_non_integer_exercise_id(self, mock_ai_service: MagicMock) -> None:
        await self.asetUp()
        await sync_to_async(self.client.force_login)(self.user)
        mock_ai_service.request_analysis = AsyncMock()

        response = await self.post_analysis(
            {'exerciseId': 'abc', 'userText': TURKISH_TEXT}
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            json.loads(response.content)['error'], 'exerciseId must be an integer'
        )
        mock_ai_service.request_analysis.assert_not_called()

    @patch('writing.pipeline.ai_service')
    async def test_boolean_and_float_exercise_id(
        self, mock_ai_service: MagicMock
    ) -> None:
        """JSON ``true`` and ``1.9`` are not silently read as exercise ids."""
        await self.asetUp()
        await sync_to_async(self.client.force_login)(self.user)
        mock_ai_service.request_analysis = AsyncMock()

        for exercise_id in (True, float(self.exercise.pk) + 0.9):
            response = await self.post_analysis(
                {'exerciseId': exercise_id, 'userText': TURKISH_TEXT}
            )
            self.assertEqual(response.status_code, 400)
            self.assertEqual(
                json.loads(response.content)['error'], 'exerciseId must be an integer'
            )

        mock_ai_service.request_analysis.assert_not_called()
        self.assertEqual(await WritingAnalysis.objects.acount(), 0)

    @patch('writing.pipeline.ai_service')
    async def test_numeric_user_text(self, mock_ai_service: MagicMock) -> None:
        await self.asetUp()
        await sync_to_async(self.client.force_login)(self.user)
        mock_ai_service.request_analysis = AsyncMock()

        response = await self.post_analysis(
            {'exerciseId': self.exercise.pk, 'userText': 12345}
        )

        self.assertEqual(response.status_code, 400)
        data = json.loads(response.content)
        self.assertEqual(data['status'], 'error')
        self.assertEqual(data['error'], 'exerciseId and userText are required')
        mock_ai_service.request_analysis.assert_not_called()

    @patch('writing.pipeline.ai_service')
    async def test_exercise_of_other_user(self, mock_ai_service: MagicMock) -> None:
        """Another user's exercise is treated as unknown."""
        await self.asetUp()
        other_user = await User.objects.acreate_user(
            username='otheruser', password='testpass123'
        )
        await sync_to_async(self.client.force_login)(other_user)
        mock_ai_service.request_analysis = AsyncMock()

        response = await self.post_analysis(
            {'exerciseId': self.exercise.pk, 'userText': TURKISH_TEXT}
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn('not found', json.loads(response.content)['error'])
        mock_ai_service.request_analysis.assert_not_called()

    @patch('writing.pipeline.ai_service')
    async def test_reanalysis_rejected(self, mock_ai_service: MagicMock) -> None:
        """An exercise is analysed at most once."""
        await self.asetUp()
        await sync_to_async(self.client.force_login)(self.user)
        await WritingAnalysis.objects.acreate(exercise=self.exercise)
        mock_ai_service.request_analysis = AsyncMock()

        response = await self.post_analysis(
            {'exerciseId': self.exercise.pk, 'userText': TURKISH_TEXT}
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn('already been analyzed', json.loads(response.content)['error'])
        mock_ai_service.request_analysis.assert_not_called()

    async def test_get_request(self) -> None:
        await self.asetUp()
        await sync_to_async(self.client.force_login)(self.user)

        response = await self.client.get(reverse('analyze_writing'))

        self.assertEqual(response.status_code, 405)

    async def test_requires_login(self) -> None:
        await self.asetUp()

        response = await self.post_analysis(
            {'exerciseId': self.exercise.pk, 'userText': TURKISH_TEXT}
        )

        self.assertEqual(response.status_code, 302)
        self.assertIn('login', response.url)


class SubmitWritingViewTest(TransactionTestCase):
    """Test exercise submission and the daily prompt."""

    def setUp(self) -> None:
        """Set up test data."""
        self.client = AsyncClient()

    async def asetUp(self) -> None:
        self.user = await User.objects.acreate_user(
            username='learner', password='testpass123'
        )
        await sync_to_async(self.client.force_login)(self.user)

    @patch('writing.pipeline.ai_service')
    async def test_submit_success(self, mock_ai_service: MagicMock) -> None:
        await self.asetUp()
        mock_ai_service.request_analysis = AsyncMock(
            return_value=json.dumps(make_analysis_payload())
        )

        response = await self.client.post(
            reverse('submit_writing'),
            data=json.dumps({'prompt': 'Beschreibe ...', 'text': TURKISH_TEXT}),
            content_type='application/json',
        )

        self.assertEqual(response.status_code, 200)
        data = json.loads(response.content)
        exercise = await WritingExercise.objects.aget(pk=data['exercise_id'])
        self.assertEqual(exercise.user_text, TURKISH_TEXT)
        self.assertEqual(exercise.word_count, len(TURKISH_TEXT.split()))
        self.assertEqual(data['word_count'], exercise.word_count)
        self.assertIn('corrections', data['analysis'])
        self.assertTrue(
            await WritingAnalysis.objects.filter(exercise=exercise).aexists()
        )

    @patch('writing.pipeline.ai_service')
    async def test_submit_form_encoded(self, mock_ai_service: MagicMock) -> None:
        await self.asetUp()
        mock_ai_service.request_analysis = AsyncMock(
            return_value=json.dumps(make_analysis_payload())
        )

        response = await self.client.post(
            reverse('submit_writing'), {'prompt': '', 'text': TURKISH_TEXT}
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(await WritingExercise.objects.acount(), 1)

    @patch('writing.pipeline.ai_service')
    async def test_submit_too_short(self, mock_ai_service: MagicMock) -> None:
        """Short texts are rejected without storing an exercise."""
        await self.asetUp()
        mock_ai_service.request_analysis = AsyncMock()

        response = await self.client.post(
            reverse('submit_writing'),
            data=json.dumps({'prompt': 'x', 'text': 'Merhaba dünya'}),
            content_type='application/json',
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn('at least 50 characters', json.loads(response.content)['error'])
        self.assertEqual(await WritingExercise.objects.acount(), 0)
        mock_ai_service.request_analysis.assert_not_called()

    async def test_writing_prompt(self) -> None:
        await self.asetUp()

        response = await self.client.get(reverse('writing_prompt'))

        self.assertEqual(response.status_code, 200)
        data = json.loads(response.content)
        self.assertIn(data['prompt'], WRITING_PROMPTS['German'])
        self.assertEqual(data['min_length'], 50)

    @override_settings(WRITING_FEEDBACK_LANGUAGE='Klingon')
    async def test_writing_prompt_unknown_language_falls_back(self) -> None:
        await self.asetUp()

        with patch('writing.views.random.choice', return_value='chosen') as choice:
            response = await self.client.get(reverse('writing_prompt'))

        self.assertEqual(json.loads(response.content)['prompt'], 'chosen')
        choice.assert_called_once_with(WRITING_PROMPTS['English'])


class MistakeTrackerViewTest(TransactionTestCase):
    """Test the mistake tracker and mastery updates."""

    def setUp(self) -> None:
        """Set up test data."""
        self.client = AsyncClient()

    async def asetUp(self) -> None:
        self.user = await User.objects.acreate_user(
            username='learner', password='testpass123'
        )
        now = timezone.now()
        for index, occurrences in enumerate((3, 7, 1)):
            await MistakeStat.objects.acreate(
                user=self.user,
                pattern=f'pattern {index}',
                category='grammar',
                occurrences=occurrences,
                last_seen=now - timedelta(days=index),
            )

    async def test_requires_login(self) -> None:
        response = await self.client.get(reverse('mistake_tracker'))

        self.assertEqual(response.status_code, 302)
        self.assertIn('login', response.url)

    async def test_mistakes_ordered_by_occurrences(self) -> None:
        await self.asetUp()
        await sync_to_async(self.client.force_login)(self.user)

        response = await self.client.get(reverse('mistake_tracker'))

        self.assertEqual(response.status_code, 200)
        mistakes = json.loads(response.content)['mistakes']
        self.assertEqual([m['occurrences'] for m in mistakes], [7, 3, 1])
        self.assertEqual(mistakes[0]['pattern'], 'pattern 1')

    async def test_mistakes_limit(self) -> None:
        await self.asetUp()
        await sync_to_async(self.client.force_login)(self.user)

        response = await self.client.get(reverse('mistake_tracker'), {'limit': 2})
        self.assertEqual(len(json.loads(response.content)['mistakes']), 2)

        response = await self.client.get(reverse('mistake_tracker'), {'limit': 'x'})
        self.assertEqual(response.status_code, 400)

    async def test_mistakes_only_own(self) -> None:
        await self.asetUp()
        other_user = await User.objects.acreate_user(
            username='otheruser', password='testpass123'
        )
        await sync_to_async(self.client.force_login)(other_user)

        response = await self.client.get(reverse('mistake_tracker'))

        self.assertEqual(json.loads(response.content)['mistakes'], [])

    async def test_update_mastery(self) -> None:
        await self.asetUp()
        await sync_to_async(self.client.force_login)(self.user)
        stat = await MistakeStat.objects.aget(pattern='pattern 0')

        response = await self.client.post(
            reverse('update_mastery', kwargs={'mistake_id': stat.pk}),
            {'mastery_level': '4'},
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(json.loads(response.content)['mistake']['mastery_level'], 4)
        await stat.arefresh_from_db()
        self.assertEqual(stat.mastery_level, 4)
        self.assertEqual(stat.occurrences, 3)

    async def test_update_mastery_out_of_range(self) -> None:
        await self.asetUp()
        await sync_to_async(self.client.force_login)(self.user)
        stat = await MistakeStat.objects.aget(pattern='pattern 0')

        response = await self.client.post(
            reverse('update_mastery', kwargs={'mistake_id': stat.pk}),
            data=json.dumps({'mastery_level': 6}),
            content_type='application/json',
        )

        self.assertEqual(response.status_code, 400)
        await stat.arefresh_from_db()
        self.assertEqual(stat.mastery_level, 0)

    async def test_update_mastery_wrong_user(self) -> None:
        await self.asetUp()
        other_user = await User.objects.acreate_user(
            username='otheruser', password='testpass123'
        )
        await sync_to_async(self.client.force_login)(other_user)
        stat = await MistakeStat.objects.aget(pattern='pattern 0')

        response = await self.client.post(
            reverse('update_mastery', kwargs={'mistake_id': stat.pk}),
            {'mastery_level': '2'},
        )

        self.assertEqual(response.status_code, 404)


class IdiomLibraryViewTest(TransactionTestCase):
    """Test the idiom library endpoint."""

    def setUp(self) -> None:
        """Set up test data."""
        self.client = AsyncClient()

    async def add_analysis(self, idioms: Any, age_days: int) -> WritingAnalysis:
        exercise = await WritingExercise.objects.acreate(
            user=self.user, user_text=TURKISH_TEXT
        )
        analysis = await WritingAnalysis.objects.acreate(
            exercise=exercise, suggested_idioms=idioms
        )
        await WritingAnalysis.objects.filter(pk=analysis.pk).aupdate(
            created_at=timezone.now() - timedelta(days=age_days)
        )
        return analysis

    async def asetUp(self) -> None:
        self.user = await User.objects.acreate_user(
            username='learner', password='testpass123'
        )
        await self.add_analysis(
            [
                {
                    'deyim': 'göz atmak',
                    'meaning_de': 'einen Blick werfen',
                    'usage': 'informell',
                    'example_in_context': 'old example',
                }
            ],
            age_days=3,
        )
        await self.add_analysis(
            [
                {
                    'deyim': 'göz atmak',
                    'meaning_de': 'einen Blick werfen',
                    'usage': 'informell',
                    'example_in_context': 'new example',
                },
                {
                    'deyim': 'el atmak',
                    'meaning_de': 'sich einer Sache annehmen',
                    'usage': 'formell',
                    'example_in_context': 'Projeye el attık.',
                },
            ],
            age_days=1,
        )
        await sync_to_async(self.client.force_login)(self.user)

    async def test_idiom_library(self) -> None:
        await self.asetUp()

        response = await self.client.get(reverse('idiom_library'))

        self.assertEqual(response.status_code, 200)
        data = json.loads(response.content)
        self.assertEqual(data['count'], 2)
        first = data['idioms'][0]
        self.assertEqual(first['idiom'], 'göz atmak')
        self.assertEqual(first['occurrences'], 2)
        self.assertEqual(first['example_in_context'], 'new example')
        self.assertEqual(data['idioms'][1]['idiom'], 'el atmak')

    async def test_idiom_library_search(self) -> None:
        await self.asetUp()

        response = await self.client.get(reverse('idiom_library'), {'q': 'ANNEHMEN'})

        data = json.loads(response.content)
        self.assertEqual(data['count'], 1)
        self.assertEqual(data['idioms'][0]['idiom'], 'el atmak')
        self.assertEqual(data['query'], 'ANNEHMEN')

    async def test_idiom_library_empty(self) -> None:
        self.user = await User.objects.acreate_user(
            username='newbie', password='testpass123'
        )
        await sync_to_async(self.client.force_login)(self.user)

        response = await self.client.get(reverse('idiom_library'))

        self.assertEqual(
            json.loads(response.content), {'count': 0, 'query': '', 'idioms': []}
        )


class RateLimitTest(TransactionTestCase):
    """Test the rate-limit middleware and cache backend."""

    def test_middleware_converts_ratelimited(self) -> None:
        middleware = RateLimitMiddleware(lambda request: None)
        request = RequestFactory().post('/analyze/')

        response = middleware.process_exception(request, Ratelimited())

        self.assertEqual(response.status_code, 429)
        data = json.loads(response.content)
        self.assertEqual(data['status'], 'error')
        self.assertEqual(data['error'], RATE_LIMIT_MESSAGE)

    @override_settings(RATELIMIT_ENABLE=True)
    @patch('writing.pipeline.ai_service')
    async def test_analysis_requests_are_rate_limited(
        self, mock_ai_service: MagicMock
    ) -> None:
        """Async submission views count requests and answer 429 past the limit."""
        await sync_to_async(caches['default'].clear)()
        user = await User.objects.acreate_user(
            username='learner', password='testpass123'
        )
        client = AsyncClient()
        await sync_to_async(client.force_login)(user)
        mock_ai_service.request_analysis = AsyncMock()

        with patch('writing.views.SUBMISSION_RATES', ('1/h',)):
            first = await client.post(
                reverse('analyze_writing'),
                data=json.dumps({}),
                content_type='application/json',
            )
            second = await client.post(
                reverse('analyze_writing'),
                data=json.dumps({}),
                content_type='application/json',
            )

        self.assertEqual(first.status_code, 400)
        self.assertEqual(second.status_code, 429)
        self.assertEqual(json.loads(second.content)['error'], RATE_LIMIT_MESSAGE)
        mock_ai_service.request_analysis.assert_not_called()

    async def test_submit_rate_limited_before_storing(self) -> None:
        checked_groups = []

        def always_limited(**kwargs: Any) -> bool:
            checked_groups.append(kwargs['group'])
            return True

        user = await User.objects.acreate_user(
            username='learner', password='testpass123'
        )
        client = AsyncClient()
        await sync_to_async(client.force_login)(user)

        with patch('writing.views.is_ratelimited', new=always_limited):
            response = await client.post(
                reverse('submit_writing'),
                data=json.dumps({'prompt': '', 'text': TURKISH_TEXT}),
                content_type='application/json',
            )

        self.assertEqual(response.status_code, 429)
        self.assertEqual(await WritingExercise.objects.acount(), 0)
        self.assertEqual(checked_groups, ['writing.submit'])

    def test_middleware_ignores_other_exceptions(self) -> None:
        middleware = RateLimitMiddleware(lambda request: None)
        request = RequestFactory().post('/analyze/')

        self.assertIsNone(middleware.process_exception(request, ValueError('x')))

    @override_settings(
        CACHES={
            'default': {
                'BACKEND': 'kalem.cache_backends.RateLimitDatabaseCache',
                'LOCATION': 'kalem_test_cache',
            }
        }
    )
    def test_database_cache_increment(self) -> None:
        call_command('createcachetable', verbosity=0)
        cache = caches['default']

        self.assertEqual(cache.incr('rl:key'), 1)
        self.assertEqual(cache.incr('rl:key', 2), 3)
        self.assertEqual(cache.decr('rl:key'), 2)
