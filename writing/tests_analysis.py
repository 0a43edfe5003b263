"""
Tests for building the analysis instruction, calling the model, and
validating its answer.

The pydantic-ai ``Agent`` is mocked; no request leaves the process.
"""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
from django.test import TestCase, TransactionTestCase, override_settings
from pydantic_ai.exceptions import ModelHTTPError, UnexpectedModelBehavior

from .ai_service import AIService
from .analysis_models import (
    CorrectionCategory,
    SuggestedIdiom,
    WritingAnalysisResult,
    strip_code_fences,
)
from .exceptions import (
    AnalysisFormatError,
    AnalysisServiceError,
    MalformedAnalysisError,
)
from .pipeline import analysis_fields, validate_analysis


class AnalysisPromptTest(TestCase):
    """Test the instruction sent to the analysis model."""

    def setUp(self) -> None:
        self.service = AIService()

    def test_text_embedded_verbatim(self) -> None:
        text = "  Şirketimiz   geçen yıl\n%50 büyüdü; {\"json\": true}  "

        prompt = self.service.build_analysis_prompt(text)

        self.assertIn(f"TEXT:\n{text}\n", prompt)

    def test_prompt_names_wire_fields(self) -> None:
        prompt = self.service.build_analysis_prompt("Merhaba")

        for field in (
            '"corrections"',
            '"explanation_de"',
            '"business_formal"',
            '"colloquial_smart"',
            '"c1_sophisticated"',
            '"suggested_deyimler"',
            '"deyim"',
            '"mistake_patterns"',
            '"example_wrong"',
        ):
            self.assertIn(field, prompt)
        self.assertIn("pure JSON", prompt)

    @override_settings(
        WRITING_TARGET_LANGUAGE='Spanish',
        WRITING_FEEDBACK_LANGUAGE='English',
        WRITING_INTEREST_AREAS=['cooking'],
    )
    def test_prompt_uses_configured_languages(self) -> None:
        prompt = self.service.build_analysis_prompt("Hola")

        self.assertIn("Analyse this Spanish text", prompt)
        self.assertIn("explanation in English", prompt)
        self.assertIn("Areas of interest: cooking.", prompt)


class AIServiceTest(TransactionTestCase):
    """Test the single model call and its error mapping."""

    def make_service(self, MockAgent: MagicMock, **run_kwargs) -> AsyncMock:
        mock_agent_instance = AsyncMock()
        mock_agent_instance.run = AsyncMock(**run_kwargs)
        MockAgent.return_value = mock_agent_instance
        return mock_agent_instance

    @patch('writing.ai_service.Agent')
    async def test_request_analysis(self, MockAgent: MagicMock) -> None:
        mock_result = MagicMock()
        mock_result.output = "```json\n{\"corrections\": []}\n```"
        agent = self.make_service(MockAgent, return_value=mock_result)

        result = await AIService().request_analysis("the prompt")

        self.assertEqual(result, '{"corrections": []}')
        agent.run.assert_called_once_with("the prompt")

    @patch('writing.ai_service.Agent')
    async def test_http_error_status(self, MockAgent: MagicMock) -> None:
        self.make_service(
            MockAgent,
            side_effect=ModelHTTPError(status_code=503, model_name='gemini'),
        )

        with self.assertRaises(AnalysisServiceError) as ctx:
            await AIService().request_analysis("prompt")

        self.assertEqual(ctx.exception.message, "Analysis service returned HTTP 503")
        self.assertEqual(ctx.exception.status_code, 502)

    @patch('writing.ai_service.Agent')
    async def test_transport_error(self, MockAgent: MagicMock) -> None:
        self.make_service(MockAgent, side_effect=httpx.ConnectError("refused"))

        with self.assertRaises(AnalysisServiceError) as ctx:
            await AIService().request_analysis("prompt")

        self.assertIn("unavailable", ctx.exception.message)

    @patch('writing.ai_service.Agent')
    async def test_unexpected_behavior(self, MockAgent: MagicMock) -> None:
        self.make_service(
            MockAgent, side_effect=UnexpectedModelBehavior("Content field missing")
        )

        with self.assertRaises(AnalysisFormatError) as ctx:
            await AIService().request_analysis("prompt")

        self.assertIn("Content field missing", ctx.exception.message)

    @patch('writing.ai_service.Agent')
    async def test_empty_output(self, MockAgent: MagicMock) -> None:
        for output in (None, "", "   \n"):
            mock_result = MagicMock()
            mock_result.output = output
            self.make_service(MockAgent, return_value=mock_result)

            with self.assertRaises(AnalysisFormatError) as ctx:
                await AIService().request_analysis("prompt")

            self.assertNotIsInstance(ctx.exception, MalformedAnalysisError)
            self.assertEqual(ctx.exception.message, "Analysis service returned no text")


class CodeFenceTest(TestCase):
    """Test removal of markdown code fences around responses."""

    def test_plain_text_untouched(self) -> None:
        self.assertEqual(strip_code_fences('  {"a": 1}\n'), '{"a": 1}')

    def test_language_tagged_fence(self) -> None:
        self.assertEqual(strip_code_fences('```json\n{"a": 1}\n```'), '{"a": 1}')

    def test_bare_fence(self) -> None:
        self.assertEqual(strip_code_fences('```\n{"a": 1}\n```'), '{"a": 1}')

    def test_nested_fences(self) -> None:
        text = '\n```json\n  ```\n{"a": 1}\n```  \n```\n'

        self.assertEqual(strip_code_fences(text), '{"a": 1}')

    def test_inner_backticks_kept(self) -> None:
        text = '```json\n{"example": "use `de` here"}\n```'

        self.assertEqual(strip_code_fences(text), '{"example": "use `de` here"}')


class AnalysisValidationTest(TestCase):
    """Test normalisation of the model's answer."""

    def test_missing_arrays_become_empty(self) -> None:
        result = WritingAnalysisResult.from_response_text('{"variants": {}}')

        self.assertEqual(result.corrections, [])
        self.assertEqual(result.suggested_idioms, [])
        self.assertEqual(result.mistake_patterns, [])

    def test_null_values_become_empty(self) -> None:
        payload = {
            "corrections": None,
            "variants": None,
            "suggested_deyimler": [{"deyim": "göz atmak", "meaning_de": None}],
            "mistake_patterns": None,
        }

        result = WritingAnalysisResult.from_response_text(json.dumps(payload))

        self.assertEqual(result.corrections, [])
        self.assertEqual(result.variants.available(), {})
        self.assertEqual(result.suggested_idioms[0].meaning, "")
        self.assertEqual(result.mistake_patterns, [])

    def test_unknown_category_passes_through(self) -> None:
        payload = {
            "corrections": [
                {"original": "a", "corrected": "b", "type": "punctuation"},
                {"original": "c", "corrected": "d", "type": "grammar"},
            ]
        }

        result = validate_analysis(json.dumps(payload))

        self.assertEqual(result.corrections[0].category, "punctuation")
        self.assertFalse(result.corrections[0].has_known_category)
        self.assertTrue(result.corrections[1].has_known_category)
        self.assertEqual(result.unknown_categories(), ["punctuation"])
        self.assertEqual(
            result.to_response()["corrections"][0]["type"], "punctuation"
        )

    def test_empty_variants(self) -> None:
        payload = {"variants": {"business_formal": "Resmi metin."}}

        result = validate_analysis(json.dumps(payload))

        self.assertEqual(result.variants.available(), {"formal": "Resmi metin."})
        fields = analysis_fields(result)
        self.assertEqual(fields["variant_formal"], "Resmi metin.")
        self.assertEqual(fields["variant_colloquial"], "")
        self.assertEqual(fields["variant_sophisticated"], "")

    def test_order_preserved(self) -> None:
        payload = {
            "corrections": [
                {"original": str(i), "corrected": str(i + 1)} for i in range(5)
            ]
        }

        result = validate_analysis(json.dumps(payload))

        self.assertEqual([c.original for c in result.corrections], list("01234"))

    def test_not_json(self) -> None:
        with self.assertRaises(MalformedAnalysisError) as ctx:
            validate_analysis("not json")

        self.assertEqual(ctx.exception.status_code, 502)

    def test_not_an_object(self) -> None:
        with self.assertRaises(MalformedAnalysisError):
            WritingAnalysisResult.from_response_text('[{"corrections": []}]')

    def test_wrong_shape(self) -> None:
        with self.assertRaises(MalformedAnalysisError):
            WritingAnalysisResult.from_response_text('{"corrections": "none"}')

    def test_response_uses_wire_names(self) -> None:
        payload = {
            "corrections": [
                {
                    "original": "a",
                    "corrected": "b",
                    "type": CorrectionCategory.STYLE.value,
                    "explanation_de": "Stil",
                }
            ],
            "variants": {"c1_sophisticated": "**Deyim**"},
            "suggested_deyimler": [
                {"deyim": "el atmak", "usage": "formell", "extra": "ignored"}
            ],
            "mistake_patterns": [{"pattern": "p", "type": "idiom"}],
        }

        response = validate_analysis(json.dumps(payload)).to_response()

        self.assertEqual(response["corrections"][0]["explanation_de"], "Stil")
        self.assertEqual(response["variants"]["c1_sophisticated"], "**Deyim**")
        self.assertEqual(
            response["suggested_deyimler"][0],
            {
                "deyim": "el atmak",
                "meaning_de": "",
                "usage": "formell",
                "example_in_context": "",
            },
        )
        self.assertEqual(response["mistake_patterns"][0]["type"], "idiom")

    def test_alternate_field_names(self) -> None:
        idiom = SuggestedIdiom.model_validate(
            {"idiom": "göz atmak", "meaningInNativeLanguage": "to glance"}
        )

        self.assertEqual(idiom.idiom, "göz atmak")
        self.assertEqual(idiom.meaning, "to glance")
