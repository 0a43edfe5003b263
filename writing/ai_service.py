"""
AI service module using Pydantic AI with Logfire integration.

This module builds the instruction sent to the analysis model and performs the
single model call per submission. Pydantic AI is instrumented by Logfire (see
``kalem.settings``), so every request and response is traced automatically.
"""

import logging
from typing import List, Optional

import httpx
from django.conf import settings
from pydantic_ai import Agent
from pydantic_ai.exceptions import (
    AgentRunError,
    ModelHTTPError,
    UnexpectedModelBehavior,
)
from pydantic_ai.models.google import GoogleModel
from pydantic_ai.providers.google import GoogleProvider

from .analysis_models import strip_code_fences
from .exceptions import AnalysisFormatError, AnalysisServiceError

logger = logging.getLogger(__name__)


class AIService:
    """Service class for writing analysis with Pydantic AI and Logfire."""

    def __init__(
        self,
        model_name: Optional[str] = None,
        api_key: Optional[str] = None,
    ) -> None:
        """Initialize the AI service with a Google Gemini model."""
        self.model_name = model_name or settings.WRITING_ANALYSIS_MODEL
        self.model = GoogleModel(
            self.model_name,
            provider=GoogleProvider(api_key=api_key or settings.GEMINI_API_KEY),
        )

    def _create_analysis_agent(self) -> Agent:
        """Create the writing analysis agent for the configured languages."""
        system_prompt = (
            f"You are a {settings.WRITING_TARGET_LANGUAGE} teacher for "
            f"{settings.WRITING_LEARNER_LEVEL}→{settings.WRITING_GOAL_LEVEL} learners "
            f"whose native language is {settings.WRITING_FEEDBACK_LANGUAGE}. "
            "You answer with pure JSON only."
        )
        return Agent(model=self.model, system_prompt=system_prompt)

    def build_analysis_prompt(self, user_text: str) -> str:
        """
        Build the instruction for analysing one submitted text.

        The text is embedded verbatim, never truncated or translated.

        Args:
            user_text: The learner's text in the target language

        Returns:
            The complete instruction, including the JSON answer contract
        """
        target = settings.WRITING_TARGET_LANGUAGE
        feedback = settings.WRITING_FEEDBACK_LANGUAGE
        interests: List[str] = settings.WRITING_INTEREST_AREAS

        return (
            f"Analyse this {target} text written by a {settings.WRITING_LEARNER_LEVEL} "
            f"learner (goal: {settings.WRITING_GOAL_LEVEL} level).\n"
            f"Areas of interest: {', '.join(interests)}.\n\n"
            f"TEXT:\n{user_text}\n\n"
            "Return a JSON object of exactly this shape:\n"
            "{\n"
            '  "corrections": [\n'
            "    {\n"
            '      "original": "original sentence",\n'
            '      "corrected": "corrected sentence",\n'
            '      "type": "grammar|vocabulary|word_choice|style",\n'
            f'      "explanation_de": "explanation in {feedback}"\n'
            "    }\n"
            "  ],\n"
            '  "variants": {\n'
            '    "business_formal": "formal business version using domain vocabulary",\n'
            '    "colloquial_smart": "quick-witted everyday version",\n'
            f'    "c1_sophisticated": "{settings.WRITING_GOAL_LEVEL} version with at '
            'least 2 idioms (mark them with **)"\n'
            "  },\n"
            '  "suggested_deyimler": [\n'
            "    {\n"
            f'      "deyim": "{target} idiom",\n'
            f'      "meaning_de": "meaning in {feedback}",\n'
            '      "usage": "when to use it",\n'
            '      "example_in_context": "example sentence based on the text"\n'
            "    }\n"
            "  ],\n"
            '  "mistake_patterns": [\n'
            "    {\n"
            '      "pattern": "short description of the mistake pattern",\n'
            '      "type": "grammar|vocabulary|idiom|word_choice",\n'
            '      "example_wrong": "wrong example",\n'
            '      "example_correct": "correct example"\n'
            "    }\n"
            "  ]\n"
            "}\n\n"
            "IMPORTANT:\n"
            "- Return pure JSON only, no markdown\n"
            "- Use at least 2 idioms in the c1_sophisticated variant\n"
            "- Categorise every mistake by type\n"
            "- Describe recurring mistakes with the same pattern text every time"
        )

    async def request_analysis(self, prompt: str) -> str:
        """
        Send one analysis instruction to the model and return its text.

        Exactly one request is made; nothing is retried or cached here.

        Args:
            prompt: Instruction built by :meth:`build_analysis_prompt`

        Returns:
            The response text with any code-fence markers removed

        Raises:
            AnalysisServiceError: If the model is unreachable or returns an
                error status
            AnalysisFormatError: If the response carries no usable text
        """
        agent = self._create_analysis_agent()
        try:
            result = await agent.run(prompt)
        except ModelHTTPError as e:
            logger.error(
                "Analysis model %s returned HTTP %s", e.model_name, e.status_code
            )
            raise AnalysisServiceError(
                f"Analysis service returned HTTP {e.status_code}"
            ) from e
        except UnexpectedModelBehavior as e:
            logger.error("Analysis model misbehaved: %s", e.message)
            raise AnalysisFormatError(
                f"Analysis service returned an unusable response: {e.message}"
            ) from e
        except (AgentRunError, httpx.TransportError) as e:
            logger.error("Analysis request failed: %s", e)
            raise AnalysisServiceError(f"Analysis service unavailable: {e}") from e

        output = result.output
        if not isinstance(output, str) or not output.strip():
            raise AnalysisFormatError("Analysis service returned no text")
        return strip_code_fences(output)


# Default global AI service instance
ai_service = AIService()
