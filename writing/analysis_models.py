"""
Pydantic models for structured writing analysis.

These models define the JSON contract of the analysis model's answer and
normalise it before anything is persisted: missing or ``null`` arrays become
empty lists, missing strings become empty strings. Field names follow the
wire format through validation aliases, so ``model_dump(by_alias=True)``
reproduces the payload the model sent.
"""

import json
import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
)

from .exceptions import MalformedAnalysisError


class CorrectionCategory(str, Enum):
    """Categories the analysis model is asked to use for corrections."""

    GRAMMAR = "grammar"
    VOCABULARY = "vocabulary"
    WORD_CHOICE = "word_choice"
    STYLE = "style"


KNOWN_CATEGORIES = frozenset(category.value for category in CorrectionCategory)

_FENCE_OPEN = re.compile(r"^```[\w+-]*[ \t]*\n?")
_FENCE_CLOSE = re.compile(r"\n?[ \t]*```$")


def strip_code_fences(text: str) -> str:
    """
    Remove markdown code-fence markers wrapped around a response.

    Handles any number of nested fence layers (```` ```json ```` or bare
    ```` ``` ````) and surrounding whitespace. Text without fences is only
    stripped of whitespace.
    """
    cleaned = text.strip()
    while True:
        unwrapped = _FENCE_OPEN.sub("", cleaned, count=1)
        unwrapped = _FENCE_CLOSE.sub("", unwrapped, count=1).strip()
        if unwrapped == cleaned:
            return cleaned
        cleaned = unwrapped


class _AnalysisPart(BaseModel):
    """Common config: tolerate extra keys, numbers where strings are expected."""

    model_config = ConfigDict(
        populate_by_name=True, extra='ignore', coerce_numbers_to_str=True
    )

    @field_validator('*', mode='before')
    @classmethod
    def _none_as_empty_string(cls, value: Any) -> Any:
        return "" if value is None else value


class Correction(_AnalysisPart):
    """One corrected passage of the submitted text."""

    original: str = Field(default="", description="Passage as the learner wrote it")
    corrected: str = Field(default="", description="Corrected passage")
    category: str = Field(
        default="",
        validation_alias=AliasChoices('type', 'category'),
        serialization_alias='type',
        description="grammar, vocabulary, word_choice or style",
    )
    explanation: str = Field(
        default="",
        validation_alias=AliasChoices('explanation_de', 'explanation'),
        serialization_alias='explanation_de',
        description="Explanation in the learner's native language",
    )

    @property
    def has_known_category(self) -> bool:
        return self.category in KNOWN_CATEGORIES


class StyleVariants(_AnalysisPart):
    """Full rewrites of the submitted text in three registers."""

    formal: str = Field(
        default="",
        validation_alias=AliasChoices('business_formal', 'formal'),
        serialization_alias='business_formal',
    )
    colloquial: str = Field(
        default="",
        validation_alias=AliasChoices('colloquial_smart', 'colloquial'),
        serialization_alias='colloquial_smart',
    )
    sophisticated: str = Field(
        default="",
        validation_alias=AliasChoices('c1_sophisticated', 'sophisticated'),
        serialization_alias='c1_sophisticated',
    )

    def available(self) -> Dict[str, str]:
        """Return the registers that actually produced a rewrite."""
        registers = {
            'formal': self.formal,
            'colloquial': self.colloquial,
            'sophisticated': self.sophisticated,
        }
        return {name: text for name, text in registers.items() if text.strip()}


class SuggestedIdiom(_AnalysisPart):
    """An idiom the learner could have used, with meaning and an example."""

    idiom: str = Field(
        default="",
        validation_alias=AliasChoices('deyim', 'idiom'),
        serialization_alias='deyim',
    )
    meaning: str = Field(
        default="",
        validation_alias=AliasChoices(
            'meaning_de', 'meaning', 'meaningInNativeLanguage'
        ),
        serialization_alias='meaning_de',
    )
    usage_note: str = Field(
        default="",
        validation_alias=AliasChoices('usage', 'usage_note', 'usageNote'),
        serialization_alias='usage',
    )
    example_in_context: str = Field(
        default="",
        validation_alias=AliasChoices('example_in_context', 'exampleInContext'),
    )


class MistakePattern(_AnalysisPart):
    """A recurring mistake pattern; only used to update MistakeStat rows."""

    pattern: str = Field(
        default="",
        validation_alias=AliasChoices(
            'pattern', 'pattern_description', 'patternDescription'
        ),
    )
    category: str = Field(
        default="",
        validation_alias=AliasChoices('type', 'category'),
        serialization_alias='type',
    )
    example_wrong: str = Field(
        default="", validation_alias=AliasChoices('example_wrong', 'exampleWrong')
    )
    example_correct: str = Field(
        default="", validation_alias=AliasChoices('example_correct', 'exampleCorrect')
    )


class WritingAnalysisResult(BaseModel):
    """Complete, normalised answer of the analysis model for one text."""

    model_config = ConfigDict(populate_by_name=True, extra='ignore')

    corrections: List[Correction] = Field(
        default_factory=list, description="Corrections in text order"
    )
    variants: StyleVariants = Field(
        default_factory=StyleVariants, description="Rewrites in three registers"
    )
    suggested_idioms: List[SuggestedIdiom] = Field(
        default_factory=list,
        validation_alias=AliasChoices(
            'suggested_deyimler', 'suggested_idioms', 'suggestedIdioms'
        ),
        serialization_alias='suggested_deyimler',
    )
    mistake_patterns: List[MistakePattern] = Field(
        default_factory=list,
        validation_alias=AliasChoices('mistake_patterns', 'mistakePatterns'),
    )

    @field_validator(
        'corrections', 'suggested_idioms', 'mistake_patterns', mode='before'
    )
    @classmethod
    def _none_as_empty_list(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator('variants', mode='before')
    @classmethod
    def _none_as_empty_variants(cls, value: Any) -> Any:
        return {} if value is None else value

    @classmethod
    def from_response_text(cls, text: str) -> "WritingAnalysisResult":
        """
        Parse the model's raw answer into a validated result.

        Args:
            text: Response text, optionally wrapped in code fences

        Returns:
            The normalised analysis

        Raises:
            MalformedAnalysisError: If the text is not a JSON object of the
                expected shape
        """
        try:
            payload = json.loads(strip_code_fences(text))
        except json.JSONDecodeError as exc:
            raise MalformedAnalysisError(
                f"Analysis response is not valid JSON: {exc.msg}"
            ) from exc

        if not isinstance(payload, dict):
            raise MalformedAnalysisError("Analysis response is not a JSON object")

        try:
            return cls.model_validate(payload)
        except ValidationError as exc:
            raise MalformedAnalysisError(
                f"Analysis response has {exc.error_count()} invalid field(s)"
            ) from exc

    def unknown_categories(self) -> List[str]:
        """Correction categories outside the requested set, in order of appearance."""
        seen: List[str] = []
        for correction in self.corrections:
            if not correction.has_known_category and correction.category not in seen:
                seen.append(correction.category)
        return seen

    def to_response(self) -> Dict[str, Any]:
        """Serialise with the wire field names for the API response."""
        return self.model_dump(mode='json', by_alias=True)


class IdiomView(BaseModel):
    """
    One entry of a user's idiom library.

    Derived on every read by folding all of the user's analyses; never stored.
    """

    idiom: str = Field(..., description="Idiom text, the merge key")
    meaning: str = Field(default="", description="Meaning in the native language")
    usage_note: str = Field(default="", description="When to use the idiom")
    example_in_context: str = Field(
        default="", description="Example from the most recent analysis"
    )
    occurrences: int = Field(
        default=1, ge=1, description="Number of analyses suggesting this idiom"
    )
    last_seen: datetime = Field(..., description="Creation time of the newest analysis")

    def matches(self, term: str) -> bool:
        """Case-insensitive search over idiom text and meaning."""
        needle = term.strip().casefold()
        if not needle:
            return True
        return needle in self.idiom.casefold() or needle in self.meaning.casefold()
