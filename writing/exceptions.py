"""
Error taxonomy for the writing analysis pipeline.

Every error that can reach a caller derives from :class:`WritingPipelineError`
and carries a human-readable message plus the HTTP status the views answer
with. :class:`AggregationWarning` is only ever logged.
"""


class WritingPipelineError(Exception):
    """Base class for failures surfaced at the request boundary."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidRequestError(WritingPipelineError):
    """Missing or unusable input; raised before any external call."""

    status_code = 400


class AnalysisServiceError(WritingPipelineError):
    """The analysis model was unreachable or answered with a failure status."""

    status_code = 502


class AnalysisFormatError(WritingPipelineError):
    """The analysis model answered, but not with extractable text."""

    status_code = 502


class MalformedAnalysisError(AnalysisFormatError):
    """The response text could not be parsed into an analysis."""


class PersistenceError(WritingPipelineError):
    """The analysis row could not be stored; nothing else is written."""

    status_code = 500


class AggregationWarning(WritingPipelineError):
    """A single mistake pattern could not be counted. Logged, never returned."""
