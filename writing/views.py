"""
writing/views.py.

JSON views for daily writing practice: prompts, submission and analysis,
the mistake tracker and the idiom library.
"""

import json
import random
from typing import Any, Dict

from asgiref.sync import sync_to_async
from django.conf import settings
from django.contrib.auth.decorators import login_required
from django.http import HttpRequest, JsonResponse
from django.shortcuts import aget_object_or_404
from django_ratelimit.core import is_ratelimited
from django_ratelimit.exceptions import Ratelimited

from . import pipeline
from .exceptions import InvalidRequestError, WritingPipelineError
from .models import MistakeStat

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

# Daily writing prompts, keyed by the learner's native language
WRITING_PROMPTS = {
    'German': [
        "Beschreibe deine letzte Geschäftsverhandlung",
        "Was ist deine Meinung zur aktuellen Wirtschaftslage?",
        "Erzähle von einem spannenden Fußballspiel",
        "Wie würdest du ein neues Projekt im Team vorschlagen?",
        "Beschreibe einen politischen Konflikt aus türkischer Perspektive",
    ],
    'English': [
        "Describe your most recent business negotiation",
        "What is your opinion on the current economic situation?",
        "Tell me about an exciting football match",
        "How would you propose a new project to your team?",
        "Describe a political conflict from a Turkish perspective",
    ],
}

MAX_MISTAKES_LIMIT = 50

# Per-IP limits for requests that reach the analysis model
SUBMISSION_RATES = ('20/h', '100/d')


async def _check_submission_rate(request: HttpRequest, group: str) -> None:
    """
    Count this POST against every submission rate for the client IP.

    django-ratelimit's decorator only wraps sync views, so the check runs
    here and ``Ratelimited`` is left to ``RateLimitMiddleware``.
    """
    for rate in SUBMISSION_RATES:
        limited = await sync_to_async(is_ratelimited)(
            request=request,
            group=group,
            key='ip',
            rate=rate,
            method='POST',
            increment=True,
        )
        if limited:
            raise Ratelimited()


def _read_payload(request: HttpRequest) -> Dict[str, Any]:
    """Return the JSON body, or the form data for non-JSON requests."""
    if request.content_type != 'application/json':
        return request.POST.dict()
    try:
        payload = json.loads(request.body or b'{}')
    except json.JSONDecodeError:
        raise InvalidRequestError("Request body is not valid JSON") from None
    if not isinstance(payload, dict):
        raise InvalidRequestError("Request body must be a JSON object")
    return payload


def _error_response(error: WritingPipelineError) -> JsonResponse:
    return JsonResponse(
        {'status': 'error', 'error': error.message}, status=error.status_code
    )


def _serialize_mistake(stat: MistakeStat) -> Dict[str, Any]:
    return {
        'id': stat.pk,
        'pattern': stat.pattern,
        'category': stat.category,
        'example_wrong': stat.example_wrong,
        'example_correct': stat.example_correct,
        'occurrences': stat.occurrences,
        'mastery_level': stat.mastery_level,
        'last_seen': stat.last_seen.isoformat(),
    }


# ---------------------------------------------------------------------------
# Writing
# ---------------------------------------------------------------------------


@login_required  # type: ignore
async def writing_prompt(request: HttpRequest) -> JsonResponse:
    """Return a random daily writing prompt."""
    if request.method != 'GET':
        return JsonResponse({'error': 'Only GET requests are allowed'}, status=405)

    prompts = WRITING_PROMPTS.get(
        settings.WRITING_FEEDBACK_LANGUAGE, WRITING_PROMPTS['English']
    )
    return JsonResponse(
        {'prompt': random.choice(prompts), 'min_length': settings.WRITING_MIN_LENGTH}
    )


@login_required  # type: ignore
async def submit_writing(request: HttpRequest) -> JsonResponse:
    """
    Store a new writing exercise and analyse it.

    Expects ``prompt`` and ``text``. The text must reach the configured
    minimum length before anything is stored.

    Returns:
        JsonResponse with the exercise id and the analysis
    """
    if request.method != 'POST':
        return JsonResponse({'error': 'Only POST requests are allowed'}, status=405)

    await _check_submission_rate(request, 'writing.submit')
    user = await request.auser()
    try:
        payload = _read_payload(request)
        exercise, result = await pipeline.submit_exercise(
            user, str(payload.get('prompt') or ''), str(payload.get('text') or '')
        )
    except WritingPipelineError as e:
        return _error_response(e)

    return JsonResponse(
        {
            'status': 'success',
            'exercise_id': exercise.pk,
            'word_count': exercise.word_count,
            'analysis': result.to_response(),
        }
    )


@login_required  # type: ignore
async def analyze_writing(request: HttpRequest) -> JsonResponse:
    """
    Analyse the text of an existing exercise.

    Expects ``exerciseId`` and ``userText``. On success the validated analysis
    is returned as the model produced it; on failure only a message.
    """
    if request.method != 'POST':
        return JsonResponse({'error': 'Only POST requests are allowed'}, status=405)

    await _check_submission_rate(request, 'writing.analyze')
    user = await request.auser()
    try:
        payload = _read_payload(request)
        result = await pipeline.analyze_submission(
            payload.get('exerciseId'), payload.get('userText'), user
        )
    except WritingPipelineError as e:
        return _error_response(e)

    return JsonResponse({'status': 'success', 'analysis': result.to_response()})


# --------------------------------------------------------------------------- #
# Mistake tracker                                                             #
# --------------------------------------------------------------------------- #


@login_required  # type: ignore
async def mistake_tracker(request: HttpRequest) -> JsonResponse:
    """Return the user's most frequent mistakes; ``?limit=`` defaults to 10."""
    if request.method != 'GET':
        return JsonResponse({'error': 'Only GET requests are allowed'}, status=405)

    try:
        limit = int(request.GET.get('limit', 10))
    except ValueError:
        return JsonResponse({'error': 'limit must be an integer'}, status=400)
    limit = max(1, min(limit, MAX_MISTAKES_LIMIT))

    user = await request.auser()
    mistakes = await pipeline.top_mistakes(user, limit)
    return JsonResponse({'mistakes': [_serialize_mistake(m) for m in mistakes]})


@login_required  # type: ignore
async def update_mastery(request: HttpRequest, mistake_id: int) -> JsonResponse:
    """Set the mastery level (0-5) of one of the user's mistake patterns."""
    if request.method != 'POST':
        return JsonResponse({'error': 'Only POST requests are allowed'}, status=405)

    user = await request.auser()
    stat = await aget_object_or_404(MistakeStat, pk=mistake_id, user=user)
    try:
        payload = _read_payload(request)
        stat = await pipeline.set_mastery_level(stat, payload.get('mastery_level'))
    except WritingPipelineError as e:
        return _error_response(e)

    return JsonResponse({'status': 'success', 'mistake': _serialize_mistake(stat)})


# --------------------------------------------------------------------------- #
# Idiom library                                                               #
# --------------------------------------------------------------------------- #


@login_required  # type: ignore
async def idiom_library(request: HttpRequest) -> JsonResponse:
    """
    Return every idiom suggested to the user, most frequent first.

    The library is recomputed from all of the user's analyses on each request.
    ``?q=`` filters by idiom text or meaning.
    """
    if request.method != 'GET':
        return JsonResponse({'error': 'Only GET requests are allowed'}, status=405)

    user = await request.auser()
    search = request.GET.get('q', '')
    idioms = await pipeline.load_idiom_library(user, search)
    return JsonResponse(
        {
            'count': len(idioms),
            'query': search,
            'idioms': [idiom.model_dump(mode='json') for idiom in idioms],
        }
    )
