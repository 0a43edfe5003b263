"""Turn ``Ratelimited`` raised by the writing views into a JSON 429."""

from typing import Optional

from django.http import HttpRequest, JsonResponse
from django.utils.deprecation import MiddlewareMixin
from django_ratelimit.exceptions import Ratelimited

RATE_LIMIT_MESSAGE = (
    "Too many texts submitted from this address. Try again later."
)


class RateLimitMiddleware(MiddlewareMixin):
    """
    Answer rate-limited submissions with the same error shape as the views.

    ``MiddlewareMixin`` keeps the chain async when the views are async.
    """

    def process_exception(
        self, request: HttpRequest, exception: Exception
    ) -> Optional[JsonResponse]:
        if not isinstance(exception, Ratelimited):
            return None
        return JsonResponse(
            {'status': 'error', 'error': RATE_LIMIT_MESSAGE}, status=429
        )
