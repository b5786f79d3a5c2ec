"""Rate-limited JSON requests with provider failures mapped to ErrorCode."""

import logging

import httpx

from citechain.core.errors import CitechainError, ErrorCode
from citechain.search.ratelimit import RateLimiter

logger = logging.getLogger(__name__)


async def request_json(
    http: httpx.AsyncClient,
    limiter: RateLimiter,
    method: str,
    url: str,
    *,
    provider: str,
    operation: str,
    timeout: float,
    **kwargs,
):
    """Send one request through ``limiter`` and decode the JSON body.

    Raises CitechainError with ``provider`` and ``operation`` attached.
    There is no retry: the caller decides what a failure costs.
    """
    try:
        async with limiter.slot():
            response = await http.request(method, url, timeout=timeout, **kwargs)
    except httpx.TimeoutException as exc:
        logger.warning("%s request timed out during %s", provider, operation)
        raise CitechainError(
            ErrorCode.TIMEOUT,
            f"{provider} request timed out",
            cause=exc,
            provider=provider,
            operation=operation,
        ) from exc
    except httpx.HTTPError as exc:
        logger.warning("%s transport error during %s: %s", provider, operation, exc)
        raise CitechainError(
            ErrorCode.INTERNAL_SERVER_ERROR,
            f"Failed to reach {provider}",
            cause=exc,
            provider=provider,
            operation=operation,
        ) from exc

    if response.status_code >= 400:
        raise _status_error(response, provider, operation)

    try:
        return response.json()
    except ValueError as exc:
        logger.warning(
            "%s returned a non-JSON body during %s: %.200s",
            provider,
            operation,
            response.text,
        )
        raise CitechainError(
            ErrorCode.BAD_REQUEST,
            f"Invalid response format from {provider}",
            cause=exc,
            provider=provider,
            operation=operation,
        ) from exc


def _status_error(response: httpx.Response, provider: str, operation: str) -> CitechainError:
    status = response.status_code
    if status == 429:
        code, message = ErrorCode.TOO_MANY_REQUESTS, f"{provider} rate limit exceeded"
    elif status == 404:
        code, message = ErrorCode.NOT_FOUND, f"Resource not found in {provider}"
    elif status >= 500:
        code, message = ErrorCode.INTERNAL_SERVER_ERROR, f"{provider} server error ({status})"
    else:
        code, message = ErrorCode.BAD_REQUEST, f"{provider} rejected the request ({status})"

    logger.warning(
        "%s HTTP %d during %s: %.200s", provider, status, operation, response.text
    )
    cause = httpx.HTTPStatusError(message, request=response.request, response=response)
    return CitechainError(code, message, cause=cause, provider=provider, operation=operation)
