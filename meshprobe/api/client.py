"""
HTTP client for the probe service API.
"""

from typing import Any, Dict, Optional, Type, TypeVar

import httpx
from loguru import logger
from pydantic import BaseModel, ValidationError
from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from meshprobe.api.auth import TokenStore
from meshprobe.api.cache import ResponseCache
from meshprobe.core.errors import ApiError, NotFoundError, RateLimitError
from meshprobe.core.models import (
    Limits,
    Measurement,
    MeasurementCreate,
    MeasurementCreateResponse,
    MeasurementStatus,
    RateLimitStatus,
)

DEFAULT_API_URL = "https://api.globalping.io/v1"

ModelT = TypeVar("ModelT", bound=BaseModel)


class _ServerError(Exception):
    """A 5xx response; retried before it is mapped to an ApiError."""

    def __init__(self, response: httpx.Response):
        super().__init__(f"HTTP {response.status_code}")
        self.response = response


def _int_header(headers: httpx.Headers, name: str) -> Optional[int]:
    value = headers.get(name)
    try:
        return int(value) if value is not None else None
    except ValueError:
        return None


def _decode(response: httpx.Response, model: Type[ModelT]) -> ModelT:
    """Validate a response body, raising ApiError for anything unreadable."""
    try:
        return model.model_validate(response.json())
    except ValidationError as e:
        raise ApiError(
            f"Unexpected {model.__name__} response: {e.error_count()} invalid field(s)",
            status_code=response.status_code,
        ) from e
    except ValueError as e:
        raise ApiError(f"Response is not valid JSON: {e}", status_code=response.status_code) from e


class ProbeApiClient:
    """Client for creating and reading measurements."""

    def __init__(
        self,
        api_url: str = DEFAULT_API_URL,
        token_store: Optional[TokenStore] = None,
        cache: Optional[ResponseCache] = None,
        user_agent: str = "meshprobe",
        timeout: float = 30.0,
        retry_count: int = 2,
        retry_delay: float = 0.5,
        cache_ttl: float = 30.0,
        http: Optional[httpx.Client] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.token_store = token_store
        self.cache = cache if cache is not None else ResponseCache()
        self.retry_count = retry_count
        self.retry_delay = retry_delay
        self.cache_ttl = cache_ttl
        self._http = http or httpx.Client(timeout=timeout)
        self._user_agent = user_agent

    def create_measurement(self, spec: MeasurementCreate) -> MeasurementCreateResponse:
        """Submit a measurement. Returns its id and probe count."""
        response = self._request("POST", "/measurements", json=spec.to_payload())
        created = _decode(response, MeasurementCreateResponse)
        logger.info(f"Created {spec.type} measurement {created.id} ({created.probes_count} probes)")
        return created

    def get_measurement(self, measurement_id: str) -> Measurement:
        """
        Fetch a measurement.

        Finished measurements are served from the cache; in-progress ones are
        revalidated with their ETag.
        """
        key = f"GET /measurements/{measurement_id}"
        cached = self.cache.get(key, None)
        headers: Dict[str, str] = {}
        if cached is not None:
            etag, measurement = cached
            if measurement.status != MeasurementStatus.IN_PROGRESS:
                logger.debug(f"Cache hit for {key}")
                return measurement
            if etag:
                headers["If-None-Match"] = etag

        response = self._request("GET", f"/measurements/{measurement_id}", headers=headers)
        if response.status_code == 304 and cached is not None:
            measurement = cached[1]
        else:
            measurement = _decode(response, Measurement)
        self.cache.put(key, (response.headers.get("ETag"), measurement), self.cache_ttl)
        return measurement

    def get_limits(self) -> Limits:
        """Fetch the caller's rate limit and credit status."""
        response = self._request("GET", "/limits")
        try:
            payload = response.json()
            create = (
                payload.get("rateLimit", {})
                .get("measurements", {})
                .get("create", {})
            )
            credits = payload.get("credits") or {}
            return Limits(
                create=RateLimitStatus.model_validate(create),
                credits_remaining=credits.get("remaining"),
            )
        except (ValueError, AttributeError) as e:
            raise ApiError(f"Unexpected limits response: {e}", status_code=response.status_code) from e

    def close(self) -> None:
        self.cache.stop()
        self._http.close()

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            "User-Agent": self._user_agent,
            "Accept": "application/json",
            "Accept-Encoding": "gzip",
        }
        if self.token_store is not None:
            authorization = self.token_store.authorization_header()
            if authorization:
                headers["Authorization"] = authorization
        if extra:
            headers.update(extra)
        return headers

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send a request, retrying transport errors and 5xx responses."""
        url = f"{self.api_url}{path}"
        extra_headers = kwargs.pop("headers", None)

        def send() -> httpx.Response:
            response = self._http.request(method, url, headers=self._headers(extra_headers), **kwargs)
            if response.status_code >= 500:
                raise _ServerError(response)
            return response

        def log_retry(state: RetryCallState) -> None:
            logger.warning(
                f"{method} {path} failed ({state.outcome.exception()}), "
                f"retrying ({state.attempt_number}/{self.retry_count})"
            )

        retrying = Retrying(
            stop=stop_after_attempt(self.retry_count + 1),
            wait=wait_fixed(self.retry_delay),
            retry=retry_if_exception_type((httpx.TransportError, _ServerError)),
            before_sleep=log_retry,
            reraise=True,
        )
        try:
            response = retrying(send)
        except _ServerError as e:
            raise self._error_for(e.response) from None
        except httpx.DecodingError as e:
            raise ApiError(f"{method} {path} returned an undecodable body: {e}") from e
        except httpx.TransportError as e:
            raise ApiError(f"{method} {path} failed: {e}") from e

        if response.status_code >= 400:
            raise self._error_for(response)
        return response

    def _error_for(self, response: httpx.Response) -> ApiError:
        message = f"HTTP {response.status_code}"
        error_type = None
        try:
            body = response.json().get("error") or {}
            message = body.get("message") or message
            error_type = body.get("type")
        except (ValueError, AttributeError):
            pass

        if response.status_code == 404:
            return NotFoundError(message, status_code=404, error_type=error_type)
        if response.status_code == 429:
            return RateLimitError(
                message,
                remaining=_int_header(response.headers, "X-RateLimit-Remaining"),
                reset=_int_header(response.headers, "X-RateLimit-Reset"),
                credits_remaining=_int_header(response.headers, "X-Credits-Remaining"),
            )
        return ApiError(message, status_code=response.status_code, error_type=error_type)
