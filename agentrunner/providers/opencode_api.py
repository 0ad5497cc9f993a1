"""HTTP client for an OpenCode server (REST connection mode)."""

import logging

import httpx
from pydantic import BaseModel

from agentrunner.core.errors import ApiError
from agentrunner.core.models import UsageLimits
from agentrunner.usage.detector import limits_from_headers

logger = logging.getLogger(__name__)

# Agent runs over REST can take as long as a CLI session
DEFAULT_TIMEOUT_SECONDS = 30 * 60.0
HEALTH_TIMEOUT_SECONDS = 10.0
PROMPT_MAX_TOKENS = 4096


class OpenCodeApiResponse(BaseModel):
    """Body returned by /run and /v1/prompt."""

    output: str | None = None
    success: bool = False
    error: str | None = None
    session_id: str | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    cost_usd: float | None = None


class OpenCodeApiClient:
    """Thin wrapper over httpx.Client bound to one OpenCode endpoint.

    Non-2xx responses raise ApiError; transport problems surface as
    httpx.HTTPError. Rate-limit headers from the most recent response are
    kept in `last_usage_limits`.
    """

    def __init__(
        self,
        endpoint: str,
        api_key: str | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ):
        self.endpoint = endpoint.rstrip("/")
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.Client(
            base_url=self.endpoint,
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers=headers,
            transport=transport,
        )
        self.last_usage_limits: UsageLimits | None = None

    def _check(self, response: httpx.Response) -> httpx.Response:
        self.last_usage_limits = limits_from_headers(response.status_code, response.headers)
        if response.is_success:
            return response
        raise ApiError(
            f"OpenCode API returned {response.status_code} {response.reason_phrase} for {response.request.url.path}",
            status_code=response.status_code,
            response_content=response.text,
        )

    def _post(self, path: str, payload: dict) -> OpenCodeApiResponse:
        response = self._check(self._client.post(path, json=payload))
        return OpenCodeApiResponse.model_validate(response.json())

    def health(self) -> httpx.Response:
        """GET /health. Returned as-is so callers can report the status."""
        return self._client.get("/health", timeout=HEALTH_TIMEOUT_SECONDS)

    def run(self, prompt: str, session_id: str | None = None) -> OpenCodeApiResponse:
        logger.debug(f"POST {self.endpoint}/run (session {session_id})")
        return self._post("/run", {"prompt": prompt, "session_id": session_id})

    def prompt(self, prompt: str, max_tokens: int = PROMPT_MAX_TOKENS) -> OpenCodeApiResponse:
        return self._post("/v1/prompt", {"prompt": prompt, "max_tokens": max_tokens})

    def close(self) -> None:
        self._client.close()
