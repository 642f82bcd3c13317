"""Blocking request/response primitives for AI provider APIs.

A transport takes a fully built request body and returns the decoded JSON
response as a dict. It performs no retries; every library error is wrapped
in ``ProviderError``.
"""

from abc import ABC, abstractmethod
from typing import Any

import httpx
from anthropic import Anthropic, APIError, APIStatusError

from sandcoder.errors import ProviderError
from sandcoder.utils.logging import get_logger

logger = get_logger(__name__)


class Transport(ABC):
    """Sends one request body and returns the response payload."""

    provider: str

    @abstractmethod
    def send(self, request: dict[str, Any], timeout: float) -> dict[str, Any]:
        """Perform the round-trip.

        Raises:
            ProviderError: on network, HTTP or decoding failure
        """

    def close(self) -> None:
        """Release any pooled connections."""


class AnthropicTransport(Transport):
    """Anthropic Messages API through the official SDK."""

    provider = "anthropic"

    def __init__(self, api_key: str | None, base_url: str | None = None):
        """Initialize Anthropic transport.

        Args:
            api_key: Anthropic API key
            base_url: Optional API base URL override
        """
        if not api_key:
            raise ValueError("ANTHROPIC_API_KEY environment variable is required")
        # Retries are a caller decision (fallback chain), never the SDK's
        self.client = Anthropic(api_key=api_key, base_url=base_url, max_retries=0)

    def send(self, request: dict[str, Any], timeout: float) -> dict[str, Any]:
        logger.debug(f"Making Anthropic API call with model: {request.get('model')}")
        try:
            response = self.client.messages.create(**request, timeout=timeout)
        except APIStatusError as e:
            raise ProviderError(self.provider, e.message, e.status_code) from e
        except APIError as e:
            raise ProviderError(self.provider, str(e)) from e
        return response.model_dump()

    def close(self) -> None:
        self.client.close()


class HttpTransport(Transport):
    """OpenAI-compatible Chat Completions endpoint over httpx."""

    def __init__(
        self,
        provider: str,
        base_url: str,
        api_key: str | None = None,
        headers: dict[str, str] | None = None,
        client: httpx.Client | None = None,
        path: str = "/chat/completions",
    ):
        self.provider = provider
        self.url = base_url.rstrip("/") + path
        self.headers = {"Content-Type": "application/json", **(headers or {})}
        if api_key:
            self.headers["Authorization"] = f"Bearer {api_key}"
        self.client = client or httpx.Client()

    def send(self, request: dict[str, Any], timeout: float) -> dict[str, Any]:
        logger.debug(f"POST {self.url} with model: {request.get('model')}")
        try:
            response = self.client.post(self.url, json=request, headers=self.headers, timeout=timeout)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ProviderError(self.provider, _error_detail(e.response), e.response.status_code) from e
        except httpx.HTTPError as e:
            raise ProviderError(self.provider, str(e) or type(e).__name__) from e

        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderError(self.provider, f"response was not valid JSON: {e}") from e
        if not isinstance(payload, dict):
            raise ProviderError(self.provider, "response was not a JSON object")
        return payload

    def close(self) -> None:
        self.client.close()


def _error_detail(response: httpx.Response) -> str:
    """Best-effort error message from a failed response body."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:500] or response.reason_phrase
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
    return response.text[:500]
