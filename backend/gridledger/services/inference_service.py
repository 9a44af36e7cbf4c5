# Overview: External inference API client (httpx) with bounded linear-backoff retries.

"""
Inference Client

One call = one generateContent request: a text prompt, optionally an inline
binary part (an invoice image or PDF), optionally a response schema for
structured JSON output.

RETRY POLICY:
- transport errors, non-200 responses and bodies carrying an "error" field
  are transient: retried up to max_attempts with delays backoff, 2*backoff, ...
- a 200 body that is not JSON or has no candidate text is MALFORMED and is
  not retried.
The outcome models "exhausted" and "malformed" as distinct statuses;
callers turn either into UpstreamFailure.
"""

from __future__ import annotations

import base64
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping

import httpx

from .concurrency import run_with_retry


logger = logging.getLogger(__name__)

OK = "ok"
EXHAUSTED = "exhausted"
MALFORMED = "malformed"


class UpstreamFailure(Exception):
    """Raised when an external collaborator (inference, documents) fails."""
    pass


class _TransientFailure(Exception):
    pass


@dataclass(frozen=True)
class InferenceOutcome:
    status: str
    text: str = ""
    error: str = ""
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.status == OK

    def raise_for_status(self) -> None:
        if self.status == EXHAUSTED:
            raise UpstreamFailure(f"Inference failed after {self.attempts} attempts: {self.error}")
        if self.status == MALFORMED:
            raise UpstreamFailure(f"Inference returned a malformed response: {self.error}")

    def json(self) -> Any:
        """Parse the candidate text as JSON (structured-output calls)."""
        self.raise_for_status()
        text = self.text.strip()
        # Some models wrap JSON in a fenced block
        if text.startswith("```"):
            text = text.strip("`")
            if text.lower().startswith("json"):
                text = text[4:]
        try:
            return json.loads(text)
        except ValueError as exc:
            raise UpstreamFailure(f"Inference returned invalid JSON: {exc}") from exc


def _candidate_text(payload: Any) -> str | None:
    try:
        return payload["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return None


class InferenceClient:
    def __init__(
        self,
        *,
        api_key: str,
        endpoint: str,
        model: str,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        timeout: float = 60.0,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.api_key = api_key
        self.endpoint = endpoint.rstrip("/")
        self.model = model
        self.max_attempts = max(1, int(max_attempts))
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep
        self._client = httpx.Client(timeout=timeout, transport=transport)

    @classmethod
    def from_config(cls, config: Mapping[str, Any], **overrides) -> "InferenceClient":
        kwargs = dict(
            api_key=config.get("INFERENCE_API_KEY", ""),
            endpoint=config.get("INFERENCE_ENDPOINT", ""),
            model=config.get("INFERENCE_MODEL", ""),
            max_attempts=config.get("INFERENCE_MAX_ATTEMPTS", 3),
            backoff_seconds=config.get("INFERENCE_BACKOFF_SECONDS", 1.0),
            timeout=config.get("INFERENCE_TIMEOUT_SECONDS", 60.0),
        )
        kwargs.update(overrides)
        return cls(**kwargs)

    def close(self) -> None:
        self._client.close()

    def build_request(
        self,
        prompt: str,
        *,
        inline_data: bytes | None = None,
        mime_type: str | None = None,
        response_schema: dict | None = None,
    ) -> dict:
        parts: list[dict] = [{"text": prompt}]
        if inline_data is not None:
            parts.append({
                "inline_data": {
                    "mime_type": mime_type or "application/octet-stream",
                    "data": base64.b64encode(inline_data).decode("ascii"),
                }
            })
        body: dict[str, Any] = {"contents": [{"parts": parts}]}
        if response_schema is not None:
            body["generationConfig"] = {
                "response_mime_type": "application/json",
                "response_schema": response_schema,
            }
        return body

    def generate(
        self,
        prompt: str,
        *,
        inline_data: bytes | None = None,
        mime_type: str | None = None,
        response_schema: dict | None = None,
    ) -> InferenceOutcome:
        body = self.build_request(
            prompt, inline_data=inline_data, mime_type=mime_type, response_schema=response_schema
        )
        url = f"{self.endpoint}/{self.model}:generateContent"
        attempts = 0

        def _attempt():
            nonlocal attempts
            attempts += 1
            try:
                resp = self._client.post(url, params={"key": self.api_key}, json=body)
            except httpx.TransportError as exc:
                raise _TransientFailure(f"{type(exc).__name__}: {exc}") from exc
            if resp.status_code != 200:
                raise _TransientFailure(f"HTTP {resp.status_code}: {resp.text[:200]}")
            try:
                payload = resp.json()
            except ValueError:
                return None
            if isinstance(payload, dict) and payload.get("error"):
                error = payload["error"]
                message = error.get("message") if isinstance(error, dict) else str(error)
                raise _TransientFailure(message or "error")
            return payload

        try:
            payload = run_with_retry(
                _attempt,
                attempts=self.max_attempts,
                backoff_base=self.backoff_seconds,
                retry_on=(_TransientFailure,),
                linear=True,
                sleep=self._sleep,
            )
        except _TransientFailure as exc:
            logger.warning("Inference exhausted %d attempts: %s", attempts, exc)
            return InferenceOutcome(EXHAUSTED, error=str(exc), attempts=attempts)

        if payload is None:
            return InferenceOutcome(MALFORMED, error="response body is not JSON", attempts=attempts)
        text = _candidate_text(payload)
        if text is None:
            return InferenceOutcome(MALFORMED, error="response has no candidate text", attempts=attempts)
        return InferenceOutcome(OK, text=text, attempts=attempts)
