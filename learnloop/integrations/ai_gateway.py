"""
AI gateway client.

Handles HTTP communication with an OpenAI-compatible chat-completions
endpoint for grading, misconception detection and remediation generation.
"""

from __future__ import annotations

import asyncio
import json
import re
from typing import Any

import httpx
from loguru import logger

from learnloop.config import Settings, get_settings
from learnloop.errors import InvalidResponse, PaymentRequired, RateLimited, ServiceUnavailable

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


def extract_json_object(content: str) -> dict[str, Any]:
    """
    Parse the first {...} block out of a model reply.

    Raises:
        InvalidResponse: If no JSON object can be parsed
    """
    match = _JSON_OBJECT.search(content or "")
    if not match:
        raise InvalidResponse("Failed to parse AI response as JSON")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise InvalidResponse(f"Invalid AI response format: {e}") from e
    if not isinstance(data, dict):
        raise InvalidResponse("AI response is not a JSON object")
    return data


class AIGatewayClient:
    """HTTP client for the AI gateway."""

    def __init__(
        self,
        api_url: str,
        api_key: str | None = None,
        timeout_seconds: float = 30.0,
        retry_attempts: int = 3,
        backoff_base: float = 1.0,
    ):
        """
        Initialize the gateway client.

        Args:
            api_url: Chat-completions URL
            api_key: Bearer token
            timeout_seconds: Request timeout in seconds
            retry_attempts: Number of attempts for timeouts, transport errors and 5xx
            backoff_base: First backoff delay; doubles per attempt
        """
        self.api_url = api_url
        self.retry_attempts = max(1, retry_attempts)
        self.backoff_base = backoff_base
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            headers=headers,
            follow_redirects=True,
        )

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> AIGatewayClient:
        settings = settings or get_settings()
        return cls(
            api_url=settings.ai_gateway_url,
            api_key=settings.ai_api_key,
            timeout_seconds=settings.ai_timeout_seconds,
            retry_attempts=settings.ai_retry_attempts,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> AIGatewayClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _backoff(self, attempt: int, reason: str) -> None:
        wait_time = self.backoff_base * 2**attempt  # 1s, 2s, 4s
        logger.warning(
            f"AI gateway {reason} on attempt {attempt + 1}/{self.retry_attempts}. "
            f"Retrying in {wait_time}s..."
        )
        if attempt < self.retry_attempts - 1:
            await asyncio.sleep(wait_time)

    async def complete(self, payload: dict[str, Any]) -> dict[str, Any]:
        """
        POST a chat-completions payload with retry logic.

        Returns:
            The decoded response body

        Raises:
            RateLimited: On HTTP 429
            PaymentRequired: On HTTP 402
            ServiceUnavailable: On other 4xx, or when retries are exhausted
            InvalidResponse: If the body is not JSON
        """
        last_error: Exception | None = None

        for attempt in range(self.retry_attempts):
            try:
                response = await self.client.post(self.api_url, json=payload)
                response.raise_for_status()
                try:
                    return response.json()
                except ValueError as e:
                    raise InvalidResponse(f"AI gateway returned non-JSON body: {e}") from e

            except httpx.TimeoutException as e:
                last_error = e
                await self._backoff(attempt, "timeout")

            except httpx.HTTPStatusError as e:
                last_error = e
                status = e.response.status_code
                if status == 429:
                    raise RateLimited("Rate limit exceeded") from e
                if status == 402:
                    raise PaymentRequired("Payment required") from e
                if status >= 500:
                    await self._backoff(attempt, f"server error {status}")
                else:
                    logger.error(f"AI gateway client error: {status}")
                    raise ServiceUnavailable(f"AI gateway rejected request: {status}") from e

            except httpx.RequestError as e:
                last_error = e
                await self._backoff(attempt, f"request error ({e})")

        error_msg = f"AI gateway call failed after {self.retry_attempts} attempts"
        logger.error(f"{error_msg}: {last_error}")
        raise ServiceUnavailable(error_msg) from last_error

    @staticmethod
    def _message(data: dict[str, Any]) -> dict[str, Any]:
        try:
            message = data["choices"][0]["message"]
        except (KeyError, IndexError, TypeError) as e:
            raise InvalidResponse("AI response has no message") from e
        if not isinstance(message, dict):
            raise InvalidResponse("AI response has no message")
        return message

    async def chat_json(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> dict[str, Any]:
        """Ask for a JSON-object reply and return it parsed."""
        payload: dict[str, Any] = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": temperature,
        }
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        content = self._message(await self.complete(payload)).get("content")
        if not content:
            raise InvalidResponse("AI returned empty response")
        return extract_json_object(content)

    async def chat_tool(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        tool: dict[str, Any],
        temperature: float = 0.3,
    ) -> dict[str, Any]:
        """Force a single tool call and return its parsed arguments."""
        name = tool["function"]["name"]
        payload = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "tools": [tool],
            "tool_choice": {"type": "function", "function": {"name": name}},
            "temperature": temperature,
        }

        message = self._message(await self.complete(payload))
        calls = message.get("tool_calls") or []
        if not calls or calls[0].get("function", {}).get("name") != name:
            raise InvalidResponse(f"No {name} tool call in AI response")
        try:
            arguments = json.loads(calls[0]["function"].get("arguments") or "")
        except json.JSONDecodeError as e:
            raise InvalidResponse(f"Failed to parse tool call arguments: {e}") from e
        if not isinstance(arguments, dict):
            raise InvalidResponse("Tool call arguments are not an object")
        return arguments
