"""Async gateways to the generative-model backends.

Every provider exposes the same narrow contract: take an ordered list of
conversation messages and return the fully assembled reply text.  The
gateway does not interpret the reply; structured parsing is the job of
``appbuilder.parser.validated_call``.

Typical usage::

    gateway = create_gateway(config.gateway)
    text = await gateway.send([ConversationMessage.user("Hello")])
"""

from __future__ import annotations

import asyncio
import contextlib
from enum import Enum
from typing import Any, Protocol

import httpx
from pydantic import BaseModel, Field

from appbuilder.config import GatewayConfig

ANTHROPIC_VERSION = "2023-06-01"


class Role(str, Enum):
    """Author of a conversation message."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ConversationMessage(BaseModel):
    """One entry in a build session's running conversation."""

    role: Role
    content: str = Field(default="")

    @classmethod
    def user(cls, content: str) -> "ConversationMessage":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> "ConversationMessage":
        return cls(role=Role.ASSISTANT, content=content)

    @classmethod
    def system(cls, content: str) -> "ConversationMessage":
        return cls(role=Role.SYSTEM, content=content)


# ---------------------------------------------------------------------------
# Errors and cancellation
# ---------------------------------------------------------------------------


class ModelGatewayError(Exception):
    """The backend could not be reached or returned an unusable response."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        self.message = message
        super().__init__(f"[{provider}] {message}")


class GatewayCancelled(ModelGatewayError):
    """An in-flight request was aborted through its ``CancelToken``."""

    def __init__(self, provider: str) -> None:
        super().__init__(provider, "Request cancelled")


class CancelToken:
    """Cooperative cancellation signal shared by a session's requests."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


class ModelGateway(Protocol):
    """Anything that can turn a conversation into a reply."""

    async def send(
        self,
        messages: list[ConversationMessage],
        cancel_token: CancelToken | None = None,
    ) -> str: ...


# ---------------------------------------------------------------------------
# HTTP base
# ---------------------------------------------------------------------------


class _HttpGateway:
    """Shared request plumbing for the HTTP-backed providers."""

    provider = "http"
    endpoint = ""

    def __init__(self, config: GatewayConfig) -> None:
        self.config = config
        self.base_url = config.base_url
        self.model = config.model
        self.timeout = config.timeout

    def _client(self) -> httpx.AsyncClient:
        """Return a fresh ``AsyncClient`` configured with our base URL and timeout."""
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout, connect=10.0),
            headers=self._headers(),
        )

    def _headers(self) -> dict[str, str]:
        return {}

    def _payload(self, messages: list[ConversationMessage]) -> dict[str, Any]:
        raise NotImplementedError

    @staticmethod
    def _extract_text(data: dict) -> str:
        raise NotImplementedError

    async def _post(self, payload: dict[str, Any]) -> dict:
        try:
            async with self._client() as client:
                response = await client.post(self.endpoint, json=payload)
                response.raise_for_status()
                return response.json()
        except httpx.ConnectError as exc:
            raise ModelGatewayError(
                self.provider,
                f"Cannot connect to {self.base_url}. Is the server running?",
            ) from exc
        except httpx.TimeoutException as exc:
            raise ModelGatewayError(
                self.provider, f"Request timed out after {self.timeout}s."
            ) from exc
        except httpx.HTTPStatusError as exc:
            raise ModelGatewayError(
                self.provider,
                f"HTTP {exc.response.status_code}: {exc.response.text[:500]}",
            ) from exc
        except ValueError as exc:
            raise ModelGatewayError(self.provider, f"Response was not JSON: {exc}") from exc

    async def send(
        self,
        messages: list[ConversationMessage],
        cancel_token: CancelToken | None = None,
    ) -> str:
        """Send *messages* and return the assembled reply text.

        Args:
            messages: The conversation, oldest first.
            cancel_token: Optional token; cancelling it aborts the request.

        Returns:
            The model's reply as plain text.

        Raises:
            GatewayCancelled: The token fired before the reply arrived.
            ModelGatewayError: Transport failure or malformed response.
        """
        if cancel_token is not None and cancel_token.cancelled:
            raise GatewayCancelled(self.provider)

        request = asyncio.ensure_future(self._post(self._payload(messages)))
        if cancel_token is None:
            data = await request
        else:
            waiter = asyncio.ensure_future(cancel_token.wait())
            done, _ = await asyncio.wait(
                {request, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
            if request not in done:
                request.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await request
                raise GatewayCancelled(self.provider)
            waiter.cancel()
            data = request.result()

        try:
            return self._extract_text(data)
        except (KeyError, IndexError, TypeError) as exc:
            raise ModelGatewayError(
                self.provider, f"Unexpected response shape: {exc!r}"
            ) from exc


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


class OllamaGateway(_HttpGateway):
    """Local Ollama server, non-streaming ``/api/chat``."""

    provider = "ollama"
    endpoint = "/api/chat"

    def _payload(self, messages: list[ConversationMessage]) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": [m.model_dump(mode="json") for m in messages],
            "stream": False,
            "options": {
                "temperature": self.config.temperature,
                "num_predict": self.config.max_tokens,
            },
        }

    @staticmethod
    def _extract_text(data: dict) -> str:
        return data["message"]["content"]


class OpenAIGateway(_HttpGateway):
    """OpenAI-compatible chat completions (OpenAI and OpenRouter)."""

    endpoint = "/chat/completions"

    def __init__(self, config: GatewayConfig) -> None:
        super().__init__(config)
        self.provider = config.provider

    def _headers(self) -> dict[str, str]:
        if not self.config.api_key:
            return {}
        return {"Authorization": f"Bearer {self.config.api_key}"}

    def _payload(self, messages: list[ConversationMessage]) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": [m.model_dump(mode="json") for m in messages],
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
        }

    @staticmethod
    def _extract_text(data: dict) -> str:
        return data["choices"][0]["message"]["content"] or ""


class AnthropicGateway(_HttpGateway):
    """Anthropic Messages API.

    System messages are hoisted into the top-level ``system`` field since
    the API accepts only user and assistant turns in ``messages``.
    """

    provider = "anthropic"
    endpoint = "/v1/messages"

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.config.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }

    def _payload(self, messages: list[ConversationMessage]) -> dict[str, Any]:
        system_parts = [m.content for m in messages if m.role == Role.SYSTEM]
        payload: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "messages": [
                {"role": m.role.value, "content": m.content}
                for m in messages
                if m.role != Role.SYSTEM
            ],
        }
        if system_parts:
            payload["system"] = "\n\n".join(system_parts)
        return payload

    @staticmethod
    def _extract_text(data: dict) -> str:
        blocks = data["content"]
        return "".join(b.get("text", "") for b in blocks if b.get("type") == "text")


def create_gateway(config: GatewayConfig) -> ModelGateway:
    """Instantiate the gateway for ``config.provider``."""
    if config.provider == "ollama":
        return OllamaGateway(config)
    if config.provider in ("openai", "openrouter"):
        return OpenAIGateway(config)
    if config.provider == "anthropic":
        return AnthropicGateway(config)
    raise ValueError(f"Unknown provider: {config.provider}")
