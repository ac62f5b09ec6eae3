"""Per-provider request bodies, headers and response shapes.

Two wire formats cover every supported provider: the OpenAI chat-completions
format (also used for custom, OpenAI-compatible endpoints) and the Anthropic
messages format. ``wire_format_for`` picks one once per provider config.
"""

from typing import Any, Protocol

from chatgateway.models.schemas import ChatMessage, ProviderConfig, ProviderKind, Role

ANTHROPIC_VERSION = "2023-06-01"
ANTHROPIC_MAX_TOKENS = 4096


class WireFormat(Protocol):
    def build_request(
        self, config: ProviderConfig, messages: list[ChatMessage], stream: bool
    ) -> dict[str, Any]: ...

    def auth_headers(self, config: ProviderConfig) -> dict[str, str]: ...

    def extract_delta(self, event: dict[str, Any]) -> str | None: ...

    def extract_full_content(self, body: dict[str, Any]) -> str | None: ...


class OpenAIWireFormat:
    def build_request(
        self, config: ProviderConfig, messages: list[ChatMessage], stream: bool
    ) -> dict[str, Any]:
        return {
            "model": config.model,
            "messages": [{"role": m.role.value, "content": m.content} for m in messages],
            "stream": stream,
        }

    def auth_headers(self, config: ProviderConfig) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {config.api_key.get_secret_value()}",
            "Content-Type": "application/json",
        }

    def extract_delta(self, event: dict[str, Any]) -> str | None:
        """``choices[0].delta.content``"""
        try:
            content = event["choices"][0]["delta"]["content"]
        except (KeyError, IndexError, TypeError):
            return None
        return content if isinstance(content, str) else None

    def extract_full_content(self, body: dict[str, Any]) -> str | None:
        """``choices[0].message.content``"""
        try:
            content = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            return None
        return content if isinstance(content, str) else None


class AnthropicWireFormat:
    def build_request(
        self, config: ProviderConfig, messages: list[ChatMessage], stream: bool
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": config.model,
            "messages": [
                {"role": m.role.value, "content": m.content}
                for m in messages
                if m.role != Role.SYSTEM
            ],
            "max_tokens": ANTHROPIC_MAX_TOKENS,
            "stream": stream,
        }

        # The messages API takes the system prompt as a top-level field
        system = next((m for m in messages if m.role == Role.SYSTEM), None)
        if system is not None:
            body["system"] = system.content
        return body

    def auth_headers(self, config: ProviderConfig) -> dict[str, str]:
        return {
            "x-api-key": config.api_key.get_secret_value(),
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }

    def extract_delta(self, event: dict[str, Any]) -> str | None:
        if event.get("type") != "content_block_delta":
            return None
        delta = event.get("delta")
        if not isinstance(delta, dict):
            return None
        text = delta.get("text")
        return text if isinstance(text, str) else None

    def extract_full_content(self, body: dict[str, Any]) -> str | None:
        """``content[0].text``"""
        try:
            text = body["content"][0]["text"]
        except (KeyError, IndexError, TypeError):
            return None
        return text if isinstance(text, str) else None


_OPENAI = OpenAIWireFormat()
_ANTHROPIC = AnthropicWireFormat()

WIRE_FORMATS: dict[ProviderKind, WireFormat] = {
    ProviderKind.OPENAI: _OPENAI,
    ProviderKind.ANTHROPIC: _ANTHROPIC,
    ProviderKind.CUSTOM: _OPENAI,
}


def wire_format_for(provider: ProviderKind) -> WireFormat:
    return WIRE_FORMATS[provider]


def parse_error_message(body: Any) -> str | None:
    """Pull ``error.message`` out of a provider error envelope."""
    if not isinstance(body, dict):
        return None
    error = body.get("error")
    if not isinstance(error, dict):
        return None
    message = error.get("message")
    return message if isinstance(message, str) else None
