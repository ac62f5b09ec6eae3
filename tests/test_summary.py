"""Tests for the summary pipeline: history lines, budgeting and prompt assembly."""

from datetime import datetime, timedelta

import httpx

from chatgateway.config import Settings
from chatgateway.models.events import Completed, ContentDelta
from chatgateway.models.schemas import HistoryMessage, ProviderConfig, Role
from chatgateway.prompts.summary_system import SUMMARY_SYSTEM_PROMPT
from chatgateway.services.llm import CompletionClient
from chatgateway.services.summary import (
    build_summary_messages,
    extract_token_addresses,
    format_history_line,
    summarize,
)

from conftest import EVM_ADDRESS, SOLANA_ADDRESS, mock_client, openai_delta, sse

START = datetime(2025, 1, 22, 12, 5)


def make_history(count: int, text: str = "gm") -> list[HistoryMessage]:
    return [
        HistoryMessage(
            message_id=i + 1,
            author=f"user{i % 3}",
            timestamp=START + timedelta(minutes=i),
            text=text,
        )
        for i in range(count)
    ]


class FakeHistorySource:
    def __init__(self, messages: list[HistoryMessage]):
        self.messages = messages
        self.calls: list[tuple[str, int]] = []

    async def recent_messages(self, conversation_id: str, limit: int) -> list[HistoryMessage]:
        self.calls.append((conversation_id, limit))
        return self.messages[-limit:]


# =============================================================================
# Tests: format_history_line()
# =============================================================================


def test_format_history_line():
    message = HistoryMessage(message_id=12345, author="Alice", timestamp=START, text="this looks good")

    assert format_history_line(message) == "[id:12345][2025-01-22 12:05] Alice: this looks good"


# =============================================================================
# Tests: build_summary_messages()
# =============================================================================


class TestBuildSummaryMessages:
    def test_fits_in_context(self, settings, openai_config):
        history = make_history(3)

        request = build_summary_messages(history, openai_config, settings)

        assert request.included_count == request.total_count == 3
        assert request.decision.truncated is False
        system, user = request.messages
        assert system.role == Role.SYSTEM
        assert system.content == SUMMARY_SYSTEM_PROMPT
        assert user.role == Role.USER
        assert user.content == (
            "Here are the chat messages to summarize (3 messages):\n\n"
            + "\n".join(format_history_line(m) for m in history)
        )

    def test_configured_prompts(self, openai_config):
        settings = Settings(
            _env_file=None,
            summary_system_prompt="Be brief.",
            summary_user_prompt="Focus on trading.",
        )

        request = build_summary_messages(make_history(2), openai_config, settings)

        assert request.messages[0].content == "Be brief."
        assert request.messages[1].content.startswith(
            "Focus on trading.\n\nHere are the chat messages to summarize (2 messages):"
        )

    def test_truncation_keeps_newest_lines(self, settings):
        config = ProviderConfig(api_key="sk", model="gpt-4", enabled=True)
        history = make_history(500, text="x" * 400)

        request = build_summary_messages(history, config, settings)

        kept = request.included_count
        assert request.decision.truncated is True
        assert kept == request.decision.allowed_count
        assert 1 <= kept < 500
        assert request.total_count == 500

        user = request.messages[1].content
        assert user.startswith(
            f"Note: Due to context size limit, only the latest {kept} messages "
            f"are included (total: 500).\n\n"
            f"Here are the chat messages to summarize ({kept} messages):\n\n"
        )
        assert format_history_line(history[-1]) in user
        assert format_history_line(history[-kept]) in user
        assert f"[id:{history[-kept - 1].message_id}]" not in user

    def test_context_window_override(self, openai_config):
        settings = Settings(_env_file=None, context_window_overrides={"gpt-4o-mini": 100})

        request = build_summary_messages(make_history(50, text="y" * 40), openai_config, settings)

        assert request.decision.truncated is True
        assert request.decision.reason.endswith("(model context: 100 tokens)")


# =============================================================================
# Tests: summarize()
# =============================================================================


class TestSummarize:
    async def test_empty_history(self, settings, openai_config):
        source = FakeHistorySource([])

        assert await summarize(source, "chat-1", CompletionClient(openai_config), settings) is None
        assert source.calls == [("chat-1", settings.summary_message_count)]

    async def test_streams_summary(self, settings, openai_config):
        source = FakeHistorySource(make_history(5))
        seen: list[httpx.Request] = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, content=b"".join(sse(openai_delta("Title"), "[DONE]")))

        async with mock_client(handler) as http:
            client = CompletionClient(openai_config, http_client=http)
            events = await summarize(source, "chat-1", client, settings)
            received = [event async for event in events]

        assert received == [ContentDelta("Title"), ContentDelta(""), Completed()]
        assert len(seen) == 1
        assert b"summarize (5 messages)" in seen[0].content


# =============================================================================
# Tests: extract_token_addresses()
# =============================================================================


class TestExtractTokenAddresses:
    def test_unique_valid_in_order(self):
        text = (
            f"Topic <token>{SOLANA_ADDRESS}</token> then <token> {EVM_ADDRESS} </token>, "
            f"again <token>{EVM_ADDRESS.lower()}</token> and <token>0x12...ab</token>"
        )

        assert extract_token_addresses(text) == [SOLANA_ADDRESS, EVM_ADDRESS]

    def test_no_tags(self):
        assert extract_token_addresses(f"plain {EVM_ADDRESS}") == []
