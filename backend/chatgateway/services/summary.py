"""Chat summaries: history formatting, context budgeting and prompt assembly.

Glues the budget calculator and the completion client together the way the
host application uses them: fetch recent history, keep as many of the newest
messages as the model's context allows, and stream a summary.
"""

import logging
import re
from dataclasses import dataclass
from typing import Protocol

from chatgateway.config import Settings
from chatgateway.models.schemas import (
    BudgetDecision,
    ChatMessage,
    HistoryMessage,
    ProviderConfig,
    Role,
    is_valid_token_address,
)
from chatgateway.prompts.summary_system import SUMMARY_SYSTEM_PROMPT
from chatgateway.services.llm import CompletionClient, CompletionStream
from chatgateway.services.token_budget import calculate_max_messages

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M"

_TOKEN_TAG_RE = re.compile(r"<token>\s*(.*?)\s*</token>", re.DOTALL)


class ChatHistorySource(Protocol):
    async def recent_messages(self, conversation_id: str, limit: int) -> list[HistoryMessage]:
        """Most recent ``limit`` messages, oldest first."""
        ...


@dataclass
class SummaryRequest:
    """Messages ready for the completion client plus what was kept."""
    messages: list[ChatMessage]
    included_count: int
    total_count: int
    decision: BudgetDecision


def format_history_line(message: HistoryMessage) -> str:
    timestamp = message.timestamp.strftime(TIMESTAMP_FORMAT)
    return f"[id:{message.message_id}][{timestamp}] {message.author}: {message.text}"


def build_summary_messages(
    history: list[HistoryMessage],
    config: ProviderConfig,
    settings: Settings,
) -> SummaryRequest:
    """Budget the history for ``config.model`` and build system + user messages.

    ``history`` must be oldest first; truncation drops the oldest lines.
    """
    lines = [format_history_line(m) for m in history]
    decision = calculate_max_messages(
        config.model,
        "\n".join(lines),
        len(lines),
        usage_ratio=settings.context_usage_ratio,
        overrides=settings.context_window_overrides,
    )
    if decision.truncated:
        lines = lines[-decision.allowed_count:]

    user_prompt = ""
    if settings.summary_user_prompt:
        user_prompt = settings.summary_user_prompt + "\n\n"
    if len(lines) < len(history):
        user_prompt += (
            f"Note: Due to context size limit, only the latest {len(lines)} messages "
            f"are included (total: {len(history)}).\n\n"
        )
    user_prompt += (
        f"Here are the chat messages to summarize ({len(lines)} messages):\n\n"
        + "\n".join(lines)
    )

    return SummaryRequest(
        messages=[
            ChatMessage(role=Role.SYSTEM, content=settings.summary_system_prompt or SUMMARY_SYSTEM_PROMPT),
            ChatMessage(role=Role.USER, content=user_prompt),
        ],
        included_count=len(lines),
        total_count=len(history),
        decision=decision,
    )


async def summarize(
    source: ChatHistorySource,
    conversation_id: str,
    client: CompletionClient,
    settings: Settings,
) -> CompletionStream | None:
    """Fetch recent history and start streaming its summary.

    Returns None when the conversation has no messages.
    """
    history = await source.recent_messages(conversation_id, settings.summary_message_count)
    if not history:
        logger.info("No messages to summarize for %s", conversation_id)
        return None

    request = build_summary_messages(history, client.config, settings)
    logger.info(
        "Summarizing %d/%d messages with %s",
        request.included_count, request.total_count, client.config.model,
    )
    return client.stream(request.messages)


def extract_token_addresses(text: str) -> list[str]:
    """Addresses wrapped in <token> tags, deduplicated in order of appearance."""
    seen: dict[str, str] = {}
    for match in _TOKEN_TAG_RE.finditer(text):
        address = match.group(1)
        if is_valid_token_address(address):
            seen.setdefault(address.lower(), address)
    return list(seen.values())
