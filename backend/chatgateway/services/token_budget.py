"""Token estimation and history budgeting for summary requests.

Uses a character-based heuristic rather than a tokenizer:
CJK ideographs ≈ 1.5 tokens each, everything else ≈ 0.25 tokens (4 chars/token).
Only a fraction of the model's context window (80% by default) is spent on
history, leaving room for the prompt and the generated answer.
"""

import logging
import math
import re
from dataclasses import dataclass

from chatgateway.models.schemas import BudgetDecision

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT_WINDOW = 8_192
CONTEXT_USAGE_RATIO = 0.8

_CJK_TOKENS_PER_CHAR = 1.5
_OTHER_TOKENS_PER_CHAR = 0.25
_CJK_RE = re.compile(r"[\u4e00-\u9fff]")


@dataclass(frozen=True)
class ContextWindowRule:
    """Matches when every needle is a substring of the lower-cased model id."""
    needles: tuple[str, ...]
    tokens: int

    def matches(self, model: str) -> bool:
        return all(needle in model for needle in self.needles)


def _rules(*entries: tuple[tuple[str, ...], int]) -> tuple[ContextWindowRule, ...]:
    return tuple(ContextWindowRule(needles, tokens) for needles, tokens in entries)


# Ordered most specific first: the first matching rule wins.
CONTEXT_WINDOW_RULES: tuple[ContextWindowRule, ...] = _rules(
    # OpenAI
    (("gpt-5",), 400_000),
    (("gpt5",), 400_000),
    (("o1-mini",), 128_000),
    (("o1",), 200_000),
    (("o3",), 200_000),
    (("gpt-4o",), 128_000),
    (("gpt4o",), 128_000),
    (("gpt-4-turbo",), 128_000),
    (("gpt4-turbo",), 128_000),
    (("gpt-4-32k",), 32_768),
    (("gpt4-32k",), 32_768),
    (("gpt-4",), 8_192),
    (("gpt4",), 8_192),
    (("gpt-3.5-turbo-16k",), 16_384),
    (("gpt3.5-turbo-16k",), 16_384),
    (("gpt-3.5",), 4_096),
    (("gpt3.5",), 4_096),
    # Anthropic
    (("claude-2",), 100_000),
    (("claude2",), 100_000),
    (("claude",), 200_000),
    # DeepSeek
    (("deepseek",), 128_000),
    # Google
    (("gemini-2",), 1_000_000),
    (("gemini2",), 1_000_000),
    (("gemini-1.5",), 1_000_000),
    (("gemini1.5",), 1_000_000),
    (("gemini",), 128_000),
    # Qwen
    (("qwen", "1m"), 1_000_000),
    (("qwq",), 131_072),
    (("qwen2.5-turbo",), 1_000_000),
    (("qwen-long",), 1_000_000),
    (("qwen-turbo",), 1_000_000),
    (("qwen2",), 128_000),
    (("qwen-2",), 128_000),
    (("qwen",), 32_000),
    # Meta
    (("llama-3",), 128_000),
    (("llama3",), 128_000),
    (("llama-2",), 4_096),
    (("llama2",), 4_096),
    (("llama",), 8_192),
    # Mistral
    (("mistral-large",), 128_000),
    (("mixtral",), 32_768),
    (("mistral",), 32_768),
    # Others
    (("yi-",), 200_000),
    (("command-r",), 128_000),
)


def context_window_size(
    model: str,
    overrides: dict[str, int] | None = None,
    rules: tuple[ContextWindowRule, ...] = CONTEXT_WINDOW_RULES,
) -> int:
    """Return the context window (in tokens) for a model identifier.

    ``overrides`` maps extra substrings to window sizes and is checked
    before the built-in table.
    """
    model_lower = model.lower()

    for needle, tokens in (overrides or {}).items():
        if needle.lower() in model_lower:
            return tokens

    for rule in rules:
        if rule.matches(model_lower):
            return rule.tokens

    return DEFAULT_CONTEXT_WINDOW


def estimate_tokens(text: str) -> int:
    """Estimate token count from text using the CJK-aware character heuristic."""
    cjk_count = len(_CJK_RE.findall(text))
    other_count = len(text) - cjk_count
    estimated = math.ceil(cjk_count * _CJK_TOKENS_PER_CHAR + other_count * _OTHER_TOKENS_PER_CHAR)
    return max(estimated, 1)


def calculate_max_messages(
    model: str,
    full_text: str,
    requested_count: int,
    usage_ratio: float = CONTEXT_USAGE_RATIO,
    overrides: dict[str, int] | None = None,
) -> BudgetDecision:
    """Decide how many of the most recent messages fit the model's budget.

    ``full_text`` is the rendered text of all ``requested_count`` messages.
    Never raises and, once truncating, always allows at least one message.
    """
    window = context_window_size(model, overrides)
    budget = window * usage_ratio
    estimated = estimate_tokens(full_text)

    if estimated <= budget:
        return BudgetDecision(allowed_count=requested_count, truncated=False)

    tokens_per_message = max(1, estimated // max(1, requested_count))
    max_messages = math.floor(budget / tokens_per_message)
    allowed = max(1, min(max_messages, requested_count))

    logger.info(
        "History over budget for %s: ~%d tokens > %d, keeping %d/%d messages",
        model, estimated, int(budget), allowed, requested_count,
    )
    return BudgetDecision(
        allowed_count=allowed,
        truncated=True,
        reason=(
            f"Context size exceeded, only fetched {allowed} messages "
            f"(model context: {window} tokens)"
        ),
    )
