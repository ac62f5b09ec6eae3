"""Tests for context-window lookup, token estimation and history budgeting."""

import pytest

from chatgateway.services.token_budget import (
    DEFAULT_CONTEXT_WINDOW,
    calculate_max_messages,
    context_window_size,
    estimate_tokens,
)


# =============================================================================
# Tests: context_window_size()
# =============================================================================


class TestContextWindowSize:
    @pytest.mark.parametrize(
        "model,expected",
        [
            ("gpt-4o-mini", 128_000),
            ("GPT-4o", 128_000),
            ("gpt-4", 8_192),
            ("gpt-4-32k", 32_768),
            ("gpt-4-turbo-preview", 128_000),
            ("gpt-3.5-turbo-16k", 16_384),
            ("gpt-3.5-turbo", 4_096),
            ("o1-mini", 128_000),
            ("o1-preview", 200_000),
            ("claude-2.1", 100_000),
            ("claude-sonnet-4-5-20250929", 200_000),
            ("deepseek-chat", 128_000),
            ("gemini-1.5-pro", 1_000_000),
            ("qwen-plus-1m", 1_000_000),
            ("qwen-max", 32_000),
            ("mixtral-8x7b", 32_768),
        ],
    )
    def test_known_models(self, model, expected):
        assert context_window_size(model) == expected

    def test_unknown_model_uses_default(self):
        assert context_window_size("my-local-model") == DEFAULT_CONTEXT_WINDOW == 8192

    def test_overrides_checked_first(self):
        assert context_window_size("gpt-4o-mini", overrides={"GPT-4O": 64_000}) == 64_000

    def test_override_without_match_falls_through(self):
        assert context_window_size("gpt-4o", overrides={"mistral": 1}) == 128_000


# =============================================================================
# Tests: estimate_tokens()
# =============================================================================


class TestEstimateTokens:
    def test_cjk_characters(self):
        assert estimate_tokens("你好世界") == 6

    def test_ascii_characters(self):
        assert estimate_tokens("abcdefgh") == 2

    def test_partial_tokens_round_up(self):
        assert estimate_tokens("abcde") == 2

    def test_mixed_text(self):
        # 2 CJK (3.0) + 4 other (1.0)
        assert estimate_tokens("你好 abc") == 4

    def test_minimum_one_token(self):
        assert estimate_tokens("") == 1
        assert estimate_tokens("a") == 1


# =============================================================================
# Tests: calculate_max_messages()
# =============================================================================


class TestCalculateMaxMessages:
    def test_within_budget_keeps_everything(self):
        decision = calculate_max_messages("gpt-4o", "short history", 100)

        assert decision.allowed_count == 100
        assert decision.truncated is False
        assert decision.reason is None

    def test_over_budget_truncates(self):
        # 800k ASCII chars ~ 200k tokens; 400 tokens/message; 102400 budget
        decision = calculate_max_messages("gpt-4o-mini", "a" * 800_000, 500)

        assert decision.truncated is True
        assert decision.allowed_count == 256
        assert decision.reason == (
            "Context size exceeded, only fetched 256 messages (model context: 128000 tokens)"
        )

    def test_never_allows_zero(self):
        # One enormous message is still passed through
        decision = calculate_max_messages("gpt-4", "a" * 400_000, 1)

        assert decision.truncated is True
        assert decision.allowed_count == 1

    def test_zero_requested_count(self):
        decision = calculate_max_messages("gpt-4", "a" * 400_000, 0)

        assert decision.truncated is True
        assert decision.allowed_count == 1

    def test_allowed_never_exceeds_requested(self):
        for count in (1, 10, 300, 3000):
            decision = calculate_max_messages("gpt-3.5-turbo", "x" * 50_000, count)
            assert 1 <= decision.allowed_count <= max(count, 1)

    def test_more_text_never_allows_more_messages(self):
        previous = None
        for size in (10_000, 50_000, 100_000, 500_000, 1_000_000):
            decision = calculate_max_messages("gpt-4", "x" * size, 200)
            if previous is not None:
                assert decision.allowed_count <= previous
            previous = decision.allowed_count

    def test_custom_usage_ratio_and_override(self):
        decision = calculate_max_messages(
            "house-model", "a" * 4_000, 10, usage_ratio=0.5, overrides={"house": 1_000}
        )

        # 1000 tokens, 100/message, budget 500
        assert decision.truncated is True
        assert decision.allowed_count == 5
