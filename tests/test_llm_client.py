"""Tests for the model service client."""

import anthropic
import pytest
from unittest.mock import patch, MagicMock

from promo_mailer.errors import ModelServiceError
from promo_mailer.llm_client import AnthropicModelClient, estimate_cost, DEFAULT_TIMEOUT


def _message(*blocks, input_tokens=1000, output_tokens=2000):
    message = MagicMock()
    message.content = list(blocks)
    message.usage = MagicMock(input_tokens=input_tokens, output_tokens=output_tokens)
    return message


def _text_block(text: str):
    return MagicMock(type="text", text=text)


def _rate_limit_error():
    return anthropic.RateLimitError(
        message="rate limited",
        response=MagicMock(status_code=429, headers={}),
        body=None,
    )


class TestEstimateCost:
    def test_known_model(self):
        assert estimate_cost("claude-sonnet-4-20250514", 1000, 2000) == pytest.approx(0.033)

    def test_unknown_model(self):
        assert estimate_cost("some-other-model", 1000, 2000) is None

    def test_longest_prefix_wins(self):
        # claude-opus-4-5 is cheaper than the claude-opus-4 family rate
        assert estimate_cost("claude-opus-4-5-20251101", 1_000_000, 0) == pytest.approx(5.0)
        assert estimate_cost("claude-opus-4-1-20250805", 1_000_000, 0) == pytest.approx(15.0)


class TestAnthropicModelClient:
    @patch("promo_mailer.llm_client.anthropic.Anthropic")
    def test_constructor_disables_sdk_retries(self, mock_anthropic):
        AnthropicModelClient(api_key="test-key")
        mock_anthropic.assert_called_once_with(api_key="test-key", timeout=DEFAULT_TIMEOUT, max_retries=0)

    @patch("promo_mailer.llm_client.anthropic.Anthropic")
    def test_joins_text_blocks_with_newlines(self, mock_anthropic):
        mock_anthropic.return_value.messages.create.return_value = _message(
            _text_block("<!DOCTYPE html>"),
            MagicMock(type="tool_use", text="ignored"),
            _text_block("<html></html>"),
        )
        client = AnthropicModelClient(api_key="test-key", model="claude-sonnet-4-20250514")

        response = client.complete("Write an email")

        assert response.text == "<!DOCTYPE html>\n<html></html>"
        assert response.usage.input_tokens == 1000
        assert response.usage.output_tokens == 2000
        assert response.usage.estimated_cost_usd == pytest.approx(0.033)

    @patch("promo_mailer.llm_client.anthropic.Anthropic")
    def test_request_shape(self, mock_anthropic):
        create = mock_anthropic.return_value.messages.create
        create.return_value = _message(_text_block("ok"))
        client = AnthropicModelClient(api_key="test-key", model="claude-haiku-4-5")

        client.complete("User turn", system_prompt="Be brief", max_output_tokens=500)

        kwargs = create.call_args.kwargs
        assert kwargs["model"] == "claude-haiku-4-5"
        assert kwargs["max_tokens"] == 500
        assert kwargs["system"] == "Be brief"
        assert kwargs["messages"] == [{"role": "user", "content": "User turn"}]

    @patch("promo_mailer.llm_client.anthropic.Anthropic")
    def test_system_prompt_omitted_when_none(self, mock_anthropic):
        create = mock_anthropic.return_value.messages.create
        create.return_value = _message(_text_block("ok"))

        AnthropicModelClient(api_key="test-key").complete("User turn")

        assert "system" not in create.call_args.kwargs

    @patch("promo_mailer.llm_client.time.sleep")
    @patch("promo_mailer.llm_client.anthropic.Anthropic")
    def test_retries_transient_errors(self, mock_anthropic, mock_sleep):
        create = mock_anthropic.return_value.messages.create
        create.side_effect = [_rate_limit_error(), _message(_text_block("ok"))]

        response = AnthropicModelClient(api_key="test-key").complete("User turn")

        assert response.text == "ok"
        assert create.call_count == 2
        mock_sleep.assert_called_once_with(2)

    @patch("promo_mailer.llm_client.time.sleep")
    @patch("promo_mailer.llm_client.anthropic.Anthropic")
    def test_retries_exhausted(self, mock_anthropic, mock_sleep):
        create = mock_anthropic.return_value.messages.create
        create.side_effect = _rate_limit_error()

        with pytest.raises(ModelServiceError, match="RateLimitError"):
            AnthropicModelClient(api_key="test-key", max_retries=3).complete("User turn")
        assert create.call_count == 3

    @patch("promo_mailer.llm_client.time.sleep")
    @patch("promo_mailer.llm_client.anthropic.Anthropic")
    def test_bad_request_not_retried(self, mock_anthropic, mock_sleep):
        create = mock_anthropic.return_value.messages.create
        create.side_effect = anthropic.BadRequestError(
            message="invalid model",
            response=MagicMock(status_code=400, headers={}),
            body=None,
        )

        with pytest.raises(ModelServiceError, match="BadRequestError"):
            AnthropicModelClient(api_key="test-key").complete("User turn")
        assert create.call_count == 1
        mock_sleep.assert_not_called()

    @patch("promo_mailer.llm_client.anthropic.Anthropic")
    def test_unknown_model_has_no_cost(self, mock_anthropic):
        mock_anthropic.return_value.messages.create.return_value = _message(_text_block("ok"))
        client = AnthropicModelClient(api_key="test-key", model="custom-model")

        response = client.complete("User turn")

        assert response.usage.total_tokens == 3000
        assert response.usage.estimated_cost_usd is None
