"""Tests for the brand & design extraction module."""

import json

import pytest
from unittest.mock import MagicMock

from promo_mailer.errors import ExtractionError, MalformedJsonError, ModelServiceError
from promo_mailer.extractor import (
    extract_product_design,
    build_extraction_prompt,
    strip_code_fence,
    EXTRACTION_SYSTEM_PROMPT,
    EXTRACTION_MAX_TOKENS,
    MAX_PROMPT_BODY_TEXT,
    MAX_STRUCTURED_DATA_CHARS,
)
from promo_mailer.models import ImageCandidate, ModelResponse, ScrapedSignals, UsageMetadata


SAMPLE_DESIGN = {
    "product": {"name": "Linen Shirt", "full_name": "Linen Shirt - Sand", "price": "$98.00"},
    "description": {"headline": "Breathe easy", "features": [{"label": "Fabric", "value": "100% linen"}]},
    "images": {"hero": "https://acme.com/hero.jpg", "additional": ["https://acme.com/a.jpg"]},
    "brand": {"name": "Acme Outfitters"},
    "brand_analysis": {"market_position": "Premium", "brand_personality": ["calm", "crafted"]},
    "design_decisions": {
        "overall_aesthetic": "coastal minimalism",
        "color_palette": {"primary_accent": "#C2A878", "text_primary": "#1A1A1A"},
        "layout": {"max_width": "600"},
        "spacing": "generous",
    },
    "copywriting_direction": {"voice_tone": "Warm and understated"},
}


def _signals(**overrides) -> ScrapedSignals:
    data = dict(
        source_url="https://acme.com/products/linen-shirt",
        title="Linen Shirt | Acme",
        meta_description="A breathable linen shirt.",
        og_title="Linen Shirt",
        og_image="https://acme.com/og.jpg",
        structured_data=[{"@type": "Product", "name": "Linen Shirt"}],
        images=[ImageCandidate(url="https://acme.com/hero.jpg", alt="Front")],
        body_text="Cut from European flax.",
    )
    data.update(overrides)
    return ScrapedSignals(**data)


def _client(text: str, usage=None) -> MagicMock:
    client = MagicMock()
    client.complete.return_value = ModelResponse(text=text, usage=usage)
    return client


class TestExtractProductDesign:
    def test_valid_json(self):
        client = _client(json.dumps(SAMPLE_DESIGN))
        design = extract_product_design(_signals(), client)

        assert design.product.name == "Linen Shirt"
        assert design.brand.name == "Acme Outfitters"
        assert design.design_decisions.color_palette.primary_accent == "#c2a878"
        assert design.design_decisions.layout.max_width == 600
        assert design.design_decisions.spacing == "generous"
        assert design.images.count == 2

    @pytest.mark.parametrize("fence", ["```json", "```"])
    def test_code_fenced_json(self, fence):
        client = _client(f"{fence}\n{json.dumps(SAMPLE_DESIGN)}\n```")
        design = extract_product_design(_signals(), client)
        assert design.product.price == "$98.00"

    def test_malformed_json(self):
        raw = '{"product": {"name": "Linen Shirt", '
        client = _client(raw)

        with pytest.raises(MalformedJsonError) as exc_info:
            extract_product_design(_signals(), client)

        assert exc_info.value.raw_text == raw
        assert raw not in str(exc_info.value)
        assert exc_info.value.user_message() == (
            "Failed to analyze brand: Failed to parse product data from AI response"
        )

    def test_malformed_json_is_extraction_error(self):
        with pytest.raises(ExtractionError):
            extract_product_design(_signals(), _client("Sorry, I can't help with that."))

    def test_missing_design_decisions(self):
        data = {k: v for k, v in SAMPLE_DESIGN.items() if k != "design_decisions"}
        client = _client(json.dumps(data))

        with pytest.raises(ExtractionError, match="design_decisions"):
            extract_product_design(_signals(), client)

    def test_null_product_section_rejected(self):
        data = dict(SAMPLE_DESIGN, product=None)
        with pytest.raises(ExtractionError, match="product"):
            extract_product_design(_signals(), _client(json.dumps(data)))

    def test_json_array_rejected(self):
        with pytest.raises(ExtractionError, match="not a JSON object"):
            extract_product_design(_signals(), _client("[1, 2, 3]"))

    def test_optional_sections_may_be_missing(self):
        data = {"product": {"name": "Mug"}, "design_decisions": {}}
        design = extract_product_design(_signals(), _client(json.dumps(data)))

        assert design.brand.name is None
        assert design.copywriting_direction.voice_tone is None

    def test_loose_optional_shapes_tolerated(self):
        data = json.loads(json.dumps(SAMPLE_DESIGN))
        data["images"]["additional"] = [{"url": "https://acme.com/a.jpg", "alt": "Side"}, None]
        data["design_decisions"]["mood"] = {"tone_words": [None, "calm"], "avoid": None}
        data["brand"]["tagline"] = ["Made slowly", "Worn often"]

        design = extract_product_design(_signals(), _client(json.dumps(data)))

        assert design.images.additional == ["https://acme.com/a.jpg"]
        assert design.design_decisions.mood.tone_words == ["calm"]
        assert design.brand.tagline is None
        assert design.brand.name == "Acme Outfitters"

    def test_model_service_failure(self):
        client = MagicMock()
        client.complete.side_effect = ModelServiceError("RateLimitError: slow down")

        with pytest.raises(ExtractionError) as exc_info:
            extract_product_design(_signals(), client)
        assert "RateLimitError" in str(exc_info.value)

    def test_usage_attached(self):
        usage = UsageMetadata(input_tokens=1200, output_tokens=800, estimated_cost_usd=0.0156)
        design = extract_product_design(_signals(), _client(json.dumps(SAMPLE_DESIGN), usage=usage))
        assert design.usage == usage

    def test_prompt_and_budget_passed(self):
        client = _client(json.dumps(SAMPLE_DESIGN))
        extract_product_design(_signals(), client)

        kwargs = client.complete.call_args.kwargs
        assert kwargs["system_prompt"] == EXTRACTION_SYSTEM_PROMPT
        assert kwargs["max_output_tokens"] == EXTRACTION_MAX_TOKENS
        assert "https://acme.com/products/linen-shirt" in kwargs["user_prompt"]


class TestBuildExtractionPrompt:
    def test_contains_signals(self):
        prompt = build_extraction_prompt(_signals())

        assert "Linen Shirt | Acme" in prompt
        assert "A breathable linen shirt." in prompt
        assert "https://acme.com/og.jpg" in prompt
        assert '"@type": "Product"' in prompt
        assert "1. https://acme.com/hero.jpg (alt: Front)" in prompt
        assert "Cut from European flax." in prompt

    def test_no_images(self):
        prompt = build_extraction_prompt(_signals(images=[]))
        assert "None found" in prompt

    def test_body_text_truncated(self):
        prompt = build_extraction_prompt(_signals(body_text="y" * (MAX_PROMPT_BODY_TEXT + 50)))
        assert "[content truncated]" in prompt
        assert "y" * (MAX_PROMPT_BODY_TEXT + 1) not in prompt

    def test_structured_data_truncated(self):
        blocks = [{"@type": "Product", "description": "z" * (MAX_STRUCTURED_DATA_CHARS + 100)}]
        prompt = build_extraction_prompt(_signals(structured_data=blocks))
        assert "[structured data truncated]" in prompt

    def test_short_inputs_not_truncated(self):
        prompt = build_extraction_prompt(_signals())
        assert "truncated]" not in prompt


class TestStripCodeFence:
    def test_plain_text_unchanged(self):
        assert strip_code_fence('  {"a": 1}  ') == '{"a": 1}'

    def test_json_fence(self):
        assert strip_code_fence('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_unclosed_fence(self):
        assert strip_code_fence('```\n{"a": 1}') == '{"a": 1}'
