"""Pydantic models for structured data throughout the pipeline."""

import logging
import math
import re
from typing import Any, Optional, get_origin

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError, field_validator, model_validator

logger = logging.getLogger(__name__)

_HEX_COLOR_RE = re.compile(r"#(?:[0-9a-fA-F]{6}|[0-9a-fA-F]{3})\b")
_INT_RE = re.compile(r"\d+")

MIN_LAYOUT_WIDTH = 320
MAX_LAYOUT_WIDTH = 800


# --- Scraped page ---

class ImageCandidate(BaseModel):
    """An image found on the product page."""
    url: str
    alt: str = ""


class ScrapedSignals(BaseModel):
    """Immutable snapshot of one fetched product page."""
    model_config = ConfigDict(frozen=True)

    source_url: str
    title: str = ""
    meta_description: str = ""
    og_image: str = ""
    og_title: str = ""
    structured_data: list[Any] = Field(default_factory=list)
    images: list[ImageCandidate] = Field(default_factory=list)
    body_text: str = ""


# --- Extracted product & design data ---

def _as_list(value) -> list:
    """Accept a bare value where the schema asks for a list."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _text_items(value) -> list[str]:
    """
    Coerce a model-supplied list to plain strings.

    Null items are dropped, objects contribute their url (or value/name),
    and anything else that is not text is skipped.
    """
    items = []
    for item in _as_list(value):
        if isinstance(item, dict):
            item = item.get("url") or item.get("value") or item.get("name")
        if isinstance(item, bool) or not isinstance(item, (str, int, float)):
            continue
        text = str(item).strip()
        if text:
            items.append(text)
    return items


def _is_section(annotation) -> bool:
    return get_origin(annotation) is None and isinstance(annotation, type) and issubclass(annotation, _Section)


class _Section(BaseModel):
    """Base for extraction sections: every field optional, unknown keys kept."""
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    @model_validator(mode="before")
    @classmethod
    def _drop_malformed_fields(cls, data):
        # Optional fields and nested sections in the wrong shape are treated
        # as absent rather than failing the whole document.
        if not isinstance(data, dict):
            return data
        cleaned = dict(data)
        for name, field in cls.model_fields.items():
            if name not in cleaned:
                continue
            value = cleaned[name]
            annotation = field.annotation
            if _is_section(annotation):
                if not isinstance(value, dict):
                    if value is not None:
                        logger.warning(f"Ignoring malformed '{name}' section: {type(value).__name__}")
                    del cleaned[name]
                    continue
                try:
                    cleaned[name] = annotation.model_validate(value)
                except ValidationError as e:
                    logger.warning(f"Ignoring malformed '{name}' section: {e.error_count()} invalid field(s)")
                    del cleaned[name]
            elif annotation == Optional[str] and isinstance(value, (dict, list, bool)):
                logger.warning(f"Ignoring non-text value for '{name}': {type(value).__name__}")
                del cleaned[name]
        return cleaned


class ProductInfo(_Section):
    name: Optional[str] = None
    variant: Optional[str] = None
    full_name: Optional[str] = None
    price: Optional[str] = None
    original_price: Optional[str] = None
    category: Optional[str] = None
    collection: Optional[str] = None
    url: Optional[str] = None


class ProductFeature(_Section):
    label: Optional[str] = None
    value: Optional[str] = None


class ProductDescription(_Section):
    headline: Optional[str] = None
    body: Optional[str] = None
    features: list[ProductFeature] = Field(default_factory=list)
    fit_note: Optional[str] = None
    care_instructions: Optional[str] = None

    @field_validator("features", mode="before")
    @classmethod
    def _plain_features(cls, value):
        return [
            {"value": item} if isinstance(item, str) else item
            for item in _as_list(value) if isinstance(item, (str, dict))
        ]


class ProductImages(_Section):
    hero: Optional[str] = None
    secondary: Optional[str] = None
    additional: list[str] = Field(default_factory=list)

    @field_validator("additional", mode="before")
    @classmethod
    def _additional_list(cls, value):
        return _text_items(value)

    @property
    def count(self) -> int:
        return sum(1 for url in (self.hero, self.secondary) if url) + len(self.additional)


class BrandInfo(_Section):
    name: Optional[str] = None
    short_name: Optional[str] = None
    tagline: Optional[str] = None
    origin: Optional[str] = None
    logo_url: Optional[str] = None
    website: Optional[str] = None


class Promotions(_Section):
    free_shipping_threshold: Optional[str] = None
    current_sale: Optional[str] = None
    loyalty_program: Optional[str] = None


class MatchingProducts(_Section):
    name: Optional[str] = None
    url: Optional[str] = None


class BrandAnalysis(_Section):
    market_position: Optional[str] = None
    target_demographic: Optional[str] = None
    brand_personality: list[str] = Field(default_factory=list)
    visual_identity_notes: Optional[str] = None
    competitor_comparison: Optional[str] = None

    @field_validator("brand_personality", mode="before")
    @classmethod
    def _personality_list(cls, value):
        return _text_items(value)


class ColorPalette(_Section):
    primary_accent: Optional[str] = None
    secondary_accent: Optional[str] = None
    background_main: Optional[str] = None
    background_alt: Optional[str] = None
    text_primary: Optional[str] = None
    text_secondary: Optional[str] = None
    text_on_dark: Optional[str] = None
    button_bg: Optional[str] = None
    button_text: Optional[str] = None
    border_color: Optional[str] = None

    @field_validator("*", mode="before")
    @classmethod
    def _hex_color(cls, value, info):
        # Models often answer "#1a1a1a - main text"; keep the code only.
        if value is None:
            return None
        match = _HEX_COLOR_RE.search(str(value))
        if not match:
            logger.warning(f"Dropping invalid color for {info.field_name}: {value!r}")
            return None
        return match.group(0).lower()


class Typography(_Section):
    headline_font: Optional[str] = None
    headline_style: Optional[str] = None
    headline_weight: Optional[str] = None
    headline_case: Optional[str] = None
    headline_letter_spacing: Optional[str] = None
    body_font: Optional[str] = None
    body_weight: Optional[str] = None
    body_line_height: Optional[str] = None
    accent_font: Optional[str] = None
    accent_style: Optional[str] = None
    accent_letter_spacing: Optional[str] = None


class Layout(_Section):
    max_width: Optional[int] = None
    padding_outer: Optional[str] = None
    padding_sections: Optional[str] = None
    alignment: Optional[str] = None
    image_style: Optional[str] = None
    section_dividers: Optional[str] = None

    @field_validator("max_width", mode="before")
    @classmethod
    def _bounded_width(cls, value):
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            if isinstance(value, float) and not math.isfinite(value):
                logger.warning(f"Ignoring non-finite layout width: {value!r}")
                return None
            width = int(value)
        else:
            match = _INT_RE.search(str(value))
            if not match:
                logger.warning(f"Ignoring unparseable layout width: {value!r}")
                return None
            width = int(match.group(0))
        return max(MIN_LAYOUT_WIDTH, min(MAX_LAYOUT_WIDTH, width))


class ButtonStyle(_Section):
    style: Optional[str] = None
    shape: Optional[str] = None
    border_radius: Optional[str] = None
    padding: Optional[str] = None
    text_case: Optional[str] = None
    letter_spacing: Optional[str] = None


class Mood(_Section):
    tone_words: list[str] = Field(default_factory=list)
    avoid: list[str] = Field(default_factory=list)

    @field_validator("tone_words", "avoid", mode="before")
    @classmethod
    def _mood_lists(cls, value):
        return _text_items(value)


class DesignDecisions(_Section):
    overall_aesthetic: Optional[str] = None
    color_palette: ColorPalette = Field(default_factory=ColorPalette)
    typography: Typography = Field(default_factory=Typography)
    layout: Layout = Field(default_factory=Layout)
    buttons: ButtonStyle = Field(default_factory=ButtonStyle)
    spacing: Any = None  # the model answers with either a keyword or an object
    mood: Mood = Field(default_factory=Mood)


class CopywritingDirection(_Section):
    headline_approach: Optional[str] = None
    voice_tone: Optional[str] = None
    vocabulary_level: Optional[str] = None
    cta_style: Optional[str] = None
    sample_headline: Optional[str] = None
    sample_preheader: Optional[str] = None


class UsageMetadata(BaseModel):
    """Token usage for one or more model calls."""
    input_tokens: int = 0
    output_tokens: int = 0
    estimated_cost_usd: Optional[float] = None

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: "UsageMetadata") -> "UsageMetadata":
        if self.estimated_cost_usd is None and other.estimated_cost_usd is None:
            cost = None
        else:
            cost = (self.estimated_cost_usd or 0.0) + (other.estimated_cost_usd or 0.0)
        return UsageMetadata(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            estimated_cost_usd=cost,
        )


class ExtractedProductDesign(_Section):
    """Structured product, brand and design data returned by the extraction call."""
    product: ProductInfo = Field(default_factory=ProductInfo)
    description: ProductDescription = Field(default_factory=ProductDescription)
    images: ProductImages = Field(default_factory=ProductImages)
    brand: BrandInfo = Field(default_factory=BrandInfo)
    promotions: Promotions = Field(default_factory=Promotions)
    matching_products: MatchingProducts = Field(default_factory=MatchingProducts)
    brand_analysis: BrandAnalysis = Field(default_factory=BrandAnalysis)
    design_decisions: DesignDecisions = Field(default_factory=DesignDecisions)
    copywriting_direction: CopywritingDirection = Field(default_factory=CopywritingDirection)

    _usage: Optional[UsageMetadata] = PrivateAttr(default=None)

    @property
    def usage(self) -> Optional[UsageMetadata]:
        return self._usage

    def section_dump(self, name: str) -> dict:
        """Serialize one top-level section, omitting unset fields."""
        return getattr(self, name).model_dump(exclude_none=True)


# --- Model service ---

class ModelResponse(BaseModel):
    """Text returned by one model call, with optional usage accounting."""
    text: str
    usage: Optional[UsageMetadata] = None


# --- Generated output ---

class GeneratedEmailDocument(BaseModel):
    """One rendered email parsed out of the generation response."""
    sequence_index: int
    style_label: str
    html: str

    @property
    def filename(self) -> str:
        slug = re.sub(r"[^a-z0-9]+", "-", self.style_label.lower()).strip("-")
        return f"email-{self.sequence_index}-{slug or 'style'}.html"


class ProductSummary(BaseModel):
    """Lightweight product metadata shown next to the generated emails."""
    name: Optional[str] = None
    price: Optional[str] = None
    brand: Optional[str] = None
    image_count: int = 0

    @classmethod
    def from_design(cls, design: ExtractedProductDesign) -> "ProductSummary":
        return cls(
            name=design.product.full_name or design.product.name,
            price=design.product.price,
            brand=design.brand.name,
            image_count=design.images.count,
        )


class GenerationRequest(BaseModel):
    """Inbound request for a batch of emails."""
    product_url: str
    email_count: int = Field(default=1, ge=1, le=4)
    promotion: Optional[str] = None

    @field_validator("product_url")
    @classmethod
    def _normalize_url(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Product URL is required")
        if not value.startswith(("http://", "https://")):
            value = "https://" + value
        return value

    @field_validator("promotion")
    @classmethod
    def _blank_promotion(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None
