"""
Brand & Design Extraction Module
Uses Claude to turn scraped product page signals into structured product,
brand and design-decision data. This is the first of the two model calls;
every visual choice for the email is made here.
"""

import json
import logging

from pydantic import ValidationError

from promo_mailer.errors import ExtractionError, MalformedJsonError, ModelServiceError
from promo_mailer.models import ExtractedProductDesign, ScrapedSignals

logger = logging.getLogger(__name__)

EXTRACTION_MAX_TOKENS = 5000
MAX_PROMPT_BODY_TEXT = 6000
MAX_STRUCTURED_DATA_CHARS = 8000

# Sections the generation stage cannot do without
REQUIRED_SECTIONS = ("product", "design_decisions")

EXTRACTION_SYSTEM_PROMPT = """You are a brand analyst and creative director. Your job is to:
1. Extract all product and brand data from the page
2. Analyze the brand's visual identity, voice, and positioning
3. Make specific design decisions for an email that perfectly matches THIS brand

## CRITICAL RULES
- Every design decision must be derived from analyzing THIS specific brand
- Do not use generic defaults - study the brand's aesthetic carefully
- The email should feel like it came from the brand's own marketing team

## OUTPUT FORMAT
Return ONLY valid JSON (no markdown, no explanation). Use this exact structure:

{
  "product": {
    "name": "Product Name",
    "variant": "Color/Size/Style if applicable",
    "full_name": "Complete product name with variant",
    "price": "$XX.XX",
    "original_price": "$XX.XX or null if no sale",
    "category": "Product category",
    "collection": "Collection name if mentioned",
    "url": "Full product URL"
  },
  "description": {
    "headline": "Compelling one-liner from/about the product",
    "body": "Main product description",
    "features": [{"label": "Feature name", "value": "Feature description"}],
    "fit_note": "Sizing recommendations if any",
    "care_instructions": "Care instructions if found"
  },
  "images": {
    "hero": "Best main product image URL",
    "secondary": "Second image URL",
    "additional": ["Other image URLs"]
  },
  "brand": {
    "name": "Full brand name",
    "short_name": "Shortened name",
    "tagline": "Brand tagline if found",
    "origin": "Location/founding story if mentioned",
    "logo_url": "Brand logo URL",
    "website": "Brand homepage"
  },
  "promotions": {
    "free_shipping_threshold": "Free shipping minimum or null",
    "current_sale": "Active promo text",
    "loyalty_program": "Loyalty program name"
  },
  "matching_products": {
    "name": "Complementary product name",
    "url": "URL to matching product/collection"
  },
  "brand_analysis": {
    "market_position": "Luxury/Premium/Mid-range/Budget/etc",
    "target_demographic": "Who this brand targets",
    "brand_personality": ["3-5 personality traits derived from site"],
    "visual_identity_notes": "What you observe about their visual style",
    "competitor_comparison": "What tier/type of brand this is similar to"
  },
  "design_decisions": {
    "overall_aesthetic": "One phrase, e.g. 'minimalist luxury', 'bold and playful', 'editorial sophistication'",
    "color_palette": {
      "primary_accent": "#hexcode",
      "secondary_accent": "#hexcode",
      "background_main": "#hexcode",
      "background_alt": "#hexcode",
      "text_primary": "#hexcode",
      "text_secondary": "#hexcode",
      "text_on_dark": "#hexcode",
      "button_bg": "#hexcode",
      "button_text": "#hexcode",
      "border_color": "#hexcode"
    },
    "typography": {
      "headline_font": "Web-safe font stack with fallbacks",
      "headline_style": "normal/italic",
      "headline_weight": "300/400/500/600/700",
      "headline_case": "none/uppercase/capitalize",
      "headline_letter_spacing": "0/1px/2px/3px",
      "body_font": "Web-safe font stack with fallbacks",
      "body_weight": "300/400/500",
      "body_line_height": "1.5/1.6/1.7/1.8",
      "accent_font": "Web-safe font for labels/tags",
      "accent_style": "uppercase/lowercase/capitalize",
      "accent_letter_spacing": "1px/2px/3px"
    },
    "layout": {
      "max_width": "550/580/600",
      "padding_outer": "20/30/40/50px",
      "padding_sections": "30/40/50/60px",
      "alignment": "center/left",
      "image_style": "full-bleed/padded",
      "section_dividers": "none/thin-line/thick-line/spacing-only"
    },
    "buttons": {
      "style": "solid/outline/minimal",
      "shape": "square/slightly-rounded/rounded/pill",
      "border_radius": "0/4/8/12/24/50px",
      "padding": "12px 30px / 14px 40px / 16px 50px",
      "text_case": "uppercase/capitalize/none",
      "letter_spacing": "0/1px/2px/3px"
    },
    "spacing": "tight/generous/balanced",
    "mood": {
      "tone_words": ["3-5 words describing the email feeling"],
      "avoid": ["Things that would NOT fit this brand"]
    }
  },
  "copywriting_direction": {
    "headline_approach": "How headlines should be written for this brand",
    "voice_tone": "Description of writing voice",
    "vocabulary_level": "Simple/Sophisticated/Technical/Casual",
    "cta_style": "How CTAs should sound (e.g. 'Shop Now' vs 'Discover' vs 'Get Yours')",
    "sample_headline": "A headline you would write for this specific email",
    "sample_preheader": "Preheader text for inbox preview (under 100 chars)"
  }
}

## ANALYSIS INSTRUCTIONS
1. Study the brand's website colors, fonts, imagery style, and copy tone
2. Look at how they present themselves - luxury? casual? edgy? classic?
3. Match your design decisions to feel native to this brand
4. Be specific with hex codes - derive them from the actual product/brand colors
5. Typography must use web-safe fonts but style them to match the brand feel"""

EXTRACTION_USER_PROMPT = """Analyze this ecommerce product page. Extract all product/brand data AND \
make design decisions for an email that perfectly matches this brand's identity.

## PAGE URL
{url}

## PAGE TITLE
{title}

## META DESCRIPTION
{meta_description}

## OG TITLE
{og_title}

## OG IMAGE
{og_image}

## JSON-LD DATA
{structured_data}

## IMAGES FOUND
{images}

## PAGE CONTENT
{body_text}

Study this brand carefully. Your design decisions should make the email feel like it was \
created by this brand's in-house team."""


def build_extraction_prompt(signals: ScrapedSignals) -> str:
    """Embed the scraped signals in the extraction prompt, within size limits."""
    structured_data = json.dumps(signals.structured_data, indent=2, default=str)
    if len(structured_data) > MAX_STRUCTURED_DATA_CHARS:
        structured_data = structured_data[:MAX_STRUCTURED_DATA_CHARS] + "\n... [structured data truncated]"

    body_text = signals.body_text
    if len(body_text) > MAX_PROMPT_BODY_TEXT:
        body_text = body_text[:MAX_PROMPT_BODY_TEXT] + "\n... [content truncated]"

    images = "\n".join(
        f"{i}. {img.url} (alt: {img.alt})" for i, img in enumerate(signals.images, 1)
    ) or "None found"

    return EXTRACTION_USER_PROMPT.format(
        url=signals.source_url,
        title=signals.title,
        meta_description=signals.meta_description,
        og_title=signals.og_title,
        og_image=signals.og_image,
        structured_data=structured_data,
        images=images,
        body_text=body_text,
    )


def strip_code_fence(text: str) -> str:
    """Remove a Markdown code fence wrapped around the response, if present."""
    text = text.strip()
    if not text.startswith("```"):
        return text
    lines = text.split("\n")
    # Drop the opening ``` / ```json line and a closing ``` line
    lines = lines[1:]
    if lines and lines[-1].strip().startswith("```"):
        lines = lines[:-1]
    return "\n".join(lines).strip()


def extract_product_design(
    signals: ScrapedSignals,
    client,
    max_tokens: int = EXTRACTION_MAX_TOKENS,
) -> ExtractedProductDesign:
    """
    Extract product data and design decisions from scraped signals.

    Args:
        signals: The scraped product page.
        client: Model service exposing ``complete()`` (see AnthropicModelClient).
        max_tokens: Output token budget for the call.

    Returns:
        ExtractedProductDesign with the call's token usage attached.

    Raises:
        ExtractionError: The call failed or did not return a usable document.
        MalformedJsonError: The response is not valid JSON.
    """
    user_prompt = build_extraction_prompt(signals)

    logger.info(f"Sending extraction request for {signals.source_url}...")
    try:
        response = client.complete(
            user_prompt=user_prompt,
            system_prompt=EXTRACTION_SYSTEM_PROMPT,
            max_output_tokens=max_tokens,
        )
    except ModelServiceError as e:
        raise ExtractionError(str(e)) from e

    response_text = strip_code_fence(response.text)

    try:
        data = json.loads(response_text)
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse extraction response as JSON: {e}")
        logger.error(f"Raw response: {response_text[:500]}")
        raise MalformedJsonError(
            "Failed to parse product data from AI response", raw_text=response_text,
        ) from e

    if not isinstance(data, dict):
        logger.error(f"Extraction response is a JSON {type(data).__name__}, expected an object")
        raise ExtractionError("AI response is not a JSON object", raw_text=response_text)

    missing = [section for section in REQUIRED_SECTIONS if not isinstance(data.get(section), dict)]
    if missing:
        logger.error(f"Extraction response missing sections: {', '.join(missing)}")
        raise ExtractionError(
            f"AI response is missing required sections: {', '.join(missing)}",
            raw_text=response_text,
        )

    try:
        design = ExtractedProductDesign.model_validate(data)
    except ValidationError as e:
        logger.error(f"Extraction response failed validation: {e}")
        raise ExtractionError("AI response has an unexpected structure", raw_text=response_text) from e

    design._usage = response.usage
    logger.info(
        f"Extraction complete: {design.product.full_name or design.product.name} "
        f"({design.brand.name or 'unknown brand'})"
    )
    return design
