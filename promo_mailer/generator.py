"""
Email Generation Module
Second model call: executes the extracted design decisions as one or more
Gmail-safe HTML emails. The response is returned unparsed; splitting it
into documents is the parser's job.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Optional

from promo_mailer.email_parser import EMAIL_SEPARATOR
from promo_mailer.errors import GenerationError, ModelServiceError
from promo_mailer.models import ExtractedProductDesign, ModelResponse

logger = logging.getLogger(__name__)

GENERATION_MAX_TOKENS = 16000
MAX_EMAIL_COUNT = 4

# Sections passed through as product data, in prompt order
PRODUCT_SECTIONS = (
    "product", "description", "images", "brand", "promotions", "matching_products",
)

EMAIL_GENERATION_SYSTEM_PROMPT = """You are an HTML email developer. You will receive:
1. Structured product data
2. Specific design decisions made by a creative director

Your job is to EXECUTE these design decisions precisely in Gmail-safe HTML.

## TECHNICAL REQUIREMENTS (NON-NEGOTIABLE)

1. **Inline CSS Only**: Gmail strips <style> blocks. Every element needs style="..."
2. **Table Layout**: Use nested tables with role="presentation"
3. **Max Width**: Use the width specified in design_decisions.layout.max_width
4. **Font Stacks**: Use exactly what's specified in design_decisions.typography
5. **Colors**: Use exactly the hex codes from design_decisions.color_palette
6. **Buttons**: Style exactly per design_decisions.buttons specs
7. **Table Attributes**: Always include cellspacing="0" cellpadding="0" border="0"
8. **Images**:
   - Set width as both attribute AND in style
   - Add style="display: block;" to prevent gaps
   - Include meaningful alt text
9. **No Background Images**: Use background-color only

## EMAIL STRUCTURE

Build the email with these sections:
1. Hidden preheader text (use copywriting_direction.sample_preheader)
2. Top banner if there's a promotion/free shipping
3. Brand logo centered
4. Hero image (full width per layout.image_style)
5. Category label (use accent font styling)
6. Headline (use copywriting_direction.sample_headline or similar)
7. Body copy (1-2 sentences max)
8. Feature tags (inline with middot separators)
9. Price display
10. CTA button (styled per design_decisions.buttons)
11. Secondary image if available
12. "Complete the Look" section if matching_products exists
13. Footer with links

## OUTPUT FORMAT
Return ONLY the complete HTML:
- Precede each email with a comment naming its style, e.g. <!-- EDITORIAL -->
- Start each email with <!DOCTYPE html>
- End each email with </html>
- No markdown, no explanations, no code blocks
- Production-ready HTML that can be sent immediately"""

EMAIL_GENERATION_USER_PROMPT = """Generate {email_count} promotional email(s) using EXACTLY these specifications.

## PRODUCT DATA
{product_data}

## DESIGN SPECIFICATIONS (FOLLOW EXACTLY)
{design_decisions}

## COPYWRITING DIRECTION
{copywriting_direction}

## BRAND CONTEXT
{brand_analysis}"""

PROMOTION_BLOCK = """

## ADDITIONAL PROMOTION TO FEATURE
{promotion}"""

VARIATIONS_BLOCK = """

## MULTIPLE EMAIL VARIATIONS
Generate exactly {email_count} emails. Each should follow the same design system but vary:
- Headline/copy angle
- Image selection (use a different subset of the available images in each email)
- Slight layout variations within the same aesthetic

Separate each email with: {separator}"""

CLOSING_LINE = "\n\nExecute these specifications precisely. Generate production-ready HTML now."

_PERCENT_RE = re.compile(r"(\d+(?:\.\d+)?)\s*%")
_PRICE_CHARS_RE = re.compile(r"[^0-9.]")


@dataclass
class DiscountHint:
    """Sale price precomputed so the model does not have to do the arithmetic."""
    original_price: str
    sale_price: str
    percent: float

    def prompt_line(self) -> str:
        return f"Original: {self.original_price} -> Sale: {self.sale_price}"


def compute_discount_hint(price: Optional[str], promotion: Optional[str]) -> Optional[DiscountHint]:
    """
    Work out the discounted price for a percentage promotion.

    Returns None when the promotion has no percentage or the price
    does not parse as a number.
    """
    if not price or not promotion:
        return None
    percent_match = _PERCENT_RE.search(promotion)
    if not percent_match:
        return None
    percent = float(percent_match.group(1))
    if percent <= 0 or percent >= 100:
        return None

    try:
        price_value = float(_PRICE_CHARS_RE.sub("", price))
    except ValueError:
        return None

    sale = price_value * (1 - percent / 100)
    return DiscountHint(original_price=price, sale_price=f"${sale:.2f}", percent=percent)


def _dump(data) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False)


def build_generation_prompt(
    design: ExtractedProductDesign,
    email_count: int = 1,
    promotion: Optional[str] = None,
) -> str:
    """Assemble the generation prompt from the extracted data."""
    product_data = {name: design.section_dump(name) for name in PRODUCT_SECTIONS}

    prompt = EMAIL_GENERATION_USER_PROMPT.format(
        email_count=email_count,
        product_data=_dump(product_data),
        design_decisions=_dump(design.section_dump("design_decisions")),
        copywriting_direction=_dump(design.section_dump("copywriting_direction")),
        brand_analysis=_dump(design.section_dump("brand_analysis")),
    )

    if promotion:
        prompt += PROMOTION_BLOCK.format(promotion=promotion)
        hint = compute_discount_hint(design.product.price, promotion)
        if hint:
            prompt += "\n" + hint.prompt_line()

    if email_count > 1:
        prompt += VARIATIONS_BLOCK.format(email_count=email_count, separator=EMAIL_SEPARATOR)

    return prompt + CLOSING_LINE


def generate_email_html(
    design: ExtractedProductDesign,
    client,
    email_count: int = 1,
    promotion: Optional[str] = None,
    max_tokens: int = GENERATION_MAX_TOKENS,
) -> ModelResponse:
    """
    Generate the raw HTML for one or more emails.

    Args:
        design: Extracted product and design data.
        client: Model service exposing ``complete()``.
        email_count: Number of variations to request (1-4).
        promotion: Optional promotion text to feature.
        max_tokens: Output token budget for the call.

    Returns:
        ModelResponse whose text holds the unparsed email documents.

    Raises:
        GenerationError: The model service call failed.
    """
    if not 1 <= email_count <= MAX_EMAIL_COUNT:
        raise ValueError(f"email_count must be between 1 and {MAX_EMAIL_COUNT}, got {email_count}")

    user_prompt = build_generation_prompt(design, email_count, promotion)

    logger.info(f"Generating {email_count} email(s)...")
    try:
        response = client.complete(
            user_prompt=user_prompt,
            system_prompt=EMAIL_GENERATION_SYSTEM_PROMPT,
            max_output_tokens=max_tokens,
        )
    except ModelServiceError as e:
        raise GenerationError(str(e)) from e

    logger.info(f"Generation returned {len(response.text)} chars")
    return response
