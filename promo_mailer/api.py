"""
Request handler for the generate endpoint.
Accepts the JSON body the front end posts and returns (status, body).
"""

import logging
from typing import Optional

from promo_mailer.agent import EmailGeneratorAgent, GeneratorConfig, PipelineResult
from promo_mailer.errors import InputValidationError

logger = logging.getLogger(__name__)


def _success_body(result: PipelineResult) -> dict:
    summary = result.summary
    design = result.design
    usage = result.usage
    return {
        "success": True,
        "content": result.raw_content,
        "emails": [
            {"id": doc.sequence_index, "description": doc.style_label, "html": doc.html}
            for doc in result.documents
        ],
        "productData": {
            "name": summary.name,
            "price": summary.price,
            "brand": summary.brand,
            "imageCount": summary.image_count,
        },
        "designDecisions": design.section_dump("design_decisions"),
        "brandAnalysis": design.section_dump("brand_analysis"),
        "copywritingDirection": design.section_dump("copywriting_direction"),
        "usage": {
            "input_tokens": usage.input_tokens,
            "output_tokens": usage.output_tokens,
            "total_tokens": usage.total_tokens,
            "estimated_cost_usd": usage.estimated_cost_usd,
        } if usage else None,
        "warnings": result.warnings,
    }


def handle_generate_request(
    payload: Optional[dict],
    agent: Optional[EmailGeneratorAgent] = None,
) -> tuple[int, dict]:
    """
    Handle a generate request body: {productUrl, emailCount, promotion}.

    Returns:
        (200, body with content, emails and productData) on success,
        (status, {"error": message}) otherwise.
    """
    if not isinstance(payload, dict):
        error = InputValidationError("request body must be a JSON object")
        return error.http_status, {"error": error.user_message()}

    if agent is None:
        agent = EmailGeneratorAgent(GeneratorConfig.from_env())

    email_count = payload.get("emailCount")
    result = agent.run_pipeline(
        url=payload.get("productUrl"),
        email_count=1 if email_count is None else email_count,
        promotion=payload.get("promotion"),
    )

    if not result.ok:
        logger.warning(f"Generate request failed ({result.error_category}): {result.error}")
        return result.status_code, {"error": result.error}

    return 200, _success_body(result)
