"""
Agent Orchestrator
Orchestrates the email generation pipeline:
URL Input -> Page Scraper -> Extraction (LLM call 1) -> Generation (LLM call 2) -> Parser

Each stage's failure ends the run and is reported under its own category.
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Optional, Callable

from pydantic import ValidationError

from promo_mailer.scraper import fetch_product_page
from promo_mailer.extractor import extract_product_design, EXTRACTION_MAX_TOKENS
from promo_mailer.generator import generate_email_html, compute_discount_hint, GENERATION_MAX_TOKENS
from promo_mailer.email_parser import parse_emails
from promo_mailer.llm_client import AnthropicModelClient, DEFAULT_MODEL, DEFAULT_TIMEOUT, MAX_RETRIES
from promo_mailer.errors import (
    EmailGeneratorError,
    ErrorCategory,
    ExtractionError,
    FetchError,
    GenerationError,
    InputValidationError,
    ParseError,
)
from promo_mailer.models import (
    ExtractedProductDesign,
    GeneratedEmailDocument,
    GenerationRequest,
    ProductSummary,
    ScrapedSignals,
    UsageMetadata,
)

logger = logging.getLogger(__name__)


@dataclass
class GeneratorConfig:
    """Configuration for the email generator."""
    anthropic_api_key: str
    extraction_model: str = DEFAULT_MODEL
    generation_model: str = DEFAULT_MODEL
    extraction_max_tokens: int = EXTRACTION_MAX_TOKENS
    generation_max_tokens: int = GENERATION_MAX_TOKENS
    request_timeout: float = DEFAULT_TIMEOUT
    max_retries: int = MAX_RETRIES

    @classmethod
    def from_env(cls) -> "GeneratorConfig":
        """Build a config from environment variables (call load_dotenv() first)."""
        return cls(
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY", ""),
            extraction_model=os.getenv("EXTRACTION_MODEL", DEFAULT_MODEL),
            generation_model=os.getenv("GENERATION_MODEL", DEFAULT_MODEL),
            request_timeout=float(os.getenv("REQUEST_TIMEOUT", DEFAULT_TIMEOUT)),
            max_retries=int(os.getenv("LLM_MAX_RETRIES", MAX_RETRIES)),
        )


@dataclass
class PipelineResult:
    """Result of a single pipeline run."""
    request: Optional[GenerationRequest] = None
    scraped: Optional[ScrapedSignals] = None
    design: Optional[ExtractedProductDesign] = None
    raw_content: str = ""
    documents: list[GeneratedEmailDocument] = field(default_factory=list)
    summary: Optional[ProductSummary] = None
    usage: Optional[UsageMetadata] = None
    warnings: list[str] = field(default_factory=list)
    error: Optional[str] = None
    error_category: Optional[ErrorCategory] = None
    exception: Optional[EmailGeneratorError] = None
    status_code: int = 200
    stage: str = "not_started"  # validating, fetching, extracting, generating, parsing, complete, failed

    @property
    def ok(self) -> bool:
        return self.stage == "complete"


def _sum_usage(*usages: Optional[UsageMetadata]) -> Optional[UsageMetadata]:
    present = [u for u in usages if u is not None]
    if not present:
        return None
    total = present[0]
    for usage in present[1:]:
        total = total + usage
    return total


def validate_request(url: Optional[str], email_count=1, promotion: Optional[str] = None) -> GenerationRequest:
    """Validate inbound request fields before any network call is made."""
    try:
        return GenerationRequest(product_url=url or "", email_count=email_count, promotion=promotion)
    except ValidationError as e:
        details = "; ".join(err["msg"] for err in e.errors())
        raise InputValidationError(details) from e


def _stage_error(stage: str, error: Exception) -> EmailGeneratorError:
    """Wrap an unexpected exception in the error type of the stage it escaped from."""
    if stage == "validating":
        return InputValidationError(str(error))
    if stage == "fetching":
        return FetchError(str(error))
    if stage == "extracting":
        return ExtractionError(str(error))
    return GenerationError(str(error))


def find_price_mismatches(documents: list[GeneratedEmailDocument], sale_price: str) -> list[int]:
    """Sequence indexes of documents that never show the expected sale price."""
    return [doc.sequence_index for doc in documents if sale_price not in doc.html]


class EmailGeneratorAgent:
    """
    Runs the scrape -> extract -> generate -> parse pipeline for one request.
    """

    def __init__(self, config: GeneratorConfig, extraction_client=None, generation_client=None, session=None):
        self.config = config
        self.session = session  # optional requests.Session for the page fetch
        self.extraction_client = extraction_client or AnthropicModelClient(
            api_key=config.anthropic_api_key,
            model=config.extraction_model,
            timeout=config.request_timeout,
            max_retries=config.max_retries,
        )
        if generation_client is not None:
            self.generation_client = generation_client
        elif extraction_client is None and config.generation_model == config.extraction_model:
            self.generation_client = self.extraction_client
        else:
            self.generation_client = AnthropicModelClient(
                api_key=config.anthropic_api_key,
                model=config.generation_model,
                timeout=config.request_timeout,
                max_retries=config.max_retries,
            )

    def scrape(self, url: str) -> ScrapedSignals:
        """Phase 1: Fetch the product page."""
        return fetch_product_page(url, session=self.session)

    def extract(self, scraped: ScrapedSignals) -> ExtractedProductDesign:
        """Phase 2: Extract product data and design decisions via LLM."""
        return extract_product_design(
            signals=scraped,
            client=self.extraction_client,
            max_tokens=self.config.extraction_max_tokens,
        )

    def generate(self, design: ExtractedProductDesign, email_count: int, promotion: Optional[str]):
        """Phase 3: Generate the raw email HTML via LLM."""
        return generate_email_html(
            design=design,
            client=self.generation_client,
            email_count=email_count,
            promotion=promotion,
            max_tokens=self.config.generation_max_tokens,
        )

    def run_pipeline(
        self,
        url: str,
        email_count: int = 1,
        promotion: Optional[str] = None,
        progress_callback: Optional[Callable] = None,
    ) -> PipelineResult:
        """
        Run the full pipeline end-to-end for a single product URL.

        Args:
            url: Product page URL.
            email_count: Number of email variations (1-4).
            promotion: Optional promotion text to feature.
            progress_callback: Optional callable(message: str) for progress updates.

        Returns:
            PipelineResult with the parsed emails, or the error that stopped the run.
        """
        result = PipelineResult()

        def _log(msg: str):
            logger.info(msg)
            if progress_callback:
                progress_callback(msg)

        try:
            result.stage = "validating"
            request = result.request = validate_request(url, email_count, promotion)

            # Phase 1: Scrape
            result.stage = "fetching"
            _log(f"Step 1: Fetching product page {request.product_url}...")
            result.scraped = self.scrape(request.product_url)
            _log(f"Found {len(result.scraped.images)} images on the page")

            # Phase 2: Extract
            result.stage = "extracting"
            _log("Step 2: Analyzing brand & making design decisions...")
            result.design = self.extract(result.scraped)
            result.summary = ProductSummary.from_design(result.design)
            _log(f"Extracted: {result.summary.name} ({result.summary.brand})")

            # Phase 3: Generate
            result.stage = "generating"
            _log(f"Step 3: Generating {request.email_count} email(s)...")
            response = self.generate(result.design, request.email_count, request.promotion)
            result.raw_content = response.text
            result.usage = _sum_usage(result.design.usage, response.usage)

            # Phase 4: Parse
            result.stage = "parsing"
            _log("Step 4: Parsing emails...")
            result.documents = parse_emails(response.text)
            if not result.documents:
                logger.error(f"No emails parsed from a {len(response.text)} char response")
                raise ParseError()
            if len(result.documents) < request.email_count:
                result.warnings.append(
                    f"Requested {request.email_count} emails, parsed {len(result.documents)}"
                )

            hint = compute_discount_hint(result.design.product.price, request.promotion)
            if hint:
                for index in find_price_mismatches(result.documents, hint.sale_price):
                    message = f"Email {index} does not show the expected sale price {hint.sale_price}"
                    logger.warning(message)
                    result.warnings.append(message)

            result.stage = "complete"
            _log(f"Generated {len(result.documents)} email(s)")

        except EmailGeneratorError as e:
            self._fail(result, e)
            _log(f"Error: {result.error}")
        except Exception as e:
            logger.error(f"Pipeline error while {result.stage}: {e}", exc_info=True)
            self._fail(result, _stage_error(result.stage, e))
            _log(f"Error: {result.error}")

        return result

    @staticmethod
    def _fail(result: PipelineResult, error: EmailGeneratorError):
        logger.error(f"Pipeline failed while {result.stage}: {error}")
        result.error = error.user_message()
        result.error_category = error.category
        result.exception = error
        result.status_code = error.http_status
        result.stage = "failed"
