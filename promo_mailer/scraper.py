"""
Product Page Scraping Module
Fetches a single product page and reduces it to the signals the
extraction prompt needs: meta tags, JSON-LD, product images and body text.
"""

import json
import re
import time
import logging
from typing import Optional
from urllib.parse import urljoin, urlparse

import requests
from bs4 import BeautifulSoup

from promo_mailer.errors import HttpStatusError, NetworkError
from promo_mailer.models import ImageCandidate, ScrapedSignals

logger = logging.getLogger(__name__)

# Elements to strip from HTML before text extraction (JSON-LD is read first)
STRIP_ELEMENTS = ["script", "style", "noscript", "iframe", "svg"]

# Default headers to mimic a browser; some storefronts block other clients
DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}

REQUEST_TIMEOUT = 15
FETCH_MAX_RETRIES = 2
MAX_IMAGES = 20
MAX_BODY_TEXT = 6000  # chars of page text passed downstream
PREFERRED_IMAGE_WIDTH = 600

# Filename fragments of decorative assets: icons, badges, tracking pixels, spinners
DECORATIVE_IMAGE_HINTS = (
    "icon", "badge", "payment", "1x1", "pixel", "spacer",
    "spinner", "loader", "loading", "sprite", "tracking",
)

_WIDTH_PARAM_RE = re.compile(r"([?&])width=\d+")
_WHITESPACE_RE = re.compile(r"\s+")


def _fetch_page(url: str, session: requests.Session) -> str:
    """
    Fetch the page HTML, retrying transient failures.

    Timeouts, connection errors and 5xx responses are retried with
    exponential backoff; any 4xx is returned to the caller immediately.
    """
    for attempt in range(1, FETCH_MAX_RETRIES + 1):
        try:
            response = session.get(url, headers=DEFAULT_HEADERS, timeout=REQUEST_TIMEOUT)
            if not response.ok:
                raise HttpStatusError(response.status_code, url)
            return response.text
        except HttpStatusError as e:
            if not e.retryable or attempt == FETCH_MAX_RETRIES:
                logger.warning(f"HTTP error fetching {url}: {e}")
                raise
            wait = 2 ** attempt
            logger.warning(f"HTTP error fetching {url} (attempt {attempt}/{FETCH_MAX_RETRIES}): {e}. Retrying in {wait}s...")
            time.sleep(wait)
        except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
            if attempt == FETCH_MAX_RETRIES:
                logger.warning(f"Network error fetching {url}: {e}")
                raise NetworkError(str(e)) from e
            wait = 2 ** attempt
            logger.warning(f"Network error fetching {url} (attempt {attempt}/{FETCH_MAX_RETRIES}): {e}. Retrying in {wait}s...")
            time.sleep(wait)
        except requests.exceptions.RequestException as e:
            logger.warning(f"Error fetching {url}: {e}")
            raise NetworkError(str(e)) from e


def _extract_json_ld(soup: BeautifulSoup) -> list:
    """Parse every JSON-LD block independently; unparseable blocks are skipped."""
    blocks = []
    for tag in soup.find_all("script", type="application/ld+json"):
        raw = tag.string or tag.get_text()
        if not raw or not raw.strip():
            continue
        try:
            blocks.append(json.loads(raw))
        except json.JSONDecodeError:
            logger.debug("Skipping unparseable JSON-LD block")
    return blocks


def _meta_content(soup: BeautifulSoup, **attrs) -> str:
    tag = soup.find("meta", attrs=attrs)
    if tag and tag.get("content"):
        return tag["content"].strip()
    return ""


def _extract_title(soup: BeautifulSoup) -> str:
    """Extract the page title."""
    title_tag = soup.find("title")
    if title_tag:
        return title_tag.get_text(strip=True)
    return ""


def normalize_image_url(src: str) -> str:
    """
    Request a fixed width from Shopify's CDN for better email image quality.

    Other URLs pass through unchanged.
    """
    if "cdn.shopify" not in src:
        return src
    if _WIDTH_PARAM_RE.search(src):
        return _WIDTH_PARAM_RE.sub(rf"\g<1>width={PREFERRED_IMAGE_WIDTH}", src)
    separator = "&" if "?" in src else "?"
    return f"{src}{separator}width={PREFERRED_IMAGE_WIDTH}"


def _canonical_image_url(url: str) -> str:
    """Identity used for deduplication: the URL without its query string."""
    return url.split("?", 1)[0].split("#", 1)[0]


def _is_decorative(url: str) -> bool:
    filename = urlparse(url).path.rsplit("/", 1)[-1].lower()
    return any(hint in filename for hint in DECORATIVE_IMAGE_HINTS)


def _image_source(img) -> str:
    src = img.get("src") or img.get("data-src") or ""
    if not src and img.get("srcset"):
        src = img["srcset"].split(",")[0].strip().split(" ")[0]
    return src.strip()


def _extract_images(soup: BeautifulSoup, page_url: str) -> list[ImageCandidate]:
    """
    Collect product images in document order.
    The first occurrence of each canonical URL wins, alt text included.
    """
    images = []
    seen: set[str] = set()

    for img in soup.find_all("img"):
        src = _image_source(img)
        if not src or src.startswith("data:"):
            continue

        try:
            if src.startswith("//"):
                src = "https:" + src
            else:
                src = urljoin(page_url, src)
            scheme = urlparse(src).scheme
        except ValueError:
            logger.debug(f"Skipping image with malformed URL: {src!r}")
            continue

        if scheme not in ("http", "https"):
            continue
        if _is_decorative(src):
            continue

        normalized = normalize_image_url(src)
        canonical = _canonical_image_url(normalized)
        if canonical in seen:
            continue
        seen.add(canonical)

        images.append(ImageCandidate(url=normalized, alt=(img.get("alt") or "").strip()))
        if len(images) >= MAX_IMAGES:
            break

    return images


def _extract_body_text(soup: BeautifulSoup) -> str:
    """Collapse the body text to single-spaced prose and truncate it."""
    for tag_name in STRIP_ELEMENTS:
        for tag in soup.find_all(tag_name):
            tag.decompose()

    root = soup.body or soup
    text = _WHITESPACE_RE.sub(" ", root.get_text(separator=" ")).strip()
    return text[:MAX_BODY_TEXT]


def parse_product_page(html: str, url: str) -> ScrapedSignals:
    """Reduce a product page's HTML to ScrapedSignals."""
    soup = BeautifulSoup(html, "html.parser")

    structured_data = _extract_json_ld(soup)
    images = _extract_images(soup, url)

    og_image = _meta_content(soup, property="og:image")
    if og_image.startswith("//"):
        og_image = "https:" + og_image

    return ScrapedSignals(
        source_url=url,
        title=_extract_title(soup),
        meta_description=_meta_content(soup, name="description"),
        og_image=og_image,
        og_title=_meta_content(soup, property="og:title"),
        structured_data=structured_data,
        images=images,
        body_text=_extract_body_text(soup),
    )


def fetch_product_page(url: str, session: Optional[requests.Session] = None) -> ScrapedSignals:
    """
    Fetch a product page and extract its structured signals.

    Args:
        url: The product page URL.
        session: Optional requests session to reuse.

    Returns:
        ScrapedSignals for the page.

    Raises:
        HttpStatusError: The page answered with a non-success status.
        NetworkError: The page could not be reached.
    """
    logger.info(f"Fetching product page {url}")
    html = _fetch_page(url, session or requests.Session())

    signals = parse_product_page(html, url)
    logger.info(
        f"Scraped {url}: {len(signals.images)} images, "
        f"{len(signals.structured_data)} JSON-LD blocks, {len(signals.body_text)} chars of text"
    )
    return signals
