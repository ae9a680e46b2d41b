"""
Multi-Email Response Parser
Splits the generation response into discrete, labeled HTML documents.

Wire format: documents are separated by ``<!-- EMAIL_SEPARATOR -->``, each
may be preceded by a style comment such as ``<!-- EDITORIAL -->``, and each
spans ``<!DOCTYPE html>`` to ``</html>``. Models do not always follow it, so
the parser also recovers documents that were simply concatenated.
"""

import logging
import re

from promo_mailer.models import GeneratedEmailDocument

logger = logging.getLogger(__name__)

EMAIL_SEPARATOR = "<!-- EMAIL_SEPARATOR -->"
MIN_DOCUMENT_LENGTH = 100  # shorter payloads are truncated or empty blocks
KNOWN_STYLES = ("MINIMAL LUXURY", "TROPICAL VIBRANT", "EDITORIAL", "MAGAZINE", "PLAYFUL FRESH")

_SEPARATOR_RE = re.compile(r"<!--\s*EMAIL_SEPARATOR\s*-->", re.IGNORECASE)
_DOCTYPE_RE = re.compile(r"<!DOCTYPE\s+html\b", re.IGNORECASE)
# Non-greedy: one document per match when scanning concatenated output
_DOCUMENT_SPAN_RE = re.compile(r"<!DOCTYPE\s+html\b.*?</html\s*>", re.IGNORECASE | re.DOTALL)
# Greedy: first DOCTYPE to last closing tag within a block
_PAYLOAD_RE = re.compile(r"<!DOCTYPE\s+html\b.*</html\s*>", re.IGNORECASE | re.DOTALL)
_COMMENT_RE = re.compile(r"<!--\s*(.*?)\s*-->", re.DOTALL)
_LABEL_RE = re.compile(r"\w[\w\s&'-]{0,39}")


def _scan_documents(text: str) -> list[str]:
    """
    Cut text into one slice per DOCTYPE...</html> span.

    Each slice starts where the previous span ended so that a style comment
    written between two documents stays with the document it precedes.
    """
    slices = []
    start = 0
    for match in _DOCUMENT_SPAN_RE.finditer(text):
        slices.append(text[start:match.end()])
        start = match.end()
    return slices


def _split_blocks(raw_text: str) -> list[str]:
    blocks = []
    for block in _SEPARATOR_RE.split(raw_text):
        if not _DOCTYPE_RE.search(block):
            continue  # preamble or commentary around the emails
        spans = _scan_documents(block)
        # A block holding several complete documents lost its separators
        blocks.extend(spans if len(spans) > 1 else [block])

    if blocks:
        return blocks

    logger.warning("No separated email blocks found, scanning for DOCTYPE...</html> spans")
    return _scan_documents(raw_text)


def _style_label(block: str) -> str:
    """Style name from the comments before the document, or '' if there is none."""
    doctype = _DOCTYPE_RE.search(block)
    prefix = block[:doctype.start()] if doctype else block

    candidates = [
        text for text in _COMMENT_RE.findall(prefix)
        if text and _LABEL_RE.fullmatch(text) and text.upper() != "EMAIL_SEPARATOR"
    ]
    for text in candidates:
        if text.upper() in KNOWN_STYLES:
            return text
    return candidates[0] if candidates else ""


def _payload(block: str) -> str:
    match = _PAYLOAD_RE.search(block)
    return match.group(0).strip() if match else block.strip()


def parse_emails(raw_text: str) -> list[GeneratedEmailDocument]:
    """
    Parse the generation response into email documents.

    Never raises: text with no usable document yields an empty list.
    Documents are numbered 1..N in input order after discarding blocks
    whose HTML is shorter than MIN_DOCUMENT_LENGTH.
    """
    if not raw_text:
        return []

    survivors = []
    for block in _split_blocks(raw_text):
        html = _payload(block)
        if len(html) < MIN_DOCUMENT_LENGTH:
            logger.warning(f"Discarding email block of {len(html)} chars (likely truncated)")
            continue
        survivors.append((_style_label(block), html))

    documents = [
        GeneratedEmailDocument(
            sequence_index=index,
            style_label=label or f"Style {index}",
            html=html,
        )
        for index, (label, html) in enumerate(survivors, 1)
    ]
    logger.info(f"Parsed {len(documents)} email(s) from response")
    return documents
