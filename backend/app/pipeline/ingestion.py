"""PDF text extraction with pdfplumber.

Uploaded PDFs are read in memory, page by page.  Pages whose text layer
is empty or mostly ``(cid:NN)`` placeholders are skipped; a PDF with no
usable page yields an empty string and is treated as "nothing extracted".
"""

import io
import logging
import re

import pdfplumber

logger = logging.getLogger(__name__)

MIN_CHARS_PER_PAGE = 20          # fewer → page has no real text layer
CID_RATIO_THRESHOLD = 0.15       # more → broken font encoding
MAX_PAGES = 30

_CID_RE = re.compile(r'\(cid:\d+\)')


def _assess_page_quality(text: str) -> dict:
    """Score a page's extracted text: ``{"char_count", "cid_ratio", "quality"}``."""
    char_count = len(text.strip())
    cid_chars = sum(len(m) for m in _CID_RE.findall(text))
    cid_ratio = cid_chars / max(char_count, 1)

    quality = "HIGH"
    if char_count < MIN_CHARS_PER_PAGE or cid_ratio > CID_RATIO_THRESHOLD:
        quality = "LOW"
    return {
        "char_count": char_count,
        "cid_ratio": round(cid_ratio, 3),
        "quality": quality,
    }


def extract_pdf_text(content: bytes, filename: str = "") -> str:
    """Concatenate the usable text of a PDF given as bytes."""
    parts: list[str] = []
    low_pages = 0
    try:
        with pdfplumber.open(io.BytesIO(content)) as pdf:
            for i, page in enumerate(pdf.pages[:MAX_PAGES]):
                page_text = page.extract_text() or ""
                if _assess_page_quality(page_text)["quality"] == "LOW":
                    low_pages += 1
                    continue
                parts.append(f"--- Page {i + 1} ---\n{page_text.strip()}")
    except Exception as e:
        logger.error(f"pdfplumber failed on {filename or 'upload'}: {e}")
        return ""

    if low_pages:
        logger.info(f"{filename or 'upload'}: skipped {low_pages} page(s) without a usable text layer")
    return "\n\n".join(parts)
