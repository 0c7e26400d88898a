"""Extraction collaborator: turns chat text, pasted images and uploads into bundles.

Every public ``extract_*`` coroutine returns an ``ExtractionBundle`` and
returns ``{}`` when nothing KYC-relevant was found or the model call
failed after its retries.  Only authentication and rate-limit failures
escape (as ``ExtractionServiceError`` subclasses) so the chat turn can tell
the user what happened.

Raw model output is coerced against the field catalogue before anyone
sees it: unknown keys, wrong types, blank strings and out-of-enum values
are dropped here, so validation only deals with well-typed values.
"""

import asyncio
import base64
import logging
import math
from typing import Any

from app.config import EXTRACTION_TIMEOUT, IMAGE_MIME_TYPES
from app.pipeline.ingestion import extract_pdf_text
from app.pipeline.llm_client import (
    ExtractionAuthError,
    ExtractionRateLimitError,
    ExtractionServiceError,
    OllamaClient,
)
from app.pipeline.record import (
    ALL_RECORD_FIELDS,
    BOOL_FIELDS,
    DECIMAL_FIELDS,
    ENUM_FIELDS,
    INT_FIELDS,
    LIST_FIELDS,
    PERSON_ROLE_TYPES,
    PERSON_TEXT_FIELDS,
    TEXT_FIELDS,
    ExtractionBundle,
    PersonBundle,
)
from app.pipeline.schemas import EXTRACT_KYC_SCHEMA

logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════
# PROMPTS
# ═══════════════════════════════════════════════════

_BASE_SYSTEM_PROMPT = """You are a KYC data extraction system for a South African high-value goods dealer compliance system.
Extract structured KYC data from {source}. Only extract information that is explicitly stated or very clearly implied.
Do NOT infer, guess, or fabricate values.
If the input is a question, greeting, or contains no KYC data, return an empty object {{}}.
For boolean fields, only set them if the user clearly affirmed or denied.
Return ONLY a JSON object using the field names of the schema.
Current entity type being onboarded: {entity_type}"""

_IMAGE_SYSTEM_PROMPT = """You are a KYC data extraction specialist for a South African precious metals and high-value goods compliance system.
The user has supplied an image. Read ALL visible text (names, numbers, addresses, dates, checkboxes, form fields)
and map every legible piece of information to the appropriate KYC field.
Do NOT infer or fabricate values that are not clearly visible.
Return ONLY a JSON object using the field names of the schema.
Current entity type: {entity_type}"""


# ═══════════════════════════════════════════════════
# COERCION
# ═══════════════════════════════════════════════════

_TRUE_STRINGS = {"true", "yes", "y"}
_FALSE_STRINGS = {"false", "no", "n"}


def _coerce_text(value: Any) -> str | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _coerce_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    return None


def _coerce_number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        cleaned = value.strip().replace(",", "").replace("%", "").lstrip("R").strip()
        try:
            number = float(cleaned)
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _coerce_list(value: Any) -> list[str] | None:
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, list):
        return None
    items = [s for s in (_coerce_text(v) for v in value) if s]
    return items or None


def _coerce_person(raw: Any) -> PersonBundle | None:
    if not isinstance(raw, dict):
        return None
    person: PersonBundle = {}
    for key in PERSON_TEXT_FIELDS:
        text = _coerce_text(raw.get(key))
        if text:
            person[key] = text
    pct = _coerce_number(raw.get("ownership_percentage"))
    if pct is not None:
        person["ownership_percentage"] = pct
    role = person.get("person_role_type")
    if role and role not in PERSON_ROLE_TYPES:
        person["person_role_type"] = "Other"
    return person or None


def coerce_field(key: str, value: Any) -> Any:
    """Coerce one record field to its catalogue kind; ``None`` when it does not fit."""
    if key in BOOL_FIELDS:
        return _coerce_bool(value)
    if key in INT_FIELDS:
        number = _coerce_number(value)
        return int(number) if number is not None and number.is_integer() else None
    if key in DECIMAL_FIELDS:
        return _coerce_number(value)
    if key in ENUM_FIELDS:
        return value if value in ENUM_FIELDS[key] else None
    if key in LIST_FIELDS:
        return _coerce_list(value)
    if key in TEXT_FIELDS:
        return _coerce_text(value)
    return None


def coerce_bundle(raw: Any) -> ExtractionBundle:
    """Keep only catalogue fields with values of the right kind."""
    if not isinstance(raw, dict):
        return {}
    bundle: dict = {}

    for key in ALL_RECORD_FIELDS:
        if key in raw:
            value = coerce_field(key, raw[key])
            if value is not None:
                bundle[key] = value

    persons = [p for p in (_coerce_person(r) for r in raw.get("associated_persons") or []) if p]
    if persons:
        bundle["associated_persons"] = persons

    # date_of_birth is only ever set through a confirmed enrichment
    bundle.pop("date_of_birth", None)
    return bundle


# ═══════════════════════════════════════════════════
# EXTRACTOR
# ═══════════════════════════════════════════════════

class LLMExtractor:
    """``extract(input, entity_type_hint) -> ExtractionBundle`` over an OllamaClient."""

    def __init__(self, client: OllamaClient, timeout: float = EXTRACTION_TIMEOUT):
        self.client = client
        self.timeout = timeout

    async def _run(self, label: str, **kwargs) -> ExtractionBundle:
        try:
            raw = await asyncio.wait_for(
                self.client.chat_json(schema=EXTRACT_KYC_SCHEMA, task_label=label, **kwargs),
                timeout=self.timeout,
            )
        except (ExtractionAuthError, ExtractionRateLimitError):
            raise
        except asyncio.TimeoutError:
            logger.error(f"[{label}] Extraction timed out after {self.timeout}s, treating as empty")
            return {}
        except ExtractionServiceError as e:
            logger.error(f"[{label}] Extraction failed, treating as empty: {e}")
            return {}

        bundle = coerce_bundle(raw)
        logger.info(f"[{label}] Extracted {len(bundle)} field(s)")
        return bundle

    async def extract_text(self, text: str, entity_type: str | None,
                           source: str = "the user's message") -> ExtractionBundle:
        if not text or not text.strip():
            return {}
        system = _BASE_SYSTEM_PROMPT.format(
            source=source, entity_type=entity_type or "not yet determined",
        )
        return await self._run("Extract text", prompt=text, system_prompt=system)

    async def extract_image(self, image_b64: str, mime_type: str, entity_type: str | None,
                            hint: str = "") -> ExtractionBundle:
        if mime_type not in IMAGE_MIME_TYPES or not image_b64:
            logger.warning(f"Unsupported image type for extraction: {mime_type}")
            return {}
        system = _IMAGE_SYSTEM_PROMPT.format(entity_type=entity_type or "not yet determined")
        prompt = hint or (
            "Please read all the text visible in this image and extract every "
            "KYC-relevant piece of information you can find."
        )
        return await self._run("Extract image", prompt=prompt, system_prompt=system, images=[image_b64])

    async def extract_document(self, content: bytes, mime_type: str, entity_type: str | None,
                               filename: str) -> ExtractionBundle:
        """Images go to the vision model; PDFs are read with pdfplumber first."""
        if mime_type in IMAGE_MIME_TYPES:
            image_b64 = base64.b64encode(content).decode("ascii")
            hint = (
                f'This is a KYC document named "{filename}". Extract all KYC-relevant '
                f"information from it. Current entity type: {entity_type or 'not yet determined'}."
            )
            return await self.extract_image(image_b64, mime_type, entity_type, hint=hint)

        if mime_type == "application/pdf":
            text = await asyncio.to_thread(extract_pdf_text, content, filename)
            if not text.strip():
                logger.info(f"{filename}: no text layer, nothing to extract")
                return {}
            return await self.extract_text(
                f'Document "{filename}":\n\n{text}', entity_type,
                source=f'the uploaded document "{filename}"',
            )

        return {}


# ═══════════════════════════════════════════════════
# SUMMARIES
# ═══════════════════════════════════════════════════

def _display(value: Any) -> str:
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, list):
        return ", ".join(str(v) for v in value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def format_extracted_for_agent(bundle: ExtractionBundle) -> str:
    """One bullet per extracted scalar, plus a person count."""
    entries = [
        (k, v) for k, v in bundle.items()
        if v is not None and k != "associated_persons" and k not in LIST_FIELDS
    ]
    persons = bundle.get("associated_persons") or []
    if not entries and not persons:
        return "No structured fields extracted from last message."

    lines = [f"  • {k.replace('_', ' ')}: {_display(v)}" for k, v in entries]
    if persons:
        lines.append(f"  • Associated persons: {len(persons)} person(s) provided")
    return "\n".join(lines)


def summarise_document_extraction(filename: str, bundle: ExtractionBundle) -> str | None:
    """Confirmation prompt for a document's extracted fields, or ``None`` if empty."""
    scalar_keys = [
        k for k, v in bundle.items()
        if k != "associated_persons" and v is not None and v != "" and v != []
    ]
    persons = bundle.get("associated_persons") or []
    if not scalar_keys and not persons:
        return None

    field_summary = "\n".join(
        f"  • **{k.replace('_', ' ')}**: {_display(bundle[k])}" for k in scalar_keys[:8]
    )
    person_summary = ""
    if persons:
        names = ", ".join(
            f"{p.get('person_full_name', '?')} ({p.get('person_role_type', '?')})" for p in persons
        )
        person_summary = f"\n  • **Associated persons**: {names}"

    return (
        f'I\'ve analysed **"{filename}"** and found the following information:\n\n'
        f"{field_summary}{person_summary}\n\n"
        f"**Can you confirm this relates to the entity being onboarded?** "
        f'Reply **"yes"** to save these details, or **"no"** to ignore them.'
    )
