"""Onboarding turn orchestration.

One chat turn, in order:

  1. pending confirmation  → resolve the oldest pending item (yes / no / unclear)
  2. fresh extraction      → text + pasted image in parallel (skipped after yes/no)
  3. validate → sanitise   → hard-invalid fields never reach the record
  4. reconcile             → merge into the record, latch the risk flag
  5. enrichment            → propose a DOB from an SA ID as a pending item
  6. score                 → refresh stored percentages and status
  7. reply                 → deterministic assistant message

The caller owns persistence and must serialise turns per case.
"""

import asyncio
import logging
from dataclasses import dataclass, field

from app.config import COMPLIANCE_EMAIL, MAX_EXTRACT_BYTES
from app.pipeline.enrichment import EnrichmentSuggestion, detect_enrichments
from app.pipeline.extraction import (
    LLMExtractor,
    format_extracted_for_agent,
    summarise_document_extraction,
)
from app.pipeline.field_rules import FIELD_RULE_BY_KEY
from app.pipeline.intent import (
    DEFAULT_CLASSIFIER,
    Intent,
    IntentClassifier,
    detect_confusion,
    detect_frustration,
)
from app.pipeline.llm_client import ExtractionServiceError
from app.pipeline.progress import DualProgress, format_progress_for_agent, score
from app.pipeline.reconciliation import PendingOutcome, reconcile, resolve_pending
from app.pipeline.record import (
    Case,
    DocumentRecord,
    ExtractionBundle,
    PendingExtraction,
)
from app.pipeline.validation import ValidationResult, sanitise_extraction, validate_extraction

logger = logging.getLogger(__name__)

WELCOME_MESSAGE = """Hi there! I'm **Alex**, your KYC onboarding specialist at MetCon. 👋

I'm here to make the compliance process as smooth as possible. Under FICA (South Africa's Financial Intelligence Centre Act), we're required to verify the identity of everyone we do business with, but let's make this feel like a conversation, not paperwork.

**A few things to know before we begin:**

- 🔗 **Collaborative onboarding**: You can share this page's link with as many colleagues as you like. Everyone contributes to the same onboarding.

- 📎 **Upload documents**: Upload documents (company registration, ID copies, bank letters, etc.) at any time. I'll read them, extract the information, and ask you to confirm.

- 💾 **Your progress is saved automatically**: You can close this page and return anytime using the same link.

To get started: **Are you completing this onboarding for a company/business, or as an individual?**

*Feel free to share multiple details at once, I'll sort them out!*"""

EXTRACTABLE_MIME_PREFIXES = ("image/",)


@dataclass
class TurnResult:
    reply: str
    progress: DualProgress
    extracted: ExtractionBundle = field(default_factory=dict)
    validation: ValidationResult = field(default_factory=ValidationResult)
    enrichments: list[EnrichmentSuggestion] = field(default_factory=list)
    pending_outcome: PendingOutcome | None = None
    committed_from_pending: bool = False

    def to_dict(self) -> dict:
        return {
            "reply": self.reply,
            "progress": self.progress.to_dict(),
            "extracted_fields": dict(self.extracted),
            "validation": self.validation.to_dict(),
            "enrichments": [e.to_dict() for e in self.enrichments],
            "pending_intent": self.pending_outcome.intent.value if self.pending_outcome else None,
            "committed_from_pending": self.committed_from_pending,
        }


def _label(key: str) -> str:
    rule = FIELD_RULE_BY_KEY.get(key)
    return rule["label"] if rule else key.replace("_", " ")


def apply_progress(case: Case, progress: DualProgress):
    """Copy a fresh score onto the case; a submitted case keeps its status."""
    case.mandatory_percent = progress.mandatory_percent
    case.docs_percent = progress.docs_percent
    case.completion_percent = progress.overall
    if not case.submitted_to_compliance:
        case.status = progress.status
    case.touch()


def rescore(case: Case) -> DualProgress:
    progress = score(case.record)
    apply_progress(case, progress)
    return progress


# ═══════════════════════════════════════════════════
# ENRICHMENT → PENDING
# ═══════════════════════════════════════════════════

def _propose_enrichments(case: Case) -> list[EnrichmentSuggestion]:
    """Turn new DOB suggestions into pending items, once per ID number."""
    id_number = case.record.registration_or_id_number
    suggestions = detect_enrichments(id_number, case.record.date_of_birth)
    proposed = []
    for suggestion in suggestions:
        already_seen = any(
            p.kind == "enrichment"
            and p.source_name == id_number
            and (p.is_pending or p.status == "rejected")
            for p in case.pending_extractions
        )
        if already_seen:
            continue
        case.pending_extractions.append(PendingExtraction(
            kind="enrichment",
            fields={suggestion.field: suggestion.value},
            confirmation_message=suggestion.confirmation_prompt,
            source_name=id_number or "",
        ))
        proposed.append(suggestion)
    return proposed


# ═══════════════════════════════════════════════════
# REPLY
# ═══════════════════════════════════════════════════

def _build_reply(
    case: Case,
    progress: DualProgress,
    extracted: ExtractionBundle,
    validation: ValidationResult,
    outcome: PendingOutcome | None,
    enrichments: list[EnrichmentSuggestion],
    frustrated: bool,
) -> str:
    parts: list[str] = []

    if outcome is not None:
        pending = outcome.pending
        if outcome.intent == Intent.AFFIRMATIVE:
            if pending.kind == "document":
                parts.append(f"✅ Thanks, I've saved the details from **{pending.source_name}**.")
            else:
                parts.append("✅ Thanks, that's confirmed and saved.")
        elif outcome.intent == Intent.NEGATIVE:
            parts.append("No problem, I've discarded those details.")

    captured = [k for k in extracted if k != "associated_persons"]
    persons = extracted.get("associated_persons") or []
    if captured or persons:
        summary = ", ".join(_label(k) for k in captured[:6])
        if len(captured) > 6:
            summary += f" and {len(captured) - 6} more"
        if persons:
            people = f"{len(persons)} associated person(s)"
            summary = f"{summary} and {people}" if summary else people
        parts.append(f"Got it, I've captured: {summary}.")

    if validation.errors:
        fields = ", ".join(_label(e.field.split("[")[0]) for e in validation.errors)
        parts.append(f"I couldn't quite use the value given for: {fields}. Could you double-check it?")

    if outcome is not None and outcome.reprompt:
        parts.append(outcome.reprompt)
    else:
        prompts = [s.confirmation_prompt for s in enrichments]
        queued = case.oldest_pending()
        if queued is not None and queued.confirmation_message not in prompts:
            prompts.insert(0, queued.confirmation_message)
        parts.extend(prompts)

    if progress.can_submit:
        parts.append(
            f"**Mandatory information is complete ({progress.mandatory_percent}%).** "
            f"You can submit to compliance now, or keep adding details and documents "
            f"(documents: {progress.docs_percent}%)."
        )
    else:
        next_up = progress.gate_missing[:3] or progress.mandatory_missing[:3]
        if next_up:
            asks = "; ".join(m.label for m in next_up)
            parts.append(f"Next, could you tell me: {asks}?")

    if frustrated:
        parts.append(
            f"If you'd like personal assistance, please email **{COMPLIANCE_EMAIL}** and include "
            f"your Case ID: `{case.token}` so our team can help you directly."
        )

    return "\n\n".join(parts)


# ═══════════════════════════════════════════════════
# CHAT TURN
# ═══════════════════════════════════════════════════

async def process_message(
    case: Case,
    message: str,
    extractor: LLMExtractor,
    image_b64: str | None = None,
    image_mime: str | None = None,
    classifier: IntentClassifier = DEFAULT_CLASSIFIER,
) -> TurnResult:
    """Run one onboarding turn against ``case`` (mutated in place).

    Raises ``ValueError`` for an empty turn.  Auth / rate-limit failures of
    the extraction service propagate; the caller then discards the case
    instead of saving it.
    """
    text = (message or "").strip()
    if not text and not image_b64:
        raise ValueError("Message cannot be empty")

    frustrated = detect_frustration(text) or detect_confusion(text)
    progress_before = case.completion_percent
    case.add_message("user", text)

    # ── 1. Pending confirmation ──
    outcome: PendingOutcome | None = None
    committed = False
    pending = case.oldest_pending()
    if pending is not None:
        outcome = resolve_pending(pending, text, classifier)

    # ── 2. Fresh extraction ──
    raw: ExtractionBundle = {}
    if outcome is None or not outcome.suppress_extraction:
        entity_type = case.entity_type
        text_task = extractor.extract_text(text, entity_type) if text else _empty()
        image_task = (
            extractor.extract_image(image_b64, image_mime or "", entity_type)
            if image_b64 else _empty()
        )
        text_bundle, image_bundle = await asyncio.gather(text_task, image_task)
        raw = {**text_bundle, **image_bundle}

    # ── 3. Validate + sanitise ──
    validation = validate_extraction(raw)
    extracted = sanitise_extraction(raw, validation)

    # ── 4. Reconcile ──
    if outcome is not None and outcome.merge_bundle:
        merged = reconcile(case.record, outcome.merge_bundle, case.risk_flag)
        case.risk_flag = merged.risk_flag
        committed = True
    result = reconcile(case.record, extracted, case.risk_flag)
    case.risk_flag = result.risk_flag

    # ── 5. Enrichment ──
    enrichments = _propose_enrichments(case)

    # ── 6. Score ──
    progress = rescore(case)

    # ── 7. Reply ──
    reply = _build_reply(case, progress, extracted, validation, outcome, enrichments, frustrated)
    case.add_message("assistant", reply, metadata={
        "extracted_fields": sorted(extracted.keys()),
        "extraction_summary": format_extracted_for_agent(extracted),
        "progress_summary": format_progress_for_agent(progress),
        "validation_errors": [e.to_dict() for e in validation.errors],
        "validation_warnings": [w.to_dict() for w in validation.warnings],
        "enrichments": [e.type for e in enrichments],
        "progress_before": progress_before,
        "progress_after": progress.overall,
        "committed_from_pending": committed,
    })

    logger.info(
        f"Case {case.case_id}: turn done, {len(extracted)} field(s) extracted, "
        f"mandatory={progress.mandatory_percent}% docs={progress.docs_percent}% status={case.status}"
    )
    return TurnResult(
        reply=reply,
        progress=progress,
        extracted=extracted,
        validation=validation,
        enrichments=enrichments,
        pending_outcome=outcome,
        committed_from_pending=committed,
    )


async def _empty() -> ExtractionBundle:
    return {}


# ═══════════════════════════════════════════════════
# DOCUMENT ANALYSIS
# ═══════════════════════════════════════════════════

def can_extract(mime_type: str, size: int) -> bool:
    is_supported = mime_type == "application/pdf" or mime_type.startswith(EXTRACTABLE_MIME_PREFIXES)
    return is_supported and size < MAX_EXTRACT_BYTES


async def extract_document_pending(
    document: DocumentRecord,
    content: bytes,
    entity_type: str | None,
    extractor: LLMExtractor,
) -> PendingExtraction | None:
    """Extract an upload and build its confirmation item; no case access.

    Failures are logged and yield ``None``; an upload never fails because
    its analysis did.
    """
    if not can_extract(document.mime_type, len(content)):
        return None
    try:
        raw = await extractor.extract_document(content, document.mime_type, entity_type, document.original_name)
    except ExtractionServiceError as e:
        logger.warning(f"Document {document.id}: analysis skipped ({type(e).__name__})")
        return None

    validation = validate_extraction(raw)
    bundle = sanitise_extraction(raw, validation)
    message = summarise_document_extraction(document.original_name, bundle)
    if message is None:
        logger.info(f"Document {document.id}: nothing KYC-relevant found")
        return None

    return PendingExtraction(
        kind="document",
        fields=dict(bundle),
        confirmation_message=message,
        source_name=document.original_name,
        document_id=document.id,
    )


def attach_document_pending(case: Case, pending: PendingExtraction):
    case.pending_extractions.append(pending)
    case.add_message("assistant", pending.confirmation_message, metadata={
        "type": "document_extraction",
        "document_id": pending.document_id,
    })
    case.touch()


async def analyse_document(
    case: Case,
    document: DocumentRecord,
    content: bytes,
    extractor: LLMExtractor,
) -> PendingExtraction | None:
    """Extract ``document`` and queue the confirmation on ``case``."""
    pending = await extract_document_pending(document, content, case.entity_type, extractor)
    if pending is not None:
        attach_document_pending(case, pending)
    return pending
