"""Merge extraction bundles into a live record, and the pending-confirmation flow.

Merge rules:
  - scalars present and not ``None`` overwrite (last extraction wins)
  - list fields replace the stored list, and only when non-empty
  - associated persons are appended, never replaced or de-duplicated
  - a PEP declaration, a cash share above the threshold or a max cash
    amount above the threshold latches the case risk flag on

Pending confirmations:
  affirmative → merge the stored bundle, status confirmed, no fresh extraction
  negative    → discard the bundle, status rejected, no fresh extraction
  ambiguous   → stays pending, fresh extraction runs, prompt is re-surfaced
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from app.config import RISK_CASH_PCT_THRESHOLD, RISK_MAX_CASH_AMOUNT
from app.pipeline.intent import DEFAULT_CLASSIFIER, Intent, IntentClassifier
from app.pipeline.record import (
    LIST_FIELDS,
    SCALAR_FIELDS,
    AssociatedPerson,
    ExtractionBundle,
    PendingExtraction,
    Record,
    normalise_entity_type,
)

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    updated_fields: list[str] = field(default_factory=list)
    persons_added: int = 0
    risk_flag: bool = False
    risk_triggered: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.updated_fields or self.persons_added)


def _number(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def is_risk_signal(bundle: ExtractionBundle) -> bool:
    """True when the bundle alone should raise the case risk flag."""
    if bundle.get("pep_related") is True:
        return True
    if _number(bundle.get("payment_cash_pct")) > RISK_CASH_PCT_THRESHOLD:
        return True
    if _number(bundle.get("max_cash_amount")) > RISK_MAX_CASH_AMOUNT:
        return True
    return False


def reconcile(record: Record, bundle: ExtractionBundle, risk_flag: bool = False) -> ReconcileResult:
    """Merge ``bundle`` into ``record`` in place.

    ``risk_flag`` is the case's current flag; the returned flag is never
    lower than it.
    """
    result = ReconcileResult(risk_flag=risk_flag)
    if not bundle:
        return result

    for key in SCALAR_FIELDS:
        value = bundle.get(key)
        if value is None:
            continue
        if key == "entity_type":
            value = normalise_entity_type(value)
            if value is None:
                continue
        setattr(record, key, value)
        result.updated_fields.append(key)

    for key in LIST_FIELDS:
        values = bundle.get(key)
        if isinstance(values, list) and values:
            setattr(record, key, [str(v) for v in values])
            result.updated_fields.append(key)

    for person in bundle.get("associated_persons") or []:
        if isinstance(person, dict):
            record.associated_persons.append(AssociatedPerson.from_bundle(person))
            result.persons_added += 1

    if is_risk_signal(bundle):
        result.risk_triggered = not risk_flag
        result.risk_flag = True

    if result.changed:
        logger.info(
            f"Reconciled {len(result.updated_fields)} field(s), "
            f"{result.persons_added} person(s)"
            + (", risk flag raised" if result.risk_triggered else "")
        )
    return result


# ═══════════════════════════════════════════════════
# PENDING CONFIRMATION STATE MACHINE
# ═══════════════════════════════════════════════════

@dataclass
class PendingOutcome:
    intent: Intent
    pending: PendingExtraction
    merge_bundle: ExtractionBundle = field(default_factory=dict)
    suppress_extraction: bool = False
    reprompt: str | None = None


def resolve_pending(
    pending: PendingExtraction,
    message: str,
    classifier: IntentClassifier = DEFAULT_CLASSIFIER,
) -> PendingOutcome:
    """Apply the user's reply to a pending extraction.

    Transitions ``pending.status`` at most once; an already-resolved
    item is reported as ambiguous and left untouched.
    """
    if not pending.is_pending:
        return PendingOutcome(intent=Intent.AMBIGUOUS, pending=pending)

    intent = classifier.classify(message)

    if intent == Intent.AFFIRMATIVE:
        pending.status = "confirmed"
        pending.resolved_at = datetime.now().isoformat()
        logger.info(f"Pending {pending.kind} extraction {pending.id} confirmed")
        return PendingOutcome(
            intent=intent,
            pending=pending,
            merge_bundle=dict(pending.fields),
            suppress_extraction=True,
        )

    if intent == Intent.NEGATIVE:
        pending.status = "rejected"
        pending.resolved_at = datetime.now().isoformat()
        logger.info(f"Pending {pending.kind} extraction {pending.id} rejected")
        return PendingOutcome(intent=intent, pending=pending, suppress_extraction=True)

    return PendingOutcome(
        intent=Intent.AMBIGUOUS,
        pending=pending,
        reprompt=pending.confirmation_message,
    )
