"""Dual progress scoring: mandatory-information bar and documents bar.

``score(record)`` is pure, synchronous and total: it never raises for a
structurally valid Record and always returns a complete ``DualProgress``.

  Bar A (mandatory)  submit-gate items filled / applicable gate items
  Bar B (documents)  relevant checklist types uploaded / relevant types
  overall            round((A + B) / 2)

``can_submit`` and Bar A come from the same pass over the gate, so a
100 % Bar A is exactly ``can_submit``.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from app.config import TRACE_ENABLED
from app.pipeline.field_rules import (
    COMPANY_CONTACT_GATE,
    MINIMUM_REQUIRED,
    PERSON_GATE,
    PHONE_GATE,
    SECTION_APPLICANT,
    applicable_fields,
    relevant_checklist,
)
from app.pipeline.record import Record, normalise_entity_type

logger = logging.getLogger(__name__)


def _trace(msg: str):
    """Emit a trace-level debug message when KYC_TRACE is enabled."""
    if TRACE_ENABLED:
        logger.debug(f"[TRACE] {msg}")


@dataclass
class MissingField:
    field: str
    label: str
    section: str
    priority: int = 1

    def to_dict(self) -> dict:
        return {
            "field": self.field,
            "label": self.label,
            "section": self.section,
            "priority": self.priority,
        }


@dataclass
class SectionProgress:
    label: str
    filled: int
    total: int
    percent: int

    def to_dict(self) -> dict:
        return {
            "label": self.label,
            "filled": self.filled,
            "total": self.total,
            "percent": self.percent,
        }


@dataclass
class DualProgress:
    mandatory_percent: int = 0
    docs_percent: int = 0
    overall: int = 0
    status: str = "in_progress"
    can_submit: bool = False
    mandatory_missing: list[MissingField] = field(default_factory=list)
    gate_missing: list[MissingField] = field(default_factory=list)
    docs_missing: list[str] = field(default_factory=list)
    sections: list[SectionProgress] = field(default_factory=list)
    has_required_person: bool = True
    docs_uploaded: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "mandatory_percent": self.mandatory_percent,
            "docs_percent": self.docs_percent,
            "overall": self.overall,
            "status": self.status,
            "can_submit": self.can_submit,
            "mandatory_missing": [m.to_dict() for m in self.mandatory_missing],
            "gate_missing": [m.to_dict() for m in self.gate_missing],
            "docs_missing": list(self.docs_missing),
            "sections": [s.to_dict() for s in self.sections],
            "has_required_person": self.has_required_person,
            "docs_uploaded": list(self.docs_uploaded),
        }


def has_value(value: Any) -> bool:
    """Not ``None``; strings must be non-blank and lists non-empty. ``False`` counts."""
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple)):
        return len(value) > 0
    return True


def has_qualifying_person(record: Record) -> bool:
    """At least one associated person with both a name and a role."""
    return any(
        has_value(p.person_full_name) and has_value(p.person_role_type)
        for p in record.associated_persons
    )


def _percent(filled: int, total: int) -> int:
    # Python's round() is banker's rounding; scores round half up
    if total <= 0:
        return 0
    return int(filled * 100 / total + 0.5)


def score(record: Record) -> DualProgress:
    """Compute the dual progress for a fully materialised record."""
    entity_type = normalise_entity_type(record.entity_type)
    is_company = entity_type == "Company"
    qualifying_person = has_qualifying_person(record)

    # ── Bar A: submit gate ──
    gate_missing: list[MissingField] = []
    gate_total = len(MINIMUM_REQUIRED) + 1   # +1 for phone
    gate_filled = 0

    for item in MINIMUM_REQUIRED:
        value = entity_type if item["key"] == "entity_type" else record.get(item["key"])
        if has_value(value):
            gate_filled += 1
        else:
            gate_missing.append(MissingField(item["key"], item["label"], SECTION_APPLICANT))

    if any(has_value(record.get(k)) for k in PHONE_GATE["any_of"]):
        gate_filled += 1
    else:
        gate_missing.append(MissingField(PHONE_GATE["key"], PHONE_GATE["label"], SECTION_APPLICANT))

    if is_company:
        gate_total += 2
        if has_value(record.contact_person_name):
            gate_filled += 1
        else:
            gate_missing.append(MissingField(
                COMPANY_CONTACT_GATE["key"], COMPANY_CONTACT_GATE["label"], SECTION_APPLICANT,
            ))
        if qualifying_person:
            gate_filled += 1
        else:
            gate_missing.append(MissingField(
                PERSON_GATE["key"], PERSON_GATE["label"], PERSON_GATE["section"],
            ))

    mandatory_percent = _percent(gate_filled, gate_total)
    can_submit = not gate_missing

    # ── Bar B: documents ──
    uploaded_types: list[str] = []
    for doc in record.documents:
        if doc.doc_type and doc.doc_type not in uploaded_types:
            uploaded_types.append(doc.doc_type)

    relevant = relevant_checklist(entity_type)
    docs_done = sum(1 for d in relevant if d["doc_type"] in uploaded_types)
    docs_percent = _percent(docs_done, len(relevant))
    docs_missing = [d["label"] for d in relevant if d["doc_type"] not in uploaded_types]

    # ── Section breakdown ──
    values = {"entity_type": entity_type}
    for key in ("pep_related", "holds_license"):
        values[key] = record.get(key)

    section_counts: dict[str, list[int]] = {}
    all_missing: list[MissingField] = []
    for rule in applicable_fields(entity_type, values):
        counts = section_counts.setdefault(rule["section"], [0, 0])
        counts[1] += 1
        value = entity_type if rule["key"] == "entity_type" else record.get(rule["key"])
        if has_value(value):
            counts[0] += 1
        else:
            all_missing.append(MissingField(
                rule["key"], rule["label"], rule["section"], rule["priority"],
            ))

    if is_company:
        counts = section_counts.setdefault(PERSON_GATE["section"], [0, 0])
        counts[1] += 1
        if qualifying_person:
            counts[0] += 1
        else:
            all_missing.append(MissingField(
                PERSON_GATE["key"], PERSON_GATE["label"], PERSON_GATE["section"],
            ))

    sections = [
        SectionProgress(
            label=label,
            filled=filled,
            total=total,
            percent=_percent(filled, total) if total > 0 else 100,
        )
        for label, (filled, total) in section_counts.items()
    ]

    overall = int((mandatory_percent + docs_percent) / 2 + 0.5)
    has_required_person = (not is_company) or qualifying_person

    # ── Status (first match wins) ──
    if overall >= 100 and has_required_person:
        status = "complete"
    elif mandatory_percent >= 95 or record.pep_related is True:
        status = "needs_review"
    else:
        status = "in_progress"

    all_missing.sort(key=lambda m: m.priority)   # stable
    mandatory_missing = [m for m in all_missing if m.priority == 1]

    _trace(
        f"score: entity={entity_type} gate={gate_filled}/{gate_total} "
        f"docs={docs_done}/{len(relevant)} status={status}"
    )

    return DualProgress(
        mandatory_percent=mandatory_percent,
        docs_percent=docs_percent,
        overall=overall,
        status=status,
        can_submit=can_submit,
        mandatory_missing=mandatory_missing,
        gate_missing=gate_missing,
        docs_missing=docs_missing,
        sections=sections,
        has_required_person=has_required_person,
        docs_uploaded=uploaded_types,
    )


def format_progress_for_agent(progress: DualProgress) -> str:
    """Human-readable progress summary for the chat reply / agent context."""
    lines = [
        f"**Mandatory Information: {progress.mandatory_percent}%** | "
        f"**Documents Supplied: {progress.docs_percent}%**",
        f"Status: {progress.status.replace('_', ' ')} | "
        f"Can submit to compliance: {'Yes' if progress.can_submit else 'No'}",
    ]

    lines.append("\nSection breakdown:")
    for s in progress.sections:
        icon = "✓" if s.percent == 100 else "◑" if s.percent > 0 else "○"
        lines.append(f"  {icon} {s.label}: {s.filled}/{s.total}")

    if progress.mandatory_missing:
        lines.append("\nTop missing mandatory fields:")
        for m in progress.mandatory_missing[:5]:
            lines.append(f"  - {m.label} [{m.section}]")

    if progress.docs_missing:
        lines.append(f"\nMissing documents ({len(progress.docs_missing)}):")
        for d in progress.docs_missing[:4]:
            lines.append(f"  - {d}")

    return "\n".join(lines)
