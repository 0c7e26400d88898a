"""Compliance exports: a single case as JSON, many cases as JSON or CSV.

Exports never include storage keys; documents are listed through
``DocumentRecord.to_public_dict``.
"""

import csv
import io
import logging
from datetime import datetime

from app.pipeline.record import Case

logger = logging.getLogger(__name__)

SYSTEM_NAME = "MetCon KYC Onboarding"

CSV_COLUMNS = [
    "case_id", "token", "status", "mandatory_percent", "docs_percent", "entity_type",
    "risk_flag", "created_at",
    "registered_name", "registration_or_id_number", "business_address", "email_address",
    "business_phone_work", "business_phone_cell", "website", "tax_number", "vat_number",
    "contact_person_name", "contact_person_email",
    "pep_related", "bank_name", "account_name", "account_number", "branch_code",
    "source_of_funds_description", "business_activity_description",
    "holds_license", "subject_to_aml_law", "has_anti_bribery_policy",
    "payment_method_primary", "popia_consent", "info_true_declaration",
    "submitted_to_compliance", "message_count", "document_count", "associated_person_count",
]

_CASE_COLUMNS = {
    "case_id", "token", "status", "mandatory_percent", "docs_percent",
    "risk_flag", "created_at", "submitted_to_compliance",
}


def _yes_no(value) -> str:
    if value is None:
        return ""
    return "Yes" if value else "No"


def _cell(value) -> str:
    if isinstance(value, bool):
        return _yes_no(value)
    if value is None:
        return ""
    return str(value)


def export_filename(prefix: str, extension: str, case_id: str | None = None) -> str:
    stamp = datetime.now().strftime("%Y-%m-%d")
    if case_id:
        return f"{prefix}-case-{case_id[:8]}-{stamp}.{extension}"
    return f"{prefix}-cases-{stamp}.{extension}"


def case_export(case: Case) -> dict:
    """Full single-case export for compliance review."""
    messages = case.messages
    return {
        "export_metadata": {
            "exported_at": datetime.now().isoformat(),
            "case_token": case.token,
            "purpose": "FICA KYC Compliance Review",
            "system": SYSTEM_NAME,
        },
        "case_summary": {
            "id": case.case_id,
            "status": case.status,
            "completion_percent": case.completion_percent,
            "mandatory_percent": case.mandatory_percent,
            "docs_percent": case.docs_percent,
            "entity_type": case.entity_type,
            "risk_flag": case.risk_flag,
            "created_at": case.created_at,
            "updated_at": case.updated_at,
        },
        "counterparty": _counterparty(case),
        "documents": [d.to_public_dict() for d in case.record.documents],
        "conversation_summary": {
            "message_count": len(messages),
            "first_message_at": messages[0]["timestamp"] if messages else None,
            "last_message_at": messages[-1]["timestamp"] if messages else None,
        },
    }


def _counterparty(case: Case) -> dict:
    data = case.record.to_dict()
    data.pop("documents", None)
    return data


def cases_export(cases: list[Case]) -> dict:
    """Bulk JSON export (admin)."""
    exported = []
    for case in cases:
        exported.append({
            "id": case.case_id,
            "token": case.token,
            "status": case.status,
            "mandatory_percent": case.mandatory_percent,
            "docs_percent": case.docs_percent,
            "completion_percent": case.completion_percent,
            "entity_type": case.entity_type,
            "risk_flag": case.risk_flag,
            "submitted_to_compliance": case.submitted_to_compliance,
            "submitted_at": case.submitted_at,
            "created_at": case.created_at,
            "counterparty": _counterparty(case),
            "documents": [d.to_public_dict() for d in case.record.documents],
            "messages": [
                {"role": m.get("role"), "content": m.get("content"), "timestamp": m.get("timestamp")}
                for m in case.messages
            ],
        })
    return {
        "export_metadata": {
            "exported_at": datetime.now().isoformat(),
            "total_cases": len(cases),
            "system": SYSTEM_NAME,
        },
        "cases": exported,
    }


def cases_to_csv(cases: list[Case]) -> str:
    """One row per case; booleans as Yes/No, blanks for unset values."""
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for case in cases:
        row = []
        for column in CSV_COLUMNS:
            if column in _CASE_COLUMNS:
                row.append(_cell(getattr(case, column)))
            elif column == "entity_type":
                row.append(case.entity_type or "")
            elif column == "message_count":
                row.append(str(len(case.messages)))
            elif column == "document_count":
                row.append(str(len(case.record.documents)))
            elif column == "associated_person_count":
                row.append(str(len(case.record.associated_persons)))
            else:
                row.append(_cell(case.record.get(column)))
        writer.writerow(row)
    logger.info(f"CSV export: {len(cases)} case(s)")
    return buf.getvalue()
