"""Back-office endpoints: case list, edits, deletion, exports, documents.

Access control is left to the deployment (reverse proxy / network);
these routes assume a trusted caller.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from pydantic import BaseModel

from app.api.deps import get_storage, get_store, load_case_by_id, safe_json_response
from app.config import CASE_STATUSES, DOCUMENT_STATUSES
from app.pipeline.extraction import coerce_field
from app.pipeline.onboarding import rescore
from app.pipeline.record import ALL_RECORD_FIELDS, ENTITY_TYPES
from app.pipeline.validation import validate_extraction
from app.reports.export import cases_export, cases_to_csv, export_filename
from app.storage import LocalStorage
from app.store import CaseNotFoundError, CaseStore

router = APIRouter()
logger = logging.getLogger(__name__)


class CaseDataUpdate(BaseModel):
    status: str | None = None
    risk_flag: bool | None = None


class CaseUpdate(BaseModel):
    case_data: CaseDataUpdate | None = None
    counterparty: dict[str, Any] | None = None


class DocumentUpdate(BaseModel):
    status: str | None = None
    notes: str | None = None


_ENTITY_TYPE_BY_NAME = {e.lower(): e for e in ENTITY_TYPES}


def _is_blank(value: Any) -> bool:
    return value is None or value == [] or (isinstance(value, str) and not value.strip())


def normalise_edits(raw: dict[str, Any]) -> dict[str, Any]:
    """Coerce counterparty edits to their catalogue kinds; blank clears a field.

    Lists accept ``"Gold, Silver"``.  Unknown field names or an unknown
    entity type give 400; a value of the wrong kind gives 422.
    """
    unknown = sorted(k for k in raw if k not in ALL_RECORD_FIELDS)
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown field(s): {', '.join(unknown)}")

    edits: dict[str, Any] = {}
    wrong_kind: list[str] = []
    for key, value in raw.items():
        if _is_blank(value):
            edits[key] = None
        elif key == "entity_type":
            entity_type = _ENTITY_TYPE_BY_NAME.get(str(value).strip().lower())
            if entity_type is None:
                raise HTTPException(status_code=400, detail=f"Invalid entity type: {value}")
            edits[key] = entity_type
        else:
            coerced = coerce_field(key, value)
            if coerced is None:
                wrong_kind.append(key)
            else:
                edits[key] = coerced

    if wrong_kind:
        raise HTTPException(status_code=422, detail={
            "error": "Invalid field values",
            "errors": [{"field": k, "message": "Value has the wrong type for this field"} for k in wrong_kind],
        })
    return edits


def _summary(case) -> dict:
    return {
        "id": case.case_id,
        "token": case.token,
        "status": case.status,
        "mandatory_percent": case.mandatory_percent,
        "docs_percent": case.docs_percent,
        "completion_percent": case.completion_percent,
        "entity_type": case.entity_type,
        "registered_name": case.record.registered_name,
        "risk_flag": case.risk_flag,
        "submitted_to_compliance": case.submitted_to_compliance,
        "submitted_at": case.submitted_at,
        "created_at": case.created_at,
        "updated_at": case.updated_at,
        "message_count": len(case.messages),
        "document_count": len(case.record.documents),
    }


# ═══════════════════════════════════════════════════
# CASES
# ═══════════════════════════════════════════════════

@router.get("/cases")
async def list_cases(limit: int = 50, store: CaseStore = Depends(get_store)):
    cases = store.list_cases()[:max(limit, 0)]
    return {"cases": [_summary(c) for c in cases], "count": len(cases)}


@router.get("/cases/{case_id}")
async def get_case(case_id: str, store: CaseStore = Depends(get_store)):
    case = await load_case_by_id(store, case_id)
    return safe_json_response({"case": case.to_dict(), "summary": _summary(case)})


@router.patch("/cases/{case_id}")
async def update_case(case_id: str, update: CaseUpdate, store: CaseStore = Depends(get_store)):
    """Edit counterparty fields and/or case flags, then rescore.

    An explicit ``case_data.status`` wins over the computed status.
    """
    case_data = update.case_data or CaseDataUpdate()
    if case_data.status is not None and case_data.status not in CASE_STATUSES:
        raise HTTPException(status_code=400, detail=f"Invalid status: {case_data.status}")

    edits = normalise_edits(update.counterparty or {})
    validation = validate_extraction({k: v for k, v in edits.items() if v is not None})
    if validation.errors:
        raise HTTPException(status_code=422, detail={
            "error": "Invalid field values",
            "errors": [e.to_dict() for e in validation.errors],
        })

    async with store.lock(case_id):
        case = await load_case_by_id(store, case_id)
        for key, value in edits.items():
            setattr(case.record, key, value)

        progress = rescore(case)
        if case_data.status is not None:
            case.status = case_data.status
        if case_data.risk_flag is not None:
            case.risk_flag = case_data.risk_flag
        store.save(case)

    logger.info(f"Admin: case {case_id} updated ({len(edits)} field(s))")
    return {
        "success": True,
        "status": case.status,
        "progress": progress.to_dict(),
        "warnings": [w.to_dict() for w in validation.warnings],
    }


@router.delete("/cases/{case_id}")
async def delete_case(
    case_id: str,
    store: CaseStore = Depends(get_store),
    storage: LocalStorage = Depends(get_storage),
):
    """Delete stored files first, then the case itself."""
    async with store.lock(case_id):
        case = await load_case_by_id(store, case_id)
        try:
            removed = storage.delete_prefix(case.case_id)
        except OSError as e:
            logger.warning(f"Admin: file cleanup for case {case_id} skipped: {e}")
            removed = 0
        try:
            store.delete(case.case_id)
        except CaseNotFoundError:
            raise HTTPException(status_code=404, detail="Case not found")
    return {"success": True, "files_removed": removed}


@router.get("/export")
async def export_cases(format: str = "json", id: str | None = None, store: CaseStore = Depends(get_store)):
    """Bulk export as JSON or CSV; ``id`` narrows it to one case."""
    if format not in ("json", "csv"):
        raise HTTPException(status_code=400, detail="format must be 'json' or 'csv'")

    if id:
        cases = [await load_case_by_id(store, id)]
    else:
        cases = store.list_cases()
    filename = export_filename("kyc", format, id)
    disposition = {"Content-Disposition": f'attachment; filename="{filename}"'}

    if format == "csv":
        return Response(content=cases_to_csv(cases), media_type="text/csv", headers=disposition)
    return safe_json_response(cases_export(cases), headers=disposition)


# ═══════════════════════════════════════════════════
# DOCUMENTS
# ═══════════════════════════════════════════════════

@router.get("/documents/{case_id}/{doc_id}")
async def download_document(
    case_id: str,
    doc_id: str,
    store: CaseStore = Depends(get_store),
    storage: LocalStorage = Depends(get_storage),
):
    case = await load_case_by_id(store, case_id)
    document = case.find_document(doc_id)
    if document is None:
        raise HTTPException(status_code=404, detail="Document not found")
    try:
        content = storage.get(document.storage_path)
    except (FileNotFoundError, ValueError):
        raise HTTPException(status_code=404, detail="Document file missing from storage")

    return Response(
        content=content,
        media_type=document.mime_type or "application/octet-stream",
        headers={
            "Content-Disposition": f'attachment; filename="{document.original_name}"',
            "Cache-Control": "no-store",
        },
    )


@router.patch("/documents/{case_id}/{doc_id}")
async def update_document(
    case_id: str,
    doc_id: str,
    update: DocumentUpdate,
    store: CaseStore = Depends(get_store),
):
    """Reviewer status / notes. Status does not affect the documents bar."""
    if update.status is not None and update.status not in DOCUMENT_STATUSES:
        raise HTTPException(status_code=400, detail=f"Invalid document status: {update.status}")

    async with store.lock(case_id):
        case = await load_case_by_id(store, case_id)
        document = case.find_document(doc_id)
        if document is None:
            raise HTTPException(status_code=404, detail="Document not found")
        if update.status is not None:
            document.status = update.status
        if update.notes is not None:
            document.notes = update.notes or None
        case.touch()
        store.save(case)

    return {"success": True, "document": document.to_public_dict()}
