"""Document upload, listing and checklist endpoints.

Uploads are stored immediately and counted toward the documents bar
straight away; reading the document with the extraction model happens in
a background task that queues a confirmation prompt on the case.
"""

import logging
import re
import time
from pathlib import Path, PurePosixPath

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, UploadFile

from app.api.deps import get_extractor, get_storage, get_store, load_case_by_id, load_case_by_token
from app.config import ALLOWED_MIME_TYPES, MAX_UPLOAD_BYTES
from app.pipeline.extraction import LLMExtractor
from app.pipeline.field_rules import DOC_TYPE_LABELS, doc_type_label, relevant_checklist
from app.pipeline.onboarding import attach_document_pending, extract_document_pending, rescore
from app.pipeline.record import DocumentRecord
from app.storage import LocalStorage
from app.store import CaseNotFoundError, CaseStore

router = APIRouter()
logger = logging.getLogger(__name__)

_UNSAFE_CHARS_RE = re.compile(r'[^a-zA-Z0-9._\-]')


def _sanitize_filename(raw: str) -> str:
    """Strip path components and replace anything outside ``[A-Za-z0-9._-]``."""
    # Handle both Windows and POSIX paths embedded in filenames
    name = PurePosixPath(raw).name
    name = Path(name).name  # also handles backslashes
    name = _UNSAFE_CHARS_RE.sub("_", name)
    return name or "document"


async def _read_limited(file: UploadFile, safe_name: str) -> bytes:
    chunks: list[bytes] = []
    total = 0
    while True:
        chunk = await file.read(1024 * 1024)  # 1 MB at a time
        if not chunk:
            break
        total += len(chunk)
        if total > MAX_UPLOAD_BYTES:
            raise HTTPException(
                status_code=413,
                detail=f"File too large: {safe_name} exceeds {MAX_UPLOAD_BYTES // (1024 * 1024)} MB limit",
            )
        chunks.append(chunk)
    return b"".join(chunks)


async def analyse_upload(
    store: CaseStore,
    case_id: str,
    document: DocumentRecord,
    content: bytes,
    entity_type: str | None,
    extractor: LLMExtractor,
):
    """Background task: extract outside the lock, then attach under it."""
    try:
        pending = await extract_document_pending(document, content, entity_type, extractor)
        if pending is None:
            return
        async with store.lock(case_id):
            try:
                case = store.load(case_id)
            except CaseNotFoundError:
                logger.info(f"Case {case_id} deleted before analysis of {document.id} finished")
                return
            attach_document_pending(case, pending)
            store.save(case)
        logger.info(f"Case {case_id}: queued confirmation for document {document.id}")
    except Exception as e:
        logger.error(f"Case {case_id}: background analysis of {document.id} failed: {e}")


@router.post("/{token}")
async def upload_document(
    token: str,
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    doc_type: str = Form("other"),
    associated_person_id: str | None = Form(None),
    store: CaseStore = Depends(get_store),
    storage: LocalStorage = Depends(get_storage),
    extractor: LLMExtractor = Depends(get_extractor),
):
    """Upload one KYC document (PDF or image) to a case.

    Security: 50 MB limit, mime allow-list, sanitised filename, storage key
    never returned to the client.
    """
    found = await load_case_by_token(store, token)

    if not file.filename:
        raise HTTPException(status_code=400, detail="No file provided")
    safe_name = _sanitize_filename(file.filename)

    mime_type = (file.content_type or "").lower()
    if mime_type not in ALLOWED_MIME_TYPES:
        raise HTTPException(
            status_code=415,
            detail="Unsupported file type. Please upload PDF, JPEG, PNG, or WebP.",
        )
    if doc_type not in DOC_TYPE_LABELS:
        raise HTTPException(status_code=400, detail="Invalid document type")

    content = await _read_limited(file, safe_name)
    if not content:
        raise HTTPException(status_code=400, detail=f"Empty file: {safe_name}")

    async with store.lock(found.case_id):
        case = await load_case_by_id(store, found.case_id)
        if associated_person_id and not any(
            p.id == associated_person_id for p in case.record.associated_persons
        ):
            raise HTTPException(status_code=400, detail="Unknown associated person")

        storage_key = f"{case.case_id}/{int(time.time() * 1000)}-{safe_name}"
        storage.put(storage_key, content, mime_type)

        document = DocumentRecord(
            doc_type=doc_type,
            original_name=safe_name,
            storage_path=storage_key,
            file_size=len(content),
            mime_type=mime_type,
            associated_person_id=associated_person_id or None,
        )
        case.record.documents.append(document)

        ai_message = (
            f"📎 **Document received**: {doc_type_label(doc_type)}: `{safe_name}` "
            f"({len(content) / 1024:.1f} KB). The AI is reading this document and will "
            f"confirm any extracted information shortly."
        )
        case.add_message("assistant", ai_message, metadata={"type": "document_received", "document_id": document.id})
        progress = rescore(case)
        store.save(case)
        entity_type = case.entity_type

    logger.info(f"Case {case.case_id}: uploaded {doc_type} ({len(content):,} bytes)")

    background_tasks.add_task(
        analyse_upload, store, case.case_id, document, content, entity_type, extractor,
    )

    return {
        "success": True,
        "document": document.to_public_dict(),
        "ai_message": ai_message,
        "mandatory_percent": progress.mandatory_percent,
        "docs_percent": progress.docs_percent,
    }


@router.get("/{token}")
async def list_documents(token: str, store: CaseStore = Depends(get_store)):
    """Documents on the case, newest first."""
    case = await load_case_by_token(store, token)
    documents = sorted(case.record.documents, key=lambda d: d.created_at, reverse=True)
    return {
        "documents": [d.to_public_dict() for d in documents],
        "count": len(documents),
    }


@router.get("/{token}/checklist")
async def document_checklist(token: str, store: CaseStore = Depends(get_store)):
    """Checklist rows relevant to the entity type, each with its upload state."""
    case = await load_case_by_token(store, token)
    uploaded = {d.doc_type for d in case.record.documents}
    items = [
        {**item, "uploaded": item["doc_type"] in uploaded}
        for item in relevant_checklist(case.entity_type)
    ]
    return {
        "entity_type": case.entity_type,
        "items": items,
        "uploaded_count": sum(1 for i in items if i["uploaded"]),
        "total": len(items),
        "doc_types": DOC_TYPE_LABELS,
    }
