"""Case lifecycle endpoints: create, fetch, progress and compliance export."""

import logging

from fastapi import APIRouter, Depends

from app.api.deps import get_store, load_case_by_token, safe_json_response
from app.pipeline.onboarding import WELCOME_MESSAGE, rescore
from app.pipeline.progress import format_progress_for_agent, score
from app.pipeline.record import Case
from app.reports.export import case_export, export_filename
from app.store import CaseStore

router = APIRouter()
logger = logging.getLogger(__name__)


def public_case(case: Case) -> dict:
    """Case as served to clients: storage keys stripped from documents."""
    data = case.to_dict()
    data["record"]["documents"] = [d.to_public_dict() for d in case.record.documents]
    return data


@router.post("")
async def create_case(store: CaseStore = Depends(get_store)):
    """Start a new onboarding case; the token is the shareable link."""
    case = Case()
    progress = rescore(case)
    case.add_message("assistant", WELCOME_MESSAGE, metadata={"type": "welcome", "progress": progress.overall})
    store.save(case)
    logger.info(f"Case {case.case_id} created")
    return {"token": case.token, "case_id": case.case_id}


@router.get("/{token}")
async def get_case(token: str, store: CaseStore = Depends(get_store)):
    case = await load_case_by_token(store, token)
    return safe_json_response({
        "case": public_case(case),
        "progress": score(case.record).to_dict(),
    })


@router.get("/{token}/progress")
async def get_progress(token: str, store: CaseStore = Depends(get_store)):
    """Fresh score of the stored record (read-only)."""
    case = await load_case_by_token(store, token)
    progress = score(case.record)
    return {
        "status": case.status,
        "risk_flag": case.risk_flag,
        "submitted_to_compliance": case.submitted_to_compliance,
        "progress": progress.to_dict(),
        "summary": format_progress_for_agent(progress),
    }


@router.get("/{token}/export")
async def export_case(token: str, store: CaseStore = Depends(get_store)):
    case = await load_case_by_token(store, token)
    filename = export_filename("kyc", "json", case.case_id)
    return safe_json_response(
        case_export(case),
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
