"""Submission gate: hand a case to the compliance team."""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException

from app.api.deps import get_store, load_case_by_id, load_case_by_token
from app.config import COMPLIANCE_EMAIL
from app.pipeline.onboarding import apply_progress
from app.pipeline.progress import score
from app.store import CaseStore

router = APIRouter()
logger = logging.getLogger(__name__)


def submitted_message(case_id: str) -> str:
    return (
        "✅ **Onboarding pack submitted to compliance!**\n\n"
        "Your application has been sent to the MetCon compliance team. They will review your "
        "information and documents and be in touch within **2 business days**.\n\n"
        f"If you have any questions in the meantime, email **{COMPLIANCE_EMAIL}** and quote "
        f"your Case ID: `{case_id}`."
    )


@router.post("/{token}")
async def submit_case(token: str, store: CaseStore = Depends(get_store)):
    """Score the case now and submit only if the minimum gate is met.

    409 if already submitted; 422 with ``missing_fields`` (labels) if not.
    """
    found = await load_case_by_token(store, token)

    async with store.lock(found.case_id):
        case = await load_case_by_id(store, found.case_id)
        if case.submitted_to_compliance:
            raise HTTPException(status_code=409, detail="Case already submitted to compliance")

        progress = score(case.record)
        if not progress.can_submit:
            raise HTTPException(status_code=422, detail={
                "error": "Minimum required fields not complete",
                "missing_fields": [m.label for m in progress.gate_missing],
            })

        apply_progress(case, progress)
        case.submitted_to_compliance = True
        case.submitted_at = datetime.now().isoformat()
        case.status = "submitted_to_compliance"
        case.add_message("assistant", submitted_message(case.case_id), metadata={"type": "submitted"})
        store.save(case)

    logger.info(f"Case {case.case_id} submitted to compliance (mandatory={progress.mandatory_percent}%)")
    return {
        "success": True,
        "submitted_at": case.submitted_at,
        "mandatory_percent": progress.mandatory_percent,
        "docs_percent": progress.docs_percent,
    }
