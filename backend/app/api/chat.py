"""Chat endpoint: one onboarding turn per request."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from app.api.deps import get_extractor, get_store, load_case_by_id, load_case_by_token
from app.config import IMAGE_MIME_TYPES
from app.pipeline.extraction import LLMExtractor
from app.pipeline.llm_client import ExtractionServiceError
from app.pipeline.onboarding import process_message
from app.store import CaseStore

router = APIRouter()
logger = logging.getLogger(__name__)

MAX_MESSAGE_CHARS = 8000


class ChatRequest(BaseModel):
    message: str = ""
    image_data: str | None = None          # base64, no data: prefix
    image_mime_type: str | None = None


@router.post("/{token}")
async def chat(
    token: str,
    request: ChatRequest,
    store: CaseStore = Depends(get_store),
    extractor: LLMExtractor = Depends(get_extractor),
):
    """Run one turn: resolve pending confirmations, extract, merge, score, reply.

    Turns on the same case are serialised; the case is re-read under the
    lock so a concurrent collaborator's turn is never overwritten.
    """
    if not request.message.strip() and not request.image_data:
        raise HTTPException(status_code=400, detail="Message cannot be empty")
    if len(request.message) > MAX_MESSAGE_CHARS:
        raise HTTPException(status_code=400, detail=f"Message too long (max {MAX_MESSAGE_CHARS} characters)")
    if request.image_data and request.image_mime_type not in IMAGE_MIME_TYPES:
        raise HTTPException(status_code=415, detail="Unsupported image type. Please paste a JPEG, PNG, WebP or GIF.")

    found = await load_case_by_token(store, token)

    async with store.lock(found.case_id):
        case = await load_case_by_id(store, found.case_id)
        try:
            result = await process_message(
                case,
                request.message,
                extractor,
                image_b64=request.image_data,
                image_mime=request.image_mime_type,
            )
        except ExtractionServiceError as e:
            # Nothing from this turn is persisted
            logger.error(f"Case {case.case_id}: extraction service unavailable ({type(e).__name__})")
            raise HTTPException(status_code=503, detail=e.user_message)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        store.save(case)

    return {
        **result.to_dict(),
        "status": case.status,
        "risk_flag": case.risk_flag,
    }
