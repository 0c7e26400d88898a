"""Shared request dependencies and case-loading helpers for the routers."""

import asyncio
import json
import logging

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse

from app.pipeline.extraction import LLMExtractor
from app.pipeline.record import Case
from app.storage import LocalStorage
from app.store import CaseNotFoundError, CaseStore

logger = logging.getLogger(__name__)


def get_store(request: Request) -> CaseStore:
    return request.app.state.store


def get_storage(request: Request) -> LocalStorage:
    return request.app.state.storage


def get_extractor(request: Request) -> LLMExtractor:
    return request.app.state.extractor


# ── Case load helper with retry (transient file-lock resilience) ──

_LOAD_MAX_RETRIES = 4          # total attempts (1 initial + 3 retries)
_LOAD_BACKOFF_BASE = 0.4       # seconds, escalates: 0.4, 0.8, 1.6


async def _load_with_retry(loader, key: str) -> Case:
    last_exc: Exception | None = None
    for attempt in range(_LOAD_MAX_RETRIES):
        try:
            return loader(key)
        except CaseNotFoundError:
            raise HTTPException(status_code=404, detail="Case not found")
        except (PermissionError, OSError, json.JSONDecodeError, UnicodeDecodeError) as exc:
            last_exc = exc
            wait = _LOAD_BACKOFF_BASE * (2 ** attempt)
            logger.warning(
                "Case load attempt %d/%d failed (%s), retrying in %.1fs",
                attempt + 1, _LOAD_MAX_RETRIES, type(exc).__name__, wait,
            )
            await asyncio.sleep(wait)

    logger.error("Case load: all %d attempts failed, last error: %s", _LOAD_MAX_RETRIES, last_exc)
    raise HTTPException(
        status_code=503,
        detail="Temporary file access error. Please retry in a few seconds.",
    )


async def load_case_by_token(store: CaseStore, token: str) -> Case:
    """Raises 404 for an unknown token, 503 when the file stays unreadable."""
    return await _load_with_retry(store.find_by_token, token)


async def load_case_by_id(store: CaseStore, case_id: str) -> Case:
    return await _load_with_retry(store.load, case_id)


def safe_json_response(data: dict, status_code: int = 200, headers: dict | None = None) -> JSONResponse:
    """JSONResponse serialised the same way ``CaseStore.save`` writes to disk."""
    content = json.loads(json.dumps(data, default=str, ensure_ascii=False))
    return JSONResponse(content=content, status_code=status_code, headers=headers)
