"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api import admin, cases, chat, documents, submit
from app.config import CASES_DIR, CORS_ORIGINS, UPLOAD_DIR
from app.pipeline.extraction import LLMExtractor
from app.pipeline.llm_client import OllamaClient
from app.storage import LocalStorage
from app.store import CaseStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the collaborators once; clean up half-written case files."""
    client = OllamaClient()
    app.state.llm = client
    app.state.extractor = LLMExtractor(client)
    app.state.store = CaseStore(CASES_DIR)
    app.state.storage = LocalStorage(UPLOAD_DIR)
    app.state.store.cleanup_temp_files()
    logger.info(f"KYC onboarding ready (model={client.model}, vision={client.vision_model})")
    yield


app = FastAPI(
    title="MetCon KYC Onboarding",
    description="Conversational FICA counterparty onboarding",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(cases.router, prefix="/api/cases", tags=["Cases"])
app.include_router(chat.router, prefix="/api/chat", tags=["Chat"])
app.include_router(documents.router, prefix="/api/documents", tags=["Documents"])
app.include_router(submit.router, prefix="/api/submit", tags=["Submission"])
app.include_router(admin.router, prefix="/api/admin", tags=["Admin"])


@app.get("/api/health")
async def health():
    return {"status": "operational", "platform": "MetCon KYC Onboarding"}


@app.get("/api/health/llm")
async def llm_health():
    return await app.state.llm.check_status()
