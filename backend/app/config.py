"""Application configuration."""

import os
from pathlib import Path
from dotenv import load_dotenv

# Base paths
BASE_DIR = Path(__file__).resolve().parent.parent

# Load .env from backend root (before any os.getenv calls)
load_dotenv(BASE_DIR / ".env")
TEMP_DIR = Path(os.getenv("KYC_DATA_DIR", str(BASE_DIR / "temp")))
UPLOAD_DIR = TEMP_DIR / "uploads"
CASES_DIR = TEMP_DIR / "cases"

# Create directories
for d in [TEMP_DIR, UPLOAD_DIR, CASES_DIR]:
    d.mkdir(parents=True, exist_ok=True)

# Ollama configuration
OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "qwen3:32b")
VISION_MODEL = os.getenv("VISION_MODEL", "qwen2.5vl:7b")  # pasted images + scanned documents

# LLM call behaviour
LLM_TIMEOUT = int(os.getenv("LLM_TIMEOUT", "120"))              # per HTTP request
LLM_MAX_RETRIES = int(os.getenv("LLM_MAX_RETRIES", "3"))
LLM_MAX_INPUT_CHARS = 60000                                      # chat messages are short; documents go via images
EXTRACTION_TIMEOUT = int(os.getenv("EXTRACTION_TIMEOUT", "300"))  # whole extraction incl. retries

# Uploads
MAX_UPLOAD_BYTES = 50 * 1024 * 1024   # 50 MB
MAX_EXTRACT_BYTES = 20 * 1024 * 1024  # larger files are stored but not analysed
ALLOWED_MIME_TYPES = {
    "application/pdf",
    "image/jpeg",
    "image/png",
    "image/webp",
    "image/heic",
}
IMAGE_MIME_TYPES = {"image/jpeg", "image/png", "image/webp", "image/gif"}

# Risk flag thresholds (one-way latch on the case)
RISK_CASH_PCT_THRESHOLD = float(os.getenv("RISK_CASH_PCT_THRESHOLD", "50"))
RISK_MAX_CASH_AMOUNT = float(os.getenv("RISK_MAX_CASH_AMOUNT", "25000"))  # ZAR

COMPLIANCE_EMAIL = os.getenv("COMPLIANCE_EMAIL", "compliance@metcon.co.za")
CORS_ORIGINS = [
    o.strip()
    for o in os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
    if o.strip()
]

# Debug trace mode: set KYC_TRACE=1 to get detailed scoring/merge logs
TRACE_ENABLED = os.getenv("KYC_TRACE", "").strip().lower() in ("1", "true", "yes")

DOCUMENT_STATUSES = ["received", "verified", "rejected"]

CASE_STATUSES = [
    "in_progress",
    "needs_review",
    "complete",
    "submitted_to_compliance",
]
