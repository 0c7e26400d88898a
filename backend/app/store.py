"""Case persistence: one JSON file per case under ``CASES_DIR``.

Whole aggregates only: a case (record, persons, documents, pending
extractions, messages) is read and written as a unit.  Writes are atomic
(temp file + ``os.replace``).

Turns on the same case must not interleave; ``lock(case_id)`` hands out
one ``asyncio.Lock`` per case for callers to hold across a
load → mutate → save cycle.
"""

import asyncio
import json
import logging
import os
import re
import tempfile
from pathlib import Path

from app.config import CASES_DIR
from app.pipeline.record import Case

logger = logging.getLogger(__name__)

_CASE_ID_RE = re.compile(r'^[0-9a-f]{32}$')


class CaseNotFoundError(KeyError):
    """No case with the given id or token."""


class CaseStore:
    def __init__(self, root: Path = CASES_DIR):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._locks: dict[str, asyncio.Lock] = {}
        self._token_index: dict[str, str] = {}

    def _path(self, case_id: str) -> Path:
        if not _CASE_ID_RE.match(case_id or ""):
            raise CaseNotFoundError(case_id)
        return self.root / f"{case_id}.json"

    def lock(self, case_id: str) -> asyncio.Lock:
        if case_id not in self._locks:
            self._locks[case_id] = asyncio.Lock()
        return self._locks[case_id]

    # ── Read ──

    def load(self, case_id: str) -> Case:
        path = self._path(case_id)
        if not path.exists():
            raise CaseNotFoundError(case_id)
        data = json.loads(path.read_text(encoding="utf-8"))
        case = Case.from_dict(data)
        self._token_index[case.token] = case.case_id
        return case

    def find_by_token(self, token: str) -> Case:
        case_id = self._token_index.get(token)
        if case_id:
            try:
                case = self.load(case_id)
            except CaseNotFoundError:
                self._token_index.pop(token, None)
            else:
                if case.token == token:
                    return case

        # Index miss: rebuild by scanning every case file
        for case in self.list_cases():
            if case.token == token:
                return case
        raise CaseNotFoundError(token)

    def list_cases(self) -> list[Case]:
        """All readable cases, newest first; unreadable files are skipped."""
        cases = []
        for f in self.root.glob("*.json"):
            try:
                case = Case.from_dict(json.loads(f.read_text(encoding="utf-8")))
            except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
                logger.warning(f"Skipping unreadable case file {f.name}: {type(e).__name__}")
                continue
            self._token_index[case.token] = case.case_id
            cases.append(case)
        cases.sort(key=lambda c: c.created_at, reverse=True)
        return cases

    # ── Write ──

    def save(self, case: Case):
        """Persist the case atomically."""
        target = self._path(case.case_id)
        data = json.dumps(case.to_dict(), indent=2, default=str, ensure_ascii=False)
        # Temp file in the same directory so os.replace() is same-device
        fd, tmp_path = tempfile.mkstemp(dir=str(self.root), suffix=".tmp", prefix="case_")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as tmp:
                tmp.write(data)
            os.replace(tmp_path, str(target))
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
        self._token_index[case.token] = case.case_id

    def delete(self, case_id: str):
        path = self._path(case_id)
        if not path.exists():
            raise CaseNotFoundError(case_id)
        case = self.load(case_id)
        path.unlink()
        self._token_index.pop(case.token, None)
        self._locks.pop(case_id, None)
        logger.info(f"Case {case_id} deleted")

    def cleanup_temp_files(self) -> int:
        """Remove half-written ``.tmp`` files left by a crash mid-save."""
        removed = 0
        for f in self.root.glob("case_*.tmp"):
            f.unlink(missing_ok=True)
            removed += 1
        if removed:
            logger.info(f"Startup cleanup: removed {removed} stale temp file(s)")
        return removed
