# prompt_debugger/result_cache.py

import copy
import hashlib
import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from prompt_debugger.base_utils import logger
from prompt_debugger.entities import AnalysisResult

FINGERPRINT_PREFIX = "analysis_"
CACHE_TAIL_TURNS = 2


def fingerprint_request(conversation_history: List[Any], target_response: Any, feedback: Any) -> str:
    """
    Deterministic key over (last two turns, target response, feedback).
    Turn order matters; dict key order does not.
    """
    payload = {
        "conversation_tail": list(conversation_history or [])[-CACHE_TAIL_TURNS:],
        "target_response": target_response,
        "feedback": feedback,
    }
    blob = json.dumps(payload, sort_keys=True, ensure_ascii=False, separators=(",", ":"), default=str)
    return FINGERPRINT_PREFIX + hashlib.sha256(blob.encode("utf-8")).hexdigest()


class ResultCache:
    """
    Fingerprint -> AnalysisResult store.

    - Entries are never mutated after put; readers get deep copies.
    - With `directory` set, each entry is also persisted as <fingerprint>.json,
      written to a temp file and renamed so readers never see partial writes.
    - No TTL.
    """

    def __init__(self, directory: Optional[str] = None) -> None:
        self._lock = threading.Lock()
        self._entries: Dict[str, Dict[str, Any]] = {}
        self._dir = Path(directory) if directory else None
        if self._dir is not None:
            self._dir.mkdir(parents=True, exist_ok=True)

    def _path(self, fingerprint: str) -> Path:
        return self._dir / f"{fingerprint}.json"

    def _read_file(self, fingerprint: str) -> Optional[Dict[str, Any]]:
        if self._dir is None:
            return None
        path = self._path(fingerprint)
        if not path.exists():
            return None
        try:
            with path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable cache entry {path}: {e}")
            return None
        return data if isinstance(data, dict) else None

    def _write_file(self, fingerprint: str, data: Dict[str, Any]) -> None:
        fd, tmp_path = tempfile.mkstemp(dir=self._dir, prefix=f".{fingerprint}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self._path(fingerprint))
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def get(self, fingerprint: str) -> Optional[AnalysisResult]:
        with self._lock:
            data = self._entries.get(fingerprint)
        if data is None:
            data = self._read_file(fingerprint)
            if data is None:
                return None
            with self._lock:
                self._entries.setdefault(fingerprint, data)
        return AnalysisResult.from_dict(copy.deepcopy(data))

    def put(self, fingerprint: str, result: AnalysisResult) -> None:
        data = copy.deepcopy(result.to_dict())
        data["cached"] = False
        with self._lock:
            self._entries[fingerprint] = data
        if self._dir is not None:
            try:
                self._write_file(fingerprint, data)
            except OSError as e:
                logger.warning(f"Could not persist cache entry {fingerprint} to {self._dir}: {e}")
                return
        logger.info(f"Cached analysis result {fingerprint}")

    def __contains__(self, fingerprint: str) -> bool:
        with self._lock:
            if fingerprint in self._entries:
                return True
        return self._dir is not None and self._path(fingerprint).exists()
