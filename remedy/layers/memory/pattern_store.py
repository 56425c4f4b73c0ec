"""
Pattern Store - Cross-run memory of which fixes worked.

Each (action, target, errorKind) key maps to a short attempt history. The
ranker asks for the newest successful fix; the engine appends outcomes once
a repaired route has actually been re-run.

The file layout matches ``test-results/.failure-patterns.json``::

    {
      "fill:[name=\\"agree\\"]:wrong_element_type": {
        "target": "[name=\\"agree\\"]",
        "action": "fill",
        "errorType": "wrong_element_type",
        "attempts": [{"timestamp": "...", "fix": {...}, "success": true}],
        "lastUpdated": "..."
      }
    }
"""

from abc import ABC, abstractmethod
from datetime import datetime
import json
import logging
import os
from typing import Any, Callable, Dict, List, Optional

from remedy.core.errors import PatternStoreCorruption
from remedy.core.models import PatternAttempt, PatternKey

logger = logging.getLogger(__name__)

DEFAULT_PATTERNS_FILE = os.path.join("test-results", ".failure-patterns.json")
MAX_ATTEMPTS = 10


class PatternStore(ABC):
    """Durable key to attempt-history storage."""

    def __init__(
        self,
        max_attempts: int = MAX_ATTEMPTS,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.max_attempts = max_attempts
        self._clock = clock or datetime.now

    @abstractmethod
    def _read(self) -> Dict[str, Dict[str, Any]]:
        pass

    @abstractmethod
    def _write(self, patterns: Dict[str, Dict[str, Any]]) -> None:
        pass

    def lookup(self, key: PatternKey) -> Optional[Dict[str, Any]]:
        """Most recent successful fix for ``key``, or None."""
        entry = self._read().get(key.as_string())
        if not entry:
            return None
        for attempt in reversed(entry.get("attempts", [])):
            if attempt.get("success") and attempt.get("fix"):
                return attempt["fix"]
        return None

    def record(self, key: PatternKey, fix: Dict[str, Any], success: bool) -> None:
        """Append an attempt, keeping only the newest ``max_attempts``."""
        patterns = self._read()
        now = self._clock().isoformat()
        entry = patterns.setdefault(key.as_string(), {
            "target": key.target,
            "action": key.action.value,
            "errorType": key.error_kind.value,
            "attempts": [],
        })
        entry["attempts"].append(PatternAttempt(timestamp=now, fix=fix, success=success).to_dict())
        entry["attempts"] = entry["attempts"][-self.max_attempts:]
        entry["lastUpdated"] = now
        self._write(patterns)
        logger.info(
            f"[PatternStore] Recorded {'successful' if success else 'failed'} fix for {key.as_string()}"
        )

    def history(self, key: PatternKey) -> List[PatternAttempt]:
        entry = self._read().get(key.as_string()) or {}
        return [
            PatternAttempt(timestamp=a.get("timestamp", ""), fix=a.get("fix") or {}, success=bool(a.get("success")))
            for a in entry.get("attempts", [])
        ]

    def patterns(self) -> Dict[str, Dict[str, Any]]:
        """Every stored entry, keyed by its serialized PatternKey."""
        return self._read()


class InMemoryPatternStore(PatternStore):
    """Pattern store that lives only as long as the process."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._patterns: Dict[str, Dict[str, Any]] = {}

    def _read(self) -> Dict[str, Dict[str, Any]]:
        return json.loads(json.dumps(self._patterns))

    def _write(self, patterns: Dict[str, Dict[str, Any]]) -> None:
        self._patterns = patterns


class JsonPatternStore(PatternStore):
    """
    Pattern store backed by a single JSON file.

    The file is re-read on every call and rewritten whole, so concurrent
    runs resolve as last-writer-wins. A missing file is an empty store; a
    corrupt one is logged and also treated as empty.

    Example:
        >>> store = JsonPatternStore("test-results/.failure-patterns.json")
        >>> store.lookup(PatternKey(ActionKind.FILL, '[name="agree"]', ErrorKind.WRONG_ELEMENT_TYPE))
        {'type': 'action_correction', 'action': 'check', 'target': '[name="agree"]'}
    """

    def __init__(self, path: str = DEFAULT_PATTERNS_FILE, **kwargs):
        super().__init__(**kwargs)
        self.path = path

    def _read(self) -> Dict[str, Dict[str, Any]]:
        if not os.path.exists(self.path):
            return {}
        try:
            return self._load()
        except PatternStoreCorruption as e:
            logger.warning(f"[PatternStore] {e}; starting from an empty store")
            return {}

    def _load(self) -> Dict[str, Dict[str, Any]]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise PatternStoreCorruption(f"Cannot read {self.path}: {e}")
        if not isinstance(data, dict):
            raise PatternStoreCorruption(f"{self.path} does not hold a JSON object")
        return {k: v for k, v in data.items() if isinstance(v, dict)}

    def _write(self, patterns: Dict[str, Dict[str, Any]]) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(patterns, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, self.path)
