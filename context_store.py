"""
context_store.py

Append-only log of previous failure analyses for one folder scope.

The store is a single JSON document (a list of camelCase records). Reads never
fail the caller: a missing, empty or unparsable document reads as no contexts.
Writes go through a lock and an atomic replace, one writer at a time. Existing
entries are written back exactly as read; an unparsable document is moved
aside before the first write instead of being overwritten.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class StoredContext(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    explanation: Optional[str] = None
    stack_trace: str = ""
    normalized_stack_trace: str = ""
    stack_trace_hash: str = ""
    folder_path: str = ""
    timestamp: str = Field(default_factory=_utc_now)

    def to_json_dict(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class ContextStore:
    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read_records(self) -> Optional[List[Any]]:
        """Raw entries as stored; [] when absent or empty, None when unusable."""
        if not self.path.exists():
            return []
        raw = self.path.read_text(encoding="utf-8")
        if not raw.strip():
            return []
        try:
            doc = json.loads(raw)
        except (ValueError, RecursionError) as e:
            logger.warning("Context store %s is corrupt, treating as empty: %s", self.path, e)
            return None
        if not isinstance(doc, list):
            logger.warning("Context store %s is not a list, treating as empty", self.path)
            return None
        return doc

    def _set_aside(self) -> Path:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        dest = self.path.with_name(f"{self.path.name}.corrupt-{stamp}")
        os.replace(self.path, dest)
        logger.warning("Moved unreadable context store %s to %s", self.path, dest)
        return dest

    def load(self) -> List[StoredContext]:
        try:
            records = self._read_records()
        except OSError as e:
            logger.warning("Could not read context store %s: %s", self.path, e)
            return []
        if records is None:
            return []

        out: List[StoredContext] = []
        for i, item in enumerate(records):
            try:
                out.append(StoredContext.model_validate(item))
            except ValidationError as e:
                logger.warning("Skipping invalid context record %d in %s: %s", i, self.path, e)
        return out

    def append(self, ctx: StoredContext) -> None:
        with self._lock:
            records = self._read_records()
            if records is None:
                self._set_aside()
                records = []
            records.append(ctx.to_json_dict())
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(prefix=".ctx-", suffix=".json", dir=str(self.path.parent))
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(records, f, indent=2)
                os.replace(tmp, self.path)
            except BaseException:
                if os.path.exists(tmp):
                    os.unlink(tmp)
                raise
