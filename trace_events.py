"""
trace_events.py

Decoder for Playwright trace streams (one JSON object per line).

- primary stream (trace.trace): before/after call records, stdio, screencast frames, ...
- auxiliary streams (*.network): resource snapshots, pooled into one sequence

Bad lines are skipped and counted, never raised: producers truncate files and
sometimes interleave non-JSON noise.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Literal, Optional

logger = logging.getLogger(__name__)

EventKind = Literal["before", "after", "network", "stdio", "frame", "other"]

_KIND_BY_TYPE: Dict[str, EventKind] = {
    "before": "before",
    "after": "after",
    "resource-snapshot": "network",
    "stdout": "stdio",
    "stderr": "stdio",
    "screencast-frame": "frame",
}


def _as_float(x: Any) -> Optional[float]:
    if isinstance(x, bool) or x is None:
        return None
    try:
        return float(x)
    except Exception:
        return None


@dataclass
class RawEvent:
    kind: EventKind
    type: str
    timestamp: Optional[float]
    data: Dict[str, Any] = field(default_factory=dict)

    # Accessors over the raw record; missing fields read as None.
    @property
    def call_id(self) -> Optional[str]:
        return self.data.get("callId")

    @property
    def parent_id(self) -> Optional[str]:
        return self.data.get("parentId")

    @property
    def api_name(self) -> Optional[str]:
        return self.data.get("apiName")

    @property
    def params(self) -> Any:
        return self.data.get("params")

    @property
    def error(self) -> Any:
        return self.data.get("error")

    @property
    def attachments(self) -> List[Dict[str, Any]]:
        att = self.data.get("attachments")
        return att if isinstance(att, list) else []

    @property
    def stack(self) -> Any:
        return self.data.get("stack")

    @property
    def sha1(self) -> Optional[str]:
        return self.data.get("sha1")

    @property
    def text(self) -> Optional[str]:
        return self.data.get("text")

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.data)


@dataclass
class DecodeResult:
    events: List[RawEvent] = field(default_factory=list)
    skipped: int = 0


def _event_timestamp(kind: EventKind, rec: Dict[str, Any]) -> Optional[float]:
    if kind == "before":
        return _as_float(rec.get("startTime"))
    if kind == "after":
        return _as_float(rec.get("endTime"))
    if kind == "network":
        ts = _as_float(rec.get("monotonicTime"))
        if ts is None:
            snap = rec.get("snapshot")
            if isinstance(snap, dict):
                ts = _as_float(snap.get("_monotonicTime"))
        return ts
    for key in ("timestamp", "monotonicTime", "time"):
        ts = _as_float(rec.get(key))
        if ts is not None:
            return ts
    return None


def to_raw_event(rec: Dict[str, Any], *, force_kind: Optional[EventKind] = None) -> RawEvent:
    typ = str(rec.get("type") or "")
    kind: EventKind = force_kind or _KIND_BY_TYPE.get(typ, "other")
    return RawEvent(kind=kind, type=typ, timestamp=_event_timestamp(kind, rec), data=rec)


def decode_stream(text: str, stream: str = "primary", *, force_kind: Optional[EventKind] = None) -> DecodeResult:
    out = DecodeResult()
    for lineno, line in enumerate((text or "").split("\n"), start=1):
        line = line.strip()
        if not line:
            continue
        try:
            rec = json.loads(line)
        except (ValueError, RecursionError):
            out.skipped += 1
            logger.debug("%s stream: skipped undecodable line %d", stream, lineno)
            continue
        if not isinstance(rec, dict):
            out.skipped += 1
            logger.debug("%s stream: skipped non-object line %d", stream, lineno)
            continue
        out.events.append(to_raw_event(rec, force_kind=force_kind))
    return out


def decode_auxiliary_streams(texts: Iterable[str]) -> DecodeResult:
    """Pool every network stream into one sequence; stream identity is dropped."""
    pooled = DecodeResult()
    for i, text in enumerate(texts):
        res = decode_stream(text, stream=f"network[{i}]", force_kind="network")
        pooled.events.extend(res.events)
        pooled.skipped += res.skipped
    return pooled
