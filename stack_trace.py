"""
stack_trace.py

Composes a readable stack trace for the first failure recorded in a trace.

Output layout (sections are skipped when empty):

    <message line(s)>            ANSI-free, timeouts rewritten to a canonical phrase
    Call log:                    embedded log from the error, else synthesized from params.selector
      - waiting for locator('...')

    at fn (file:line:col)        user frames only, from the error text, else from structured frames

Traces from different producer versions populate different fields, so every
section has a fallback instead of a hard requirement.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from trace_archive import TraceFolder, TraceNotFoundError
from trace_events import RawEvent, decode_stream

NO_ERROR_FOUND = "No error found in trace."
TRACE_NOT_FOUND = "Trace file not found."

_ANSI_RE = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]")
_TIMEOUT_RE = re.compile(r"Timeout (\d+)ms exceeded")
_LOGS_HEADER_RE = re.compile(r"^=+\s*logs\s*=+$")
_LOGS_FOOTER_RE = re.compile(r"^=+$")

INTERNAL_FRAME_MARKERS = (
    "node_modules",
    "playwright-core",
    "@playwright",
    "playwright/lib",
    "node:internal",
    "(internal/",
    "at internal/",
    "<anonymous>",
)


def strip_ansi(text: str) -> str:
    return _ANSI_RE.sub("", text or "")


def is_internal_frame(line: str) -> bool:
    return any(m in line for m in INTERNAL_FRAME_MARKERS)


# -----------------------------------------------------------------------------
# Field extraction
# -----------------------------------------------------------------------------
def error_message(ev: RawEvent) -> str:
    err = ev.error
    if isinstance(err, dict):
        msg = err.get("message")
        inner = err.get("error")
        if not msg and isinstance(inner, dict):
            msg = inner.get("message")
        if msg and str(msg).strip():
            return str(msg)
    elif isinstance(err, str) and err.strip():
        return err
    if ev.type == "error":
        msg = ev.data.get("message")
        if msg and str(msg).strip():
            return str(msg)
    return ""


def _error_stack_text(ev: RawEvent) -> str:
    err = ev.error
    if isinstance(err, dict):
        if isinstance(err.get("stack"), str):
            return err["stack"]
        inner = err.get("error")
        if isinstance(inner, dict) and isinstance(inner.get("stack"), str):
            return inner["stack"]
    if ev.type == "error" and isinstance(ev.data.get("stack"), str):
        return ev.data["stack"]
    return ""


def _structured_frame_list(ev: RawEvent, before: Optional[RawEvent]) -> List[Dict[str, Any]]:
    err = ev.error
    if isinstance(err, dict) and isinstance(err.get("stack"), list):
        return err["stack"]
    if isinstance(ev.stack, list) and ev.stack:
        return ev.stack
    if before is not None and isinstance(before.stack, list):
        return before.stack
    return []


def _selector_of(*events: Optional[RawEvent]) -> Optional[str]:
    for ev in events:
        if ev is None:
            continue
        params = ev.params
        if isinstance(params, dict) and params.get("selector"):
            return str(params["selector"])
    return None


# -----------------------------------------------------------------------------
# Text parsing
# -----------------------------------------------------------------------------
def split_error_text(text: str) -> Tuple[List[str], List[str], List[str]]:
    """Split raw error text into (message lines, call-log lines, frame lines)."""
    message: List[str] = []
    call_log: List[str] = []
    frames: List[str] = []
    mode = "message"

    for raw in strip_ansi(text).split("\n"):
        s = raw.strip()
        if s.startswith("at "):
            frames.append(s)
            mode = "frames"
            continue
        if mode == "frames":
            continue
        if s.startswith("Call log:") or _LOGS_HEADER_RE.match(s):
            mode = "call_log"
            continue
        if mode == "call_log":
            if not s or _LOGS_FOOTER_RE.match(s):
                mode = "after_log"
                continue
            call_log.append(s)
            continue
        if mode == "message" and s:
            message.append(raw.rstrip())

    return message, call_log, frames


def canonical_timeout(message_lines: List[str], api_name: Optional[str]) -> List[str]:
    if not api_name:
        return message_lines
    out = list(message_lines)
    for i, line in enumerate(out):
        m = _TIMEOUT_RE.search(line)
        if m:
            out[i] = f"TimeoutError: {api_name}: Timeout {m.group(1)}ms exceeded."
            break
    return out


def format_structured_frame(fr: Dict[str, Any]) -> Optional[str]:
    if not isinstance(fr, dict) or not fr.get("file"):
        return None
    loc = f"{fr.get('file')}:{fr.get('line', 0)}:{fr.get('column', 0)}"
    fn = fr.get("function")
    return f"at {fn} ({loc})" if fn else f"at {loc}"


def _user_frames(text_frames: List[str], structured: List[Dict[str, Any]]) -> List[str]:
    kept = [f for f in text_frames if not is_internal_frame(f)]
    if kept:
        return kept
    out: List[str] = []
    for fr in structured:
        line = format_structured_frame(fr)
        if line and not is_internal_frame(line):
            out.append(line)
    return out


def _format_call_log(lines: List[str]) -> List[str]:
    out = ["Call log:"]
    for s in lines:
        out.append("  " + (s if s.startswith("-") else f"- {s}"))
    return out


# -----------------------------------------------------------------------------
# Composition
# -----------------------------------------------------------------------------
def compose_error_event(ev: RawEvent, before: Optional[RawEvent] = None) -> str:
    message_text = error_message(ev)
    stack_text = _error_stack_text(ev)

    msg_lines, msg_log, msg_frames = split_error_text(message_text)
    _stk_msg, stk_log, stk_frames = split_error_text(stack_text)

    api_name = ev.api_name or (before.api_name if before is not None else None)
    msg_lines = canonical_timeout(msg_lines, api_name)

    call_log = stk_log or msg_log
    if not call_log:
        selector = _selector_of(before, ev)
        if selector:
            call_log = [f"- waiting for locator('{selector}')"]

    frames = _user_frames(stk_frames or msg_frames, _structured_frame_list(ev, before))

    head = list(msg_lines)
    if call_log:
        head.extend(_format_call_log(call_log))
    sections = ["\n".join(head)]
    if frames:
        sections.append("\n".join(frames))
    return "\n\n".join(s for s in sections if s)


def compose_first_error_from_events(events: Iterable[RawEvent]) -> str:
    befores: Dict[Any, RawEvent] = {}
    for ev in events:
        if ev.kind == "before" and ev.call_id is not None:
            befores[ev.call_id] = ev
        if error_message(ev).strip():
            return compose_error_event(ev, befores.get(ev.call_id))
    return NO_ERROR_FOUND


def compose_first_error_stack_trace(primary_text: str) -> str:
    return compose_first_error_from_events(decode_stream(primary_text).events)


def compose_stack_trace_from_folder(folder: Path) -> str:
    try:
        text = TraceFolder(Path(folder)).read_primary_text()
    except TraceNotFoundError:
        return TRACE_NOT_FOUND
    return compose_first_error_stack_trace(text)
