"""
Shared fixtures: synthetic Playwright trace streams and trace.zip builders.
"""

import json
import sys
import zipfile
from pathlib import Path
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest

# Add repo root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from llm_analyzer import LLMClient, LLMConfig


# =============================================================================
# STREAM HELPERS
# =============================================================================

def jsonl(records: List[Any]) -> str:
    return "\n".join(r if isinstance(r, str) else json.dumps(r) for r in records) + "\n"


def before(call_id, start, api_name=None, parent_id=None, params=None, stack=None, **extra) -> Dict[str, Any]:
    rec = {"type": "before", "callId": call_id, "startTime": start}
    if api_name is not None:
        rec["apiName"] = api_name
    if parent_id is not None:
        rec["parentId"] = parent_id
    if params is not None:
        rec["params"] = params
    if stack is not None:
        rec["stack"] = stack
    rec.update(extra)
    return rec


def after(call_id, end, error=None, attachments=None) -> Dict[str, Any]:
    rec = {"type": "after", "callId": call_id, "endTime": end}
    if error is not None:
        rec["error"] = error
    if attachments is not None:
        rec["attachments"] = attachments
    return rec


def frame(file: str, line: int, column: int, function: Optional[str] = None) -> Dict[str, Any]:
    fr = {"file": file, "line": line, "column": column}
    if function:
        fr["function"] = function
    return fr


def timeout_trace(selector: str = "#submit", timeout_ms: int = 30000, extra_frames: Optional[List[dict]] = None) -> str:
    """A failing locator.click that timed out, with one user frame and one internal frame."""
    stack = [frame("/proj/tests/login.spec.ts", 12, 5, "test")]
    stack += extra_frames or []
    stack.append(frame("/proj/node_modules/playwright-core/lib/client.js", 100, 7))
    return jsonl([
        before("call@1", 0, "page.goto", params={"url": "https://example.test"}),
        after("call@1", 50),
        before("call@2", 60, "locator.click", params={"selector": selector}, stack=stack),
        after("call@2", 60 + timeout_ms, error={"message": f"Timeout {timeout_ms}ms exceeded."}),
    ])


def passing_trace() -> str:
    return jsonl([
        before("call@1", 0, "page.goto", params={"url": "https://example.test"}),
        after("call@1", 5),
    ])


def write_trace_zip(
    path: Path,
    primary: Optional[str],
    *,
    network: Optional[List[str]] = None,
    resources: Optional[Dict[str, bytes]] = None,
    primary_name: str = "trace.trace",
) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as zf:
        if primary is not None:
            zf.writestr(primary_name, primary)
        for i, text in enumerate(network or []):
            zf.writestr(f"trace{i}.network", text)
        for name, blob in (resources or {}).items():
            zf.writestr(f"resources/{name}", blob)
    return path


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def results_dir(tmp_path) -> Path:
    d = tmp_path / "results"
    d.mkdir()
    return d


@pytest.fixture
def fake_openai():
    """OpenAI client double whose chat.completions.create returns a fixed answer."""
    client = MagicMock()
    resp = MagicMock()
    resp.choices = [MagicMock()]
    resp.choices[0].message.content = "Test code issue: the selector no longer matches."
    client.chat.completions.create.return_value = resp
    return client


@pytest.fixture
def llm_client(fake_openai) -> LLMClient:
    return LLMClient(LLMConfig(model="gpt-test", api_key="sk-test", max_retries=1), client=fake_openai)
