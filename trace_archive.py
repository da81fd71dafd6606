"""
trace_archive.py

Access to the files inside a Playwright trace: either a trace.zip (extracted to
a scoped temp dir) or an already-unzipped trace folder.

Layout we rely on:
    trace.trace | *.trace   primary event stream (required)
    *.network               auxiliary network streams (optional)
    resources/<name>        blobs referenced by attachments and screencast frames
"""

from __future__ import annotations

import logging
import shutil
import tempfile
import zipfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

logger = logging.getLogger(__name__)


class TraceNotFoundError(FileNotFoundError):
    """The trace container has no primary .trace stream."""


def is_zip(path: Path) -> bool:
    return path.suffix.lower() == ".zip"


class TraceFolder:
    def __init__(self, root: Path):
        self.root = Path(root)
        self.resources_dir = self.root / "resources"

    def primary_trace_path(self) -> Path:
        default = self.root / "trace.trace"
        if default.exists():
            return default
        found = sorted(p for p in self.root.glob("*.trace") if p.is_file())
        if found:
            return found[0]
        raise TraceNotFoundError(f"No .trace file found in the trace folder: {self.root}")

    def read_primary_text(self) -> str:
        return self.primary_trace_path().read_text(encoding="utf-8", errors="replace")

    def network_paths(self) -> List[Path]:
        return sorted(p for p in self.root.glob("*.network") if p.is_file())

    def read_network_texts(self) -> List[str]:
        return [p.read_text(encoding="utf-8", errors="replace") for p in self.network_paths()]

    def read_resource(self, name: Optional[str]) -> Optional[bytes]:
        """Look up a blob by attachment path basename or frame sha1; None if absent."""
        if not name:
            return None
        p = self.resources_dir / Path(str(name)).name
        if not p.is_file():
            return None
        return p.read_bytes()


@contextmanager
def extracted_trace(path: Path) -> Iterator[TraceFolder]:
    """
    Yield a TraceFolder for a trace.zip or trace folder.

    A zip is unpacked into a fresh temp dir that is removed on exit, including
    when the body raises. A folder is used in place and left untouched.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    if not is_zip(path):
        yield TraceFolder(path)
        return

    temp_dir = Path(tempfile.mkdtemp(prefix="pw-trace-"))
    logger.debug("Unzipping trace to temporary folder: %s", temp_dir)
    try:
        with zipfile.ZipFile(path, "r") as zf:
            zf.extractall(temp_dir)
        yield TraceFolder(temp_dir)
    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)
        logger.debug("Cleaned up temporary folder: %s", temp_dir)
