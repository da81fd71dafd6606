#!/usr/bin/env python3
"""
analyze_trace.py

Analyze Playwright trace.zip files: rebuild the action tree, correlate network
activity, compose the first failure's stack trace, and only send failures that
were not seen before (by hash or by similarity) to the LLM.

Usage:
    analyze_trace.py path/to/run/trace.zip      # one trace (scope = run's parent folder)
    analyze_trace.py path/to/results            # every results/*/trace.zip
    analyze_trace.py path/to/unzipped_trace     # a folder holding *.trace files

Per trace:
- <trace folder>/trace_report.json   reconstructed actions + network + attachments
Per scope folder:
- <scope>/ai_context.json            append-only log of analyzed failures

Logging policy:
- INFO: one line per trace
- DEBUG: extraction and decode details (TRACE_LOG_LEVEL=DEBUG)
"""

from __future__ import annotations

import argparse
import json
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from action_tree import TreeItem, build_action_tree_from_events, iter_actions, tree_to_dicts
from config import AnalyzerConfig, setup_logger
from context_store import ContextStore, StoredContext
from fingerprint import compute_fingerprint, find_by_hash, find_similar
from llm_analyzer import LLMClient, LLMConfig, explain_failure
from network_correlator import correlate_network
from stack_trace import NO_ERROR_FOUND, compose_first_error_from_events
from trace_archive import TraceFolder, extracted_trace, is_zip
from trace_events import RawEvent, decode_auxiliary_streams, decode_stream

load_dotenv()

logger = setup_logger("TraceAnalyzer")

LIBRARY_LOGGERS = ("trace_events", "trace_archive", "context_store", "llm_analyzer")

MAX_INLINE_TEXT = 4000


# -----------------------------------------------------------------------------
# Reconstruction
# -----------------------------------------------------------------------------
@dataclass
class TraceReconstruction:
    trace: str
    roots: List[TreeItem]
    network_events: List[RawEvent]
    stack_trace: str
    skipped_primary: int = 0
    skipped_network: int = 0
    report: Dict[str, Any] = field(default_factory=dict)


def _describe_attachment(folder: TraceFolder, att: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(att)
    blob = folder.read_resource(att.get("path"))
    if blob is None:
        blob = folder.read_resource(att.get("sha1"))
    out["resourceFound"] = blob is not None
    if blob is not None:
        out["sizeBytes"] = len(blob)
        ct = str(att.get("contentType") or "")
        if ct.startswith("text/") or "json" in ct:
            out["text"] = blob.decode("utf-8", errors="replace")[:MAX_INLINE_TEXT]
    return out


def _resolve_resources(items: List[Dict[str, Any]], folder: TraceFolder) -> None:
    stack = list(items)
    while stack:
        d = stack.pop()
        if d.get("kind") == "action":
            d["attachments"] = [
                _describe_attachment(folder, a) for a in d.get("attachments") or [] if isinstance(a, dict)
            ]
            stack.extend(d.get("children") or [])
        elif d.get("kind") == "frame":
            d["resourceFound"] = folder.read_resource(d.get("sha1")) is not None


def build_report(trace: str, roots: List[TreeItem], folder: TraceFolder, *, stack_trace: str,
                 network_count: int, skipped: int) -> Dict[str, Any]:
    actions = list(iter_actions(roots))
    items = tree_to_dicts(roots)
    _resolve_resources(items, folder)
    return {
        "trace": trace,
        "stats": {
            "actions": len(actions),
            "errors": sum(1 for a in actions if a.has_error),
            "networkEvents": network_count,
            "skippedLines": skipped,
        },
        "stackTrace": stack_trace,
        "actions": items,
    }


def reconstruct_trace(path: Path, *, pop_by_id: bool = False) -> TraceReconstruction:
    """
    Everything that needs the extracted files happens inside the context; the
    temp dir is gone by the time this returns (or raises).
    """
    path = Path(path)
    with extracted_trace(path) as folder:
        primary = decode_stream(folder.read_primary_text(), stream="primary")
        network = decode_auxiliary_streams(folder.read_network_texts())

        roots = build_action_tree_from_events(primary.events, pop_by_id=pop_by_id)
        correlate_network(roots, network.events)
        stack_trace = compose_first_error_from_events(primary.events)

        skipped = primary.skipped + network.skipped
        report = build_report(
            str(path), roots, folder,
            stack_trace=stack_trace,
            network_count=len(network.events),
            skipped=skipped,
        )

    if skipped:
        logger.debug("%s: skipped %d malformed line(s)", path, skipped)

    return TraceReconstruction(
        trace=str(path),
        roots=roots,
        network_events=network.events,
        stack_trace=stack_trace,
        skipped_primary=primary.skipped,
        skipped_network=network.skipped,
        report=report,
    )


# -----------------------------------------------------------------------------
# Analysis
# -----------------------------------------------------------------------------
def trace_dir_of(path: Path) -> Path:
    return path.parent if is_zip(path) else path


def scope_dir_of(path: Path) -> Path:
    return trace_dir_of(path).parent


def make_llm_client(cfg: AnalyzerConfig) -> Optional[LLMClient]:
    if not cfg.use_llm:
        return None
    if not cfg.openai_api_key:
        logger.warning("OPENAI_API_KEY is not set; failures will be recorded without an explanation")
        return None
    return LLMClient(LLMConfig(
        model=cfg.model,
        api_key=cfg.openai_api_key,
        timeout_s=cfg.llm_timeout_s,
        max_retries=cfg.llm_max_retries,
        max_tokens=cfg.max_tokens,
    ))


def analyze_trace(
    trace_path: Path,
    cfg: Optional[AnalyzerConfig] = None,
    store: Optional[ContextStore] = None,
    llm: Optional[LLMClient] = None,
) -> Dict[str, Any]:
    cfg = cfg or AnalyzerConfig.from_env()
    trace_path = Path(trace_path)
    trace_dir = trace_dir_of(trace_path)
    store = store or ContextStore(scope_dir_of(trace_path) / cfg.context_filename)

    recon = reconstruct_trace(trace_path, pop_by_id=cfg.pop_by_id)
    result: Dict[str, Any] = {"subfolder": str(trace_dir), "stackTrace": recon.stack_trace}

    if cfg.write_report:
        report_path = trace_dir / cfg.report_filename
        report_path.write_text(json.dumps(recon.report, indent=2, default=str), encoding="utf-8")
        result["reportPath"] = str(report_path)

    if recon.stack_trace == NO_ERROR_FOUND:
        logger.info("%s: passed (no error in trace)", trace_dir)
        result["status"] = "passed"
        return result

    fp = compute_fingerprint(recon.stack_trace)
    result["stackTraceHash"] = fp.digest
    contexts = store.load()

    dup = find_by_hash(fp.digest, contexts)
    if dup is not None:
        logger.info("%s: duplicate of %s, skipping", trace_dir, dup.folder_path)
        result.update({
            "status": "duplicate",
            "matchedFolder": dup.folder_path,
            "similarity": 1.0,
            "explanation": dup.explanation,
        })
        return result

    match = find_similar(fp.normalized, contexts, threshold=cfg.similarity_threshold)
    if match is not None:
        logger.info("%s: %s to %s (%.2f), skipping", trace_dir, match.kind, match.context.folder_path, match.similarity)
        result.update({
            "status": "similar",
            "matchKind": match.kind,
            "matchedFolder": match.context.folder_path,
            "similarity": match.similarity,
            "explanation": match.context.explanation,
        })
        return result

    client = llm if llm is not None else make_llm_client(cfg)
    explanation: Optional[str] = None
    if client is not None:
        try:
            explanation = explain_failure(client, recon.stack_trace, recon.roots)
        except RuntimeError as e:
            logger.error("%s: LLM analysis failed: %s", trace_dir, e)
            result["llmError"] = str(e)

    store.append(StoredContext(
        explanation=explanation,
        stack_trace=recon.stack_trace,
        normalized_stack_trace=fp.normalized,
        stack_trace_hash=fp.digest,
        folder_path=str(trace_dir),
    ))
    logger.info("%s: new failure recorded", trace_dir)
    result.update({"status": "analyzed", "explanation": explanation})
    return result


def analyze_folder(
    folder: Path,
    cfg: Optional[AnalyzerConfig] = None,
    llm: Optional[LLMClient] = None,
) -> List[Dict[str, Any]]:
    """Analyze every <folder>/<sub>/trace.zip in name order, sharing one context store."""
    cfg = cfg or AnalyzerConfig.from_env()
    folder = Path(folder)
    store = ContextStore(folder / cfg.context_filename)
    client = llm if llm is not None else make_llm_client(cfg)

    results: List[Dict[str, Any]] = []
    for sub in sorted(p for p in folder.iterdir() if p.is_dir()):
        trace_zip = sub / "trace.zip"
        if not trace_zip.exists():
            continue
        try:
            results.append(analyze_trace(trace_zip, cfg, store=store, llm=client))
        except Exception as e:
            logger.error("%s: %s", sub, e)
            results.append({"subfolder": str(sub), "error": str(e)})
    return results


# -----------------------------------------------------------------------------
# Main
# -----------------------------------------------------------------------------
def _is_trace_folder(p: Path) -> bool:
    return any(x.is_file() for x in p.glob("*.trace"))


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Analyze Playwright trace.zip files and deduplicate failures.")
    ap.add_argument("target", help="trace.zip, unzipped trace folder, or folder of <sub>/trace.zip")
    ap.add_argument("--threshold", type=float, default=None, help="near-duplicate similarity cutoff (0-1)")
    ap.add_argument("--context-file", default=None, help="context store file name inside the scope folder")
    ap.add_argument("--model", default=None)
    ap.add_argument("--no-llm", action="store_true", help="record new failures without calling the model")
    ap.add_argument("--no-report", action="store_true", help="do not write trace_report.json")
    ap.add_argument("--pop-by-id", action="store_true",
                    help="unwind the open-call stack by callId on non-nested completions")
    ap.add_argument("--log-level", default=None)
    args = ap.parse_args(argv)

    if args.log_level:
        setup_logger("TraceAnalyzer", args.log_level)
    for name in LIBRARY_LOGGERS:
        setup_logger(name, args.log_level)

    cfg = AnalyzerConfig.from_env()
    if args.threshold is not None:
        cfg.similarity_threshold = args.threshold
    if args.context_file:
        cfg.context_filename = args.context_file
    if args.model:
        cfg.model = args.model
    if args.no_llm:
        cfg.use_llm = False
    if args.no_report:
        cfg.write_report = False
    if args.pop_by_id:
        cfg.pop_by_id = True

    target = Path(args.target).expanduser()
    if not target.exists():
        logger.error("Path not found: %s", target)
        return 1

    try:
        if target.is_dir() and not _is_trace_folder(target):
            out: Any = analyze_folder(target, cfg)
        elif target.is_dir() or is_zip(target):
            out = analyze_trace(target, cfg)
        else:
            logger.error("Invalid input: must be a trace.zip file or a folder containing subfolders with trace.zip")
            return 1
    except (FileNotFoundError, zipfile.BadZipFile) as e:
        logger.error("%s: %s", target, e)
        return 1

    print(json.dumps(out, indent=2, default=str))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
