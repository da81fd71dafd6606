"""
config.py

Environment-driven settings and logger setup shared by the trace tools.

Env vars (all optional, .env is honored by the entry points):
- OPENAI_API_KEY              key for the explanation step
- TRACE_LLM_MODEL             chat model name (default gpt-4o)
- TRACE_LLM_TIMEOUT_S         request timeout in seconds
- TRACE_LLM_MAX_RETRIES       attempts before giving up on the model
- TRACE_LLM_MAX_TOKENS        completion budget
- TRACE_SIMILARITY_THRESHOLD  near-duplicate cutoff in [0, 1]
- TRACE_CONTEXT_FILE          name of the per-folder context store
- TRACE_REPORT_FILE           name of the JSON report written next to a trace
- TRACE_WRITE_REPORT          write the JSON report (default on)
- TRACE_USE_LLM               call the model for new failures (default on)
- TRACE_POP_BY_ID             unwind the open-call stack by callId on non-nested completions
- TRACE_LOG_LEVEL             DEBUG / INFO / WARNING / ERROR
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional


# -----------------------------------------------------------------------------
# Env helpers
# -----------------------------------------------------------------------------
def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None:
        return default
    try:
        return int(v)
    except Exception:
        return default


def _env_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None:
        return default
    try:
        return float(v)
    except Exception:
        return default


def _env_str(name: str, default: str) -> str:
    v = os.getenv(name)
    if v is None:
        return default
    return str(v).strip()


# -----------------------------------------------------------------------------
# Logging
# -----------------------------------------------------------------------------
def _parse_log_level(s: str, default: int = logging.INFO) -> int:
    if not s:
        return default
    s = s.strip().upper()
    return {
        "CRITICAL": logging.CRITICAL,
        "ERROR": logging.ERROR,
        "WARNING": logging.WARNING,
        "WARN": logging.WARNING,
        "INFO": logging.INFO,
        "DEBUG": logging.DEBUG,
    }.get(s, default)


def setup_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    lvl = _parse_log_level(level or _env_str("TRACE_LOG_LEVEL", "INFO"), default=logging.INFO)
    logger = logging.getLogger(name)
    logger.setLevel(lvl)
    if logger.handlers:
        for h in logger.handlers:
            h.setLevel(lvl)
        return logger
    ch = logging.StreamHandler()
    ch.setLevel(lvl)
    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    ch.setFormatter(formatter)
    logger.addHandler(ch)
    return logger


# -----------------------------------------------------------------------------
# Analyzer settings
# -----------------------------------------------------------------------------
@dataclass
class AnalyzerConfig:
    openai_api_key: str = ""
    model: str = "gpt-4o"
    llm_timeout_s: float = 60.0
    llm_max_retries: int = 3
    max_tokens: int = 1000
    similarity_threshold: float = 0.8
    context_filename: str = "ai_context.json"
    report_filename: str = "trace_report.json"
    write_report: bool = True
    use_llm: bool = True
    pop_by_id: bool = False

    @classmethod
    def from_env(cls) -> "AnalyzerConfig":
        return cls(
            openai_api_key=_env_str("OPENAI_API_KEY", ""),
            model=_env_str("TRACE_LLM_MODEL", "gpt-4o"),
            llm_timeout_s=_env_float("TRACE_LLM_TIMEOUT_S", 60.0),
            llm_max_retries=max(1, _env_int("TRACE_LLM_MAX_RETRIES", 3)),
            max_tokens=_env_int("TRACE_LLM_MAX_TOKENS", 1000),
            similarity_threshold=_env_float("TRACE_SIMILARITY_THRESHOLD", 0.8),
            context_filename=_env_str("TRACE_CONTEXT_FILE", "ai_context.json"),
            report_filename=_env_str("TRACE_REPORT_FILE", "trace_report.json"),
            write_report=_env_bool("TRACE_WRITE_REPORT", True),
            use_llm=_env_bool("TRACE_USE_LLM", True),
            pop_by_id=_env_bool("TRACE_POP_BY_ID", False),
        )
