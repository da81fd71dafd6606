"""
llm_analyzer.py

Asks an OpenAI-compatible chat model whether a failing Playwright test broke
because of the test code or the application, given the composed stack trace
and a compact outline of the reconstructed actions.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from action_tree import ActionNode, TreeItem

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are an expert Playwright test analyst."


@dataclass
class LLMConfig:
    model: str
    api_key: str
    base_url: Optional[str] = None
    timeout_s: float = 60.0
    max_retries: int = 3
    max_tokens: int = 1000


class LLMClient:
    """
    Minimal sync OpenAI client wrapper with retries.
    """
    def __init__(self, cfg: LLMConfig, client: Any = None):
        self.cfg = cfg
        self._client = client

    def _ensure_client(self):
        if self._client is not None:
            return
        from openai import OpenAI

        kwargs: Dict[str, Any] = {"api_key": self.cfg.api_key, "timeout": self.cfg.timeout_s}
        if self.cfg.base_url:
            kwargs["base_url"] = self.cfg.base_url
        self._client = OpenAI(**kwargs)

    def chat(self, system: str, user: str) -> str:
        self._ensure_client()

        last_err: Optional[Exception] = None
        for attempt in range(1, self.cfg.max_retries + 1):
            try:
                resp = self._client.chat.completions.create(
                    model=self.cfg.model,
                    messages=[
                        {"role": "system", "content": system},
                        {"role": "user", "content": user},
                    ],
                    max_tokens=self.cfg.max_tokens,
                )
                content = resp.choices[0].message.content or ""
                if not content.strip():
                    raise RuntimeError("Empty model output text")
                return content
            except Exception as e:
                last_err = e
                logger.warning("LLM call failed (attempt %d/%d): %s", attempt, self.cfg.max_retries, e)
                if attempt < self.cfg.max_retries:
                    time.sleep(0.5 * attempt)
        raise RuntimeError(f"LLM chat failed after retries: {last_err}") from last_err


# =============================================================================
# Prompt building
# =============================================================================

def actions_outline(roots: Iterable[TreeItem], *, max_lines: int = 200) -> List[str]:
    lines: List[str] = []
    stack: List[tuple] = [(r, 0) for r in reversed(list(roots))]
    while stack and len(lines) < max_lines:
        item, depth = stack.pop()
        if not isinstance(item, ActionNode):
            continue
        dur = f" ({item.duration:.2f}ms)" if item.duration is not None else ""
        err = " [ERROR]" if item.has_error else ""
        net = f" net={len(item.network)}" if item.network else ""
        lines.append(f"{'  ' * depth}- {item.title}{dur}{net}{err}")
        stack.extend((c, depth + 1) for c in reversed(item.children))
    return lines


def build_prompt(stack_trace: str, outline: List[str]) -> str:
    return (
        "Given the failing test's stack trace and the sequence of test actions, determine if the failure "
        "is due to test code or an application issue.\n"
        "Provide a concise explanation, actionable fixes if test code, or further analysis steps if "
        "application issue.\n\n"
        f"--- stack trace ---\n{stack_trace}\n\n"
        f"--- actions ---\n" + "\n".join(outline)
    )


def explain_failure(client: LLMClient, stack_trace: str, roots: Iterable[TreeItem]) -> str:
    return client.chat(SYSTEM_PROMPT, build_prompt(stack_trace, actions_outline(roots)))
