"""
action_tree.py

Rebuilds the nested call structure of a test run from the flat primary stream.

Nodes live in one lookup (callId -> ActionNode); relationships are made by id,
and an explicit open-call stack decides where leaf events (stdout, frames, ...)
are hung. Children keep emission order, never timestamp order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional, Union

from trace_events import RawEvent, decode_stream


@dataclass
class ActionNode:
    call_id: str
    parent_id: Optional[str] = None
    title: str = ""
    params: Any = None
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    duration: Optional[float] = None
    error: Any = None
    attachments: List[Dict[str, Any]] = field(default_factory=list)
    stack: List[Dict[str, Any]] = field(default_factory=list)
    children: List["TreeItem"] = field(default_factory=list)
    network: List[RawEvent] = field(default_factory=list)

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    @property
    def has_error(self) -> bool:
        return bool(self.error)


TreeItem = Union[ActionNode, RawEvent]


def _title_for(ev: RawEvent) -> str:
    if ev.api_name:
        return str(ev.api_name)
    return f"{ev.data.get('class')}.{ev.data.get('method')}"


def _node_from_before(ev: RawEvent) -> ActionNode:
    stack = ev.stack
    return ActionNode(
        call_id=ev.call_id,
        parent_id=ev.parent_id,
        title=_title_for(ev),
        params=ev.params,
        start_time=ev.timestamp,
        stack=stack if isinstance(stack, list) else [],
    )


def build_action_tree_from_events(events: Iterable[RawEvent], *, pop_by_id: bool = False) -> List[TreeItem]:
    """
    Build the root list (ActionNodes and leaf events) from decoded primary events.

    pop_by_id=False (default): an `after` pops only when it completes the call
    on top of the stack, so a non-nested completion leaves a stale entry behind.
    pop_by_id=True unwinds the stack down to that call.
    """
    lookup: Dict[str, ActionNode] = {}
    roots: List[TreeItem] = []
    open_stack: List[ActionNode] = []

    for ev in events:
        if ev.kind == "before":
            node = _node_from_before(ev)
            lookup[node.call_id] = node
            parent = lookup.get(node.parent_id) if node.parent_id else None
            if parent is not None:
                parent.children.append(node)
            else:
                roots.append(node)
            open_stack.append(node)

        elif ev.kind == "after":
            node = lookup.get(ev.call_id)
            if node is not None:
                node.end_time = ev.timestamp
                if node.start_time is not None and node.end_time is not None:
                    node.duration = node.end_time - node.start_time
                node.error = ev.error
                node.attachments = ev.attachments
            if open_stack and open_stack[-1].call_id == ev.call_id:
                open_stack.pop()
            elif pop_by_id:
                for i in range(len(open_stack) - 1, -1, -1):
                    if open_stack[i].call_id == ev.call_id:
                        del open_stack[i:]
                        break

        else:
            if open_stack:
                open_stack[-1].children.append(ev)
            else:
                roots.append(ev)

    return roots


def build_action_tree(primary_text: str, *, pop_by_id: bool = False) -> List[TreeItem]:
    return build_action_tree_from_events(decode_stream(primary_text).events, pop_by_id=pop_by_id)


def iter_actions(roots: Iterable[TreeItem]) -> Iterator[ActionNode]:
    """Pre-order walk over action nodes only (leaf events are skipped)."""
    stack: List[TreeItem] = list(reversed(list(roots)))
    while stack:
        item = stack.pop()
        if not isinstance(item, ActionNode):
            continue
        yield item
        stack.extend(reversed(item.children))


# -----------------------------------------------------------------------------
# Serialization
# -----------------------------------------------------------------------------
def node_to_dict(item: TreeItem) -> Dict[str, Any]:
    if isinstance(item, RawEvent):
        return {"kind": item.kind, **item.to_dict()}
    return {
        "kind": "action",
        "callId": item.call_id,
        "parentId": item.parent_id,
        "title": item.title,
        "params": item.params,
        "startTime": item.start_time,
        "endTime": item.end_time,
        "duration": item.duration,
        "error": item.error,
        "attachments": list(item.attachments),
        "stack": list(item.stack),
        "network": [ne.to_dict() for ne in item.network],
        "children": [node_to_dict(c) for c in item.children],
    }


def tree_to_dicts(roots: Iterable[TreeItem]) -> List[Dict[str, Any]]:
    return [node_to_dict(r) for r in roots]
