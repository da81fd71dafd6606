"""
network_correlator.py

Attaches out-of-band network events to the actions that were open when they
happened. An event lands on every action whose [start, end] contains its
timestamp, so nested/overlapping actions may share events.
"""

from __future__ import annotations

from typing import List, Sequence

from action_tree import TreeItem, iter_actions
from trace_events import RawEvent


def events_in_window(events: Sequence[RawEvent], start: float, end: float) -> List[RawEvent]:
    return [ev for ev in events if ev.timestamp is not None and start <= ev.timestamp <= end]


def correlate_network(roots: List[TreeItem], network_events: Sequence[RawEvent]) -> List[TreeItem]:
    for node in iter_actions(roots):
        if node.start_time is None or node.end_time is None:
            continue
        node.network = events_in_window(network_events, node.start_time, node.end_time)
    return roots
