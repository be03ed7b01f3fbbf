"""Pytest configuration and fixtures."""
import os

import pytest

# Fast defaults for anything that falls back to config
os.environ.setdefault("NODE_MIN_DELAY", "0")
os.environ.setdefault("NODE_MAX_DELAY", "0")
os.environ.setdefault("NODE_FAILURE_RATE", "0")
os.environ.setdefault("POLL_INITIAL_DELAY", "0")
os.environ.setdefault("POLL_INITIAL_INTERVAL", "0.001")
os.environ.setdefault("POLL_MAX_INTERVAL", "0.01")


@pytest.fixture
def make_graph():
    """
    Build a Graph from ``(source, target)`` pairs.

    Node ids come from the pairs in first-seen order, followed by
    ``extra_nodes``. Every node gets the prompt ``"task <id>"`` unless
    overridden in ``prompts``.
    """
    from schema import FlowEdge, FlowNode, Graph, NodeData

    def _make(
        pairs: list[tuple[str, str]],
        extra_nodes: tuple[str, ...] = (),
        prompts: dict[str, str | None] | None = None,
    ) -> Graph:
        prompts = prompts or {}
        ids: list[str] = []
        for source, target in pairs:
            for nid in (source, target):
                if nid not in ids:
                    ids.append(nid)
        for nid in extra_nodes:
            if nid not in ids:
                ids.append(nid)

        nodes = [
            FlowNode(id=nid, data=NodeData(label=nid.upper(), prompt=prompts.get(nid, f"task {nid}")))
            for nid in ids
        ]
        edges = [FlowEdge(id=f"{s}->{t}", source=s, target=t) for s, t in pairs]
        return Graph(nodes=nodes, edges=edges)

    return _make
