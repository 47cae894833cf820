import re
from typing import Dict, List, Sequence

import networkx as nx

from .canvas_editor import DiagramConnection, DiagramNode
from .canvas_nodes import NODE_TRIGGER
from .ui_mapper import node_label

MERMAID_RESERVED_IDS = {"end", "graph", "subgraph", "style", "class", "click"}


def build_workflow_graph(
    nodes: Sequence[DiagramNode], connections: Sequence[DiagramConnection]
) -> nx.DiGraph:
    graph = nx.DiGraph()
    for node in nodes:
        graph.add_node(node.id, type=node.type)
    for connection in connections:
        if connection.source in graph and connection.target in graph:
            graph.add_edge(connection.source, connection.target, id=connection.id, label=connection.label)
    return graph


def find_unreachable_nodes(
    nodes: Sequence[DiagramNode], connections: Sequence[DiagramConnection]
) -> List[str]:
    """Ids of nodes no trigger can reach, in node order.

    Without a trigger, nodes with no incoming connection act as entry points.
    """
    graph = build_workflow_graph(nodes, connections)
    roots = [node.id for node in nodes if node.type == NODE_TRIGGER]
    if not roots:
        roots = [node.id for node in nodes if graph.in_degree(node.id) == 0]

    reachable = set(roots)
    for root in roots:
        reachable.update(nx.descendants(graph, root))
    return [node.id for node in nodes if node.id not in reachable]


def find_cycles(
    nodes: Sequence[DiagramNode], connections: Sequence[DiagramConnection]
) -> List[List[str]]:
    graph = build_workflow_graph(nodes, connections)
    return [list(cycle) for cycle in nx.simple_cycles(graph)]


def export_to_mermaid(nodes: Sequence[DiagramNode], connections: Sequence[DiagramConnection]) -> str:
    ids = _mermaid_ids(nodes)
    lines = ["graph TD;"]
    for node in nodes:
        label = node_label(node).replace('"', '\\"')
        lines.append(f'    {ids[node.id]}["{label}"];')
    for connection in connections:
        if connection.source not in ids or connection.target not in ids:
            continue
        source = ids[connection.source]
        target = ids[connection.target]
        label = connection.label.replace('"', '\\"').replace("|", "/")
        if label:
            lines.append(f"    {source} -->|{label}| {target};")
        else:
            lines.append(f"    {source} --> {target};")
    return "\n".join(lines) + "\n"


def _mermaid_ids(nodes: Sequence[DiagramNode]) -> Dict[str, str]:
    ids: Dict[str, str] = {}
    used = set()
    for node in nodes:
        base = re.sub(r"\W", "_", node.id) or "node"
        if base.lower() in MERMAID_RESERVED_IDS:
            base = f"{base}_node"
        candidate = base
        suffix = 2
        while candidate in used:
            candidate = f"{base}_{suffix}"
            suffix += 1
        used.add(candidate)
        ids[node.id] = candidate
    return ids
