from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .canvas_editor import DiagramConnection, DiagramNode
from .canvas_nodes import (
    NODE_AB_TEST,
    NODE_CONDITION,
    NODE_EMAIL,
    NODE_SPLIT,
    NODE_TRIGGER,
    NODE_WAIT,
)

PositionMap = Dict[str, Tuple[float, float]]

NODE_ICONS = {
    NODE_EMAIL: "✉️",
    NODE_WAIT: "⏱️",
    NODE_TRIGGER: "⚡",
    NODE_AB_TEST: "🔀",
    NODE_CONDITION: "❓",
    NODE_SPLIT: "➗",
}


def node_label(node: DiagramNode) -> str:
    attrs = node.attributes
    icon = NODE_ICONS.get(node.type, "")
    if node.type == NODE_EMAIL:
        prefix = f"Email {attrs.sequence_position}" if attrs.sequence_position else "Email"
        text = f"{prefix}: {attrs.subject}"
        if attrs.variants:
            text += " (A/B)"
    elif node.type == NODE_WAIT:
        text = f"Wait {_format_number(attrs.duration)} {attrs.unit}"
    elif node.type == NODE_TRIGGER:
        text = attrs.label or f"Trigger: {attrs.event}"
    elif node.type == NODE_AB_TEST:
        text = f"A/B Test {_format_number(attrs.split)}/{_format_number(100 - attrs.split)}"
    elif node.type == NODE_CONDITION:
        text = f"If {attrs.field_name or '?'} {attrs.operator} {attrs.value or '?'}".strip()
    elif node.type == NODE_SPLIT:
        text = f"Split {_format_number(attrs.percentage)}% / {_format_number(100 - attrs.percentage)}%"
    else:
        text = node.id
    return f"{icon} {text}".strip()


def node_positions(nodes: Sequence[DiagramNode]) -> PositionMap:
    return {node.id: node.position for node in nodes}


def to_flow_node_specs(
    nodes: Sequence[DiagramNode], connections: Optional[Sequence[DiagramConnection]] = None
) -> List[Dict[str, Any]]:
    connections = connections or []
    positions = node_positions(nodes)
    source_positions, target_positions = _resolve_node_handle_positions(positions, connections)
    has_outgoing = {connection.source for connection in connections}

    specs: List[Dict[str, Any]] = []
    for node in nodes:
        x, y = node.position
        if node.type == NODE_TRIGGER:
            flow_type = "input"
        elif node.id in has_outgoing:
            flow_type = "default"
        else:
            flow_type = "output"
        specs.append(
            {
                "id": node.id,
                "pos": (float(x), float(y)),
                "data": {"content": node_label(node)},
                "node_type": flow_type,
                "source_position": source_positions.get(node.id, "bottom"),
                "target_position": target_positions.get(node.id, "top"),
                "draggable": True,
            }
        )
    return specs


def to_flow_edge_specs(
    connections: Sequence[DiagramConnection], positions: Optional[PositionMap] = None
) -> List[Dict[str, Any]]:
    positions = positions or {}
    specs: List[Dict[str, Any]] = []
    for connection in connections:
        source = connection.source
        target = connection.target
        edge_type = "smoothstep"
        if source in positions and target in positions:
            sy = positions[source][1]
            ty = positions[target][1]
            if ty < sy:
                edge_type = "step"
            elif abs(ty - sy) < 1e-6:
                edge_type = "straight"

        specs.append(
            {
                "id": connection.id,
                "source": source,
                "target": target,
                "label": connection.label,
                "animated": True,
                "edge_type": edge_type,
            }
        )
    return specs


def _get_item_value(item: Any, key: str, default: Any = None) -> Any:
    if isinstance(item, Mapping):
        return item.get(key, default)
    return getattr(item, key, default)


def flow_positions(flow_nodes: Sequence[Any]) -> PositionMap:
    """Read node positions back from canvas nodes (objects or dicts)."""
    positions: PositionMap = {}
    for node in flow_nodes:
        node_id = str(_get_item_value(node, "id", "") or "")
        if not node_id:
            continue
        raw = _get_item_value(node, "position", None)
        if raw is None:
            raw = _get_item_value(node, "pos", None)
        try:
            if isinstance(raw, Mapping):
                positions[node_id] = (float(raw.get("x", 0.0)), float(raw.get("y", 0.0)))
            elif raw is not None and len(raw) >= 2:
                positions[node_id] = (float(raw[0]), float(raw[1]))
        except (TypeError, ValueError):
            continue
    return positions


def find_moved_nodes(
    nodes: Sequence[DiagramNode], positions: PositionMap, tolerance: float = 1.0
) -> List[str]:
    moved: List[str] = []
    for node in nodes:
        if node.id not in positions:
            continue
        x, y = positions[node.id]
        if abs(x - node.position[0]) > tolerance or abs(y - node.position[1]) > tolerance:
            moved.append(node.id)
    return moved


def pick_moved_node(
    nodes: Sequence[DiagramNode], positions: PositionMap, tolerance: float = 1.0
) -> Optional[str]:
    """The one move to apply this rerun, email nodes first.

    A restack shifts every email, so any other reported position is stale.
    """
    moved = set(find_moved_nodes(nodes, positions, tolerance))
    candidates = [node for node in nodes if node.id in moved]
    for node in candidates:
        if node.type == NODE_EMAIL:
            return node.id
    return candidates[0].id if candidates else None


def _format_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:g}"


def _resolve_node_handle_positions(
    positions: PositionMap, connections: Sequence[DiagramConnection]
) -> Tuple[Dict[str, str], Dict[str, str]]:
    outgoing: Dict[str, List[Tuple[float, float]]] = {}
    incoming: Dict[str, List[Tuple[float, float]]] = {}
    for connection in connections:
        if connection.source not in positions or connection.target not in positions:
            continue
        sx, sy = positions[connection.source]
        tx, ty = positions[connection.target]
        outgoing.setdefault(connection.source, []).append((tx - sx, ty - sy))
        incoming.setdefault(connection.target, []).append((tx - sx, ty - sy))

    source_positions = {
        node_id: _handle_side(vectors, "bottom", "right", "left") for node_id, vectors in outgoing.items()
    }
    target_positions = {
        node_id: _handle_side(vectors, "top", "left", "right") for node_id, vectors in incoming.items()
    }
    return source_positions, target_positions


def _handle_side(vectors: List[Tuple[float, float]], vertical: str, rightward: str, leftward: str) -> str:
    """Ladder links use the vertical handle; only all-sideways links move it."""
    if any(abs(dy) >= abs(dx) for dx, dy in vectors):
        return vertical
    return rightward if sum(dx for dx, _ in vectors) >= 0 else leftward
