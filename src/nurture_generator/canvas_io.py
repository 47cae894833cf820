import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .canvas_editor import CanvasEditor, DiagramConnection, DiagramNode
from .canvas_nodes import NODE_EMAIL, attributes_from_dict, attributes_to_dict, is_node_type
from .sequence_generator import FormData

LOGGER = logging.getLogger(__name__)

SAVE_FILENAME_PREFIX = "email-sequence"
EXPORT_FILENAME_PREFIX = "email-sequence-export"


def node_to_dict(node: DiagramNode) -> Dict[str, Any]:
    return {
        "id": node.id,
        "type": node.type,
        "position": {"x": node.position[0], "y": node.position[1]},
        "data": attributes_to_dict(node.type, node.attributes),
    }


def node_from_dict(raw: Any) -> Optional[DiagramNode]:
    if not isinstance(raw, Mapping):
        return None
    node_id = raw.get("id")
    node_type = raw.get("type")
    if not isinstance(node_id, str) or not node_id or not isinstance(node_type, str):
        return None
    if not is_node_type(node_type):
        return None
    position = raw.get("position")
    if not isinstance(position, Mapping):
        return None
    try:
        x, y = float(position.get("x")), float(position.get("y"))
    except (TypeError, ValueError):
        return None
    return DiagramNode(
        id=node_id,
        type=node_type,
        position=(x, y),
        attributes=attributes_from_dict(node_type, raw.get("data")),
    )


def connection_to_dict(connection: DiagramConnection) -> Dict[str, Any]:
    data = {"id": connection.id, "from": connection.source, "to": connection.target}
    if connection.label:
        data["label"] = connection.label
    return data


def connection_from_dict(raw: Any) -> Optional[DiagramConnection]:
    if not isinstance(raw, Mapping):
        return None
    source, target = raw.get("from"), raw.get("to")
    if not isinstance(source, str) or not isinstance(target, str):
        return None
    connection_id = raw.get("id")
    if not isinstance(connection_id, str) or not connection_id:
        connection_id = f"conn-{source}-{target}"
    return DiagramConnection(id=connection_id, source=source, target=target, label=str(raw.get("label") or ""))


def build_save_document(editor: CanvasEditor, now: Optional[datetime] = None) -> Dict[str, Any]:
    return {
        "nodes": [node_to_dict(node) for node in editor.nodes],
        "connections": [connection_to_dict(connection) for connection in editor.connections],
        "formData": editor.form_data.to_dict() if editor.form_data else None,
        "timestamp": _iso(now),
    }


def save_document(editor: CanvasEditor, now: Optional[datetime] = None) -> str:
    return json.dumps(build_save_document(editor, now), indent=2, ensure_ascii=False)


def load_document(editor: CanvasEditor, text: str) -> Tuple[bool, str]:
    """Replace the editor state with a saved document.

    The editor is only touched once the whole document has been read, so a
    failed load keeps the current diagram.
    """
    try:
        document = json.loads(text)
    except (TypeError, ValueError) as exc:
        LOGGER.warning("Rejected sequence file: %s", exc)
        return False, f"Invalid JSON: {exc}"
    if not isinstance(document, dict):
        return False, "Sequence file must contain a JSON object."

    raw_nodes = document.get("nodes") or []
    raw_connections = document.get("connections") or []
    if not isinstance(raw_nodes, list) or not isinstance(raw_connections, list):
        return False, "'nodes' and 'connections' must be lists."

    nodes: List[DiagramNode] = []
    seen = set()
    for raw in raw_nodes:
        node = node_from_dict(raw)
        if node is None or node.id in seen:
            LOGGER.warning("Skipping malformed node entry: %r", raw)
            continue
        seen.add(node.id)
        nodes.append(node)

    connections = [c for c in (connection_from_dict(raw) for raw in raw_connections) if c is not None]
    editor.replace_state(nodes, connections, FormData.from_dict(document.get("formData")))
    LOGGER.info("Loaded sequence with %s nodes and %s connections", len(nodes), len(editor.connections))
    return True, ""


def build_export_document(editor: CanvasEditor, now: Optional[datetime] = None) -> Dict[str, Any]:
    emails = editor.email_nodes()
    sequence = []
    for node in emails:
        sequence.append(
            {
                "position": node.attributes.sequence_position or 0,
                "subject": node.attributes.subject or "No Subject",
                "content": node.attributes.content or "No Content",
                "type": NODE_EMAIL,
            }
        )
    return {
        "sequence": sequence,
        "connections": [{"from": c.source, "to": c.target} for c in editor.connections],
        "metadata": {
            "totalEmails": len(emails),
            "createdAt": _iso(now),
            "formData": editor.form_data.to_dict() if editor.form_data else None,
        },
    }


def export_document(editor: CanvasEditor, now: Optional[datetime] = None) -> str:
    return json.dumps(build_export_document(editor, now), indent=2, ensure_ascii=False)


def save_filename(now: Optional[datetime] = None) -> str:
    return f"{SAVE_FILENAME_PREFIX}-{_date(now)}.json"


def export_filename(now: Optional[datetime] = None) -> str:
    return f"{EXPORT_FILENAME_PREFIX}-{_date(now)}.json"


def _now_utc() -> datetime:
    return datetime.now(tz=timezone.utc)


def _iso(now: Optional[datetime]) -> str:
    return (now or _now_utc()).isoformat()


def _date(now: Optional[datetime]) -> str:
    return (now or _now_utc()).date().isoformat()
