import logging
import uuid
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .canvas_nodes import (
    NODE_EMAIL,
    NODE_TRIGGER,
    EmailAttributes,
    NodeAttributes,
    TriggerAttributes,
    default_attributes,
    is_node_type,
    merge_attributes,
)
from .sequence_generator import EmailArtifact, FormData

LOGGER = logging.getLogger(__name__)

LANE_X = 300.0
LADDER_TOP_Y = 100.0
SLOT_HEIGHT = 250.0
MIN_Y = 40.0
TRIGGER_POSITION = (LANE_X, MIN_Y)
START_TRIGGER_ID = "trigger-start"
EMAIL_TEMPLATE_COUNT = 4

Position = Tuple[float, float]
Listener = Callable[["CanvasEditor"], None]


@dataclass(frozen=True)
class DiagramNode:
    id: str
    type: str
    position: Position
    attributes: NodeAttributes


@dataclass(frozen=True)
class DiagramConnection:
    id: str
    source: str
    target: str
    label: str = ""


class CanvasEditor:
    """Authoritative node/connection state behind the workflow canvas.

    Email nodes live on a single vertical lane ("ladder"); moving one of them
    restacks the whole ladder and rebuilds the trigger/email chain. Every
    command computes the next node and connection lists in full and swaps
    both in with a single assignment, so a failed command leaves the previous
    state intact and no connection can outlive one of its endpoints.
    """

    def __init__(self, form_data: Optional[FormData] = None) -> None:
        self.form_data = form_data
        self._nodes: List[DiagramNode] = []
        self._connections: List[DiagramConnection] = []
        self.selected_node_id: Optional[str] = None
        self.pending_connection_source: Optional[str] = None
        self._listeners: List[Listener] = []

    @property
    def nodes(self) -> List[DiagramNode]:
        return list(self._nodes)

    @property
    def connections(self) -> List[DiagramConnection]:
        return list(self._connections)

    @property
    def selected_node(self) -> Optional[DiagramNode]:
        return self.get_node(self.selected_node_id) if self.selected_node_id else None

    def get_node(self, node_id: str) -> Optional[DiagramNode]:
        for node in self._nodes:
            if node.id == node_id:
                return node
        return None

    def email_nodes(self) -> List[DiagramNode]:
        return [node for node in self._nodes if node.type == NODE_EMAIL]

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def replace_state(
        self,
        nodes: Sequence[DiagramNode],
        connections: Sequence[DiagramConnection],
        form_data: Optional[FormData] = None,
    ) -> None:
        node_ids = {node.id for node in nodes}
        valid = [c for c in connections if c.source in node_ids and c.target in node_ids]
        if len(valid) != len(connections):
            LOGGER.warning("Dropped %s connections with missing endpoints", len(connections) - len(valid))
        self._commit(list(nodes), valid)
        self.form_data = form_data
        if self.selected_node_id not in node_ids:
            self.selected_node_id = None
        if self.pending_connection_source not in node_ids:
            self.pending_connection_source = None

    def seed_from_sequence(self, emails: Sequence[EmailArtifact], form_data: Optional[FormData] = None) -> None:
        trigger = DiagramNode(
            id=START_TRIGGER_ID,
            type=NODE_TRIGGER,
            position=TRIGGER_POSITION,
            attributes=TriggerAttributes(event="user_signup", label="User Signs Up"),
        )
        email_nodes = []
        for index, email in enumerate(emails):
            email_nodes.append(
                DiagramNode(
                    id=f"email-{email.email_number}",
                    type=NODE_EMAIL,
                    position=_ladder_position(index),
                    attributes=EmailAttributes(
                        subject=email.subject,
                        content=email.body,
                        sequence_position=index + 1,
                        variants=(
                            (email.ab_variants.variant_a, email.ab_variants.variant_b)
                            if email.ab_variants
                            else None
                        ),
                    ),
                )
            )
        self.selected_node_id = None
        self.pending_connection_source = None
        self.form_data = form_data
        self._commit([trigger] + email_nodes, _chain_connections([trigger], email_nodes))

    def add_node(self, node_type: str, form_data: Optional[FormData] = None) -> Optional[DiagramNode]:
        if not is_node_type(node_type):
            LOGGER.warning("Ignoring unknown node type %r", node_type)
            return None
        context = form_data if form_data is not None else self.form_data
        emails = self.email_nodes()
        position = TRIGGER_POSITION if node_type == NODE_TRIGGER else _slot_below(emails)

        if node_type == NODE_EMAIL:
            sequence_position = len(emails) + 1
            subject, content = email_template_for_position(sequence_position, context)
            node = DiagramNode(
                id=self._unique_email_id(sequence_position),
                type=NODE_EMAIL,
                position=position,
                attributes=EmailAttributes(
                    subject=subject,
                    content=content,
                    sequence_position=sequence_position,
                ),
            )
        else:
            node = DiagramNode(
                id=_new_id(node_type),
                type=node_type,
                position=position,
                attributes=default_attributes(node_type),
            )

        connections = list(self._connections)
        if node_type == NODE_EMAIL:
            source = emails[-1] if emails else self._first_trigger()
            if source is not None:
                connections.append(DiagramConnection(id=_new_id("conn"), source=source.id, target=node.id))
        self._commit(self._nodes + [node], connections)
        return node

    def update_node(
        self,
        node_id: str,
        position: Optional[Position] = None,
        attributes: Optional[Mapping[str, Any]] = None,
    ) -> Optional[DiagramNode]:
        target = self.get_node(node_id)
        if target is None:
            return None

        updated = target
        if attributes:
            updated = replace(updated, attributes=merge_attributes(updated.type, updated.attributes, attributes))
        if position is not None:
            x, y = float(position[0]), float(position[1])
            if updated.type == NODE_EMAIL:
                x, y = LANE_X, max(MIN_Y, y)
            updated = replace(updated, position=(x, y))

        nodes = [updated if node.id == node_id else node for node in self._nodes]
        if position is not None and updated.type == NODE_EMAIL:
            nodes, connections = _restack_ladder(nodes)
            self._commit(nodes, connections)
        else:
            self._commit(nodes, list(self._connections))
        return self.get_node(node_id)

    def delete_node(self, node_id: str) -> bool:
        if self.get_node(node_id) is None:
            return False
        nodes = [node for node in self._nodes if node.id != node_id]
        connections = [c for c in self._connections if c.source != node_id and c.target != node_id]
        if self.selected_node_id == node_id:
            self.selected_node_id = None
        if self.pending_connection_source == node_id:
            self.pending_connection_source = None
        self._commit(nodes, connections)
        return True

    def add_connection(self, source: str, target: str, label: str = "") -> Optional[DiagramConnection]:
        if source == target or self.get_node(source) is None or self.get_node(target) is None:
            return None
        connection = DiagramConnection(id=_new_id("conn"), source=source, target=target, label=label)
        self._commit(list(self._nodes), self._connections + [connection])
        return connection

    def delete_connection(self, connection_id: str) -> bool:
        connections = [c for c in self._connections if c.id != connection_id]
        if len(connections) == len(self._connections):
            return False
        self._commit(list(self._nodes), connections)
        return True

    def start_connection(self, node_id: str) -> None:
        if self.get_node(node_id) is None:
            return
        self.pending_connection_source = node_id

    def complete_connection(self, node_id: str, label: str = "") -> Optional[DiagramConnection]:
        source = self.pending_connection_source
        self.pending_connection_source = None
        if source is None or source == node_id:
            return None
        return self.add_connection(source, node_id, label)

    def select_node(self, node_id: Optional[str]) -> None:
        if node_id is not None and self.get_node(node_id) is None:
            return
        self.selected_node_id = node_id
        self._notify()

    def _commit(self, nodes: List[DiagramNode], connections: List[DiagramConnection]) -> None:
        self._nodes, self._connections = nodes, connections
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    def _first_trigger(self) -> Optional[DiagramNode]:
        for node in self._nodes:
            if node.type == NODE_TRIGGER:
                return node
        return None

    def _unique_email_id(self, sequence_position: int) -> str:
        existing = {node.id for node in self._nodes}
        candidate = sequence_position
        while f"email-{candidate}" in existing:
            candidate += 1
        return f"email-{candidate}"


def email_template_for_position(position: int, form_data: Optional[FormData]) -> Tuple[str, str]:
    if form_data is None:
        return f"Email {position}", "Auto-generated email content"

    product = _first_word(form_data.product_description) or "our product"
    audience = _first_word(form_data.target_audience) or "Customer"
    tone = form_data.tone_of_voice
    templates = [
        (
            f"Welcome to {product}!",
            "🎯 Welcome new user and introduce the product\n\n"
            "📝 • Thank you for signing up\n• Here's what you can expect\n\n"
            f"🚀 Get Started\n\n💬 {tone}",
        ),
        (
            f"Why {audience}s Love Our Product",
            "🎯 Educate about product benefits\n\n"
            "📝 • Key features and benefits\n• Customer testimonials\n\n"
            f"🚀 Learn More\n\n💬 {tone}",
        ),
        (
            "Don't Miss Out - Limited Time Offer!",
            "🎯 Create urgency and drive action\n\n"
            "📝 • Special offer details\n• Limited time availability\n\n"
            f"🚀 Claim Offer\n\n💬 {tone}",
        ),
        (
            "Final Reminder - Your Offer Expires Soon",
            "🎯 Last chance conversion\n\n"
            "📝 • Final call to action\n• What happens next\n\n"
            f"🚀 Act Now\n\n💬 {tone}",
        ),
    ]
    index = min(max(position, 1) - 1, EMAIL_TEMPLATE_COUNT - 1)
    return templates[index]


def _restack_ladder(nodes: List[DiagramNode]) -> Tuple[List[DiagramNode], List[DiagramConnection]]:
    triggers = [node for node in nodes if node.type == NODE_TRIGGER]
    emails = sorted(
        (node for node in nodes if node.type == NODE_EMAIL),
        key=lambda node: node.position[1],
    )
    others = [node for node in nodes if node.type not in {NODE_EMAIL, NODE_TRIGGER}]
    stacked = [replace(node, position=_ladder_position(index)) for index, node in enumerate(emails)]
    return triggers + stacked + others, _chain_connections(triggers, stacked)


def _chain_connections(
    triggers: Sequence[DiagramNode], emails: Sequence[DiagramNode]
) -> List[DiagramConnection]:
    connections: List[DiagramConnection] = []
    if triggers and emails:
        connections.append(DiagramConnection(id="conn-trigger", source=triggers[0].id, target=emails[0].id))
    for index in range(len(emails) - 1):
        connections.append(
            DiagramConnection(id=f"conn-{index}", source=emails[index].id, target=emails[index + 1].id)
        )
    return connections


def _ladder_position(index: int) -> Position:
    return (LANE_X, LADDER_TOP_Y + index * SLOT_HEIGHT)


def _slot_below(emails: Sequence[DiagramNode]) -> Position:
    if not emails:
        return _ladder_position(0)
    return (LANE_X, max(node.position[1] for node in emails) + SLOT_HEIGHT)


def _first_word(text: str) -> str:
    parts = (text or "").split()
    return parts[0] if parts else ""


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def describe_state(editor: CanvasEditor) -> Dict[str, int]:
    return {
        "node_count": len(editor.nodes),
        "email_count": len(editor.email_nodes()),
        "connection_count": len(editor.connections),
    }
