from src.nurture_generator.canvas_editor import CanvasEditor, DiagramNode
from src.nurture_generator.canvas_nodes import NODE_EMAIL, NODE_TRIGGER, NODE_WAIT, WaitAttributes
from src.nurture_generator.graph_logic import (
    build_workflow_graph,
    export_to_mermaid,
    find_cycles,
    find_unreachable_nodes,
)
from src.nurture_generator.sequence_generator import EmailArtifact


def _editor():
    editor = CanvasEditor()
    editor.seed_from_sequence([EmailArtifact(1, 'Say "hi"', "b"), EmailArtifact(2, "Tips", "b")])
    return editor


def test_build_workflow_graph_skips_dangling_edges():
    editor = _editor()
    graph = build_workflow_graph(editor.nodes, editor.connections)

    assert set(graph.nodes) == {"trigger-start", "email-1", "email-2"}
    assert graph.has_edge("trigger-start", "email-1")
    assert graph.nodes["email-1"]["type"] == NODE_EMAIL


def test_unreachable_nodes_are_reported_after_gap():
    editor = CanvasEditor()
    editor.add_node(NODE_TRIGGER)
    editor.add_node(NODE_EMAIL)
    second = editor.add_node(NODE_EMAIL)
    third = editor.add_node(NODE_EMAIL)
    editor.delete_node(second.id)

    assert find_unreachable_nodes(editor.nodes, editor.connections) == [third.id]


def test_without_trigger_sources_act_as_roots():
    editor = CanvasEditor()
    first = editor.add_node(NODE_WAIT)
    second = editor.add_node(NODE_WAIT)
    editor.add_connection(first.id, second.id)

    assert find_unreachable_nodes(editor.nodes, editor.connections) == []


def test_find_cycles_detects_loops():
    editor = _editor()
    assert find_cycles(editor.nodes, editor.connections) == []

    editor.add_connection("email-2", "email-1", "again")
    cycles = find_cycles(editor.nodes, editor.connections)
    assert len(cycles) == 1
    assert set(cycles[0]) == {"email-1", "email-2"}


def test_export_to_mermaid_sanitizes_ids_and_escapes_labels():
    editor = _editor()
    editor.add_connection("email-2", "trigger-start", "restart")
    text = export_to_mermaid(editor.nodes, editor.connections)

    assert text.startswith("graph TD;\n")
    assert 'email_1["✉️ Email 1: Say \\"hi\\""];' in text
    assert "    trigger_start --> email_1;" in text
    assert "    email_2 -->|restart| trigger_start;" in text
    assert text.endswith("\n")


def test_export_to_mermaid_avoids_reserved_ids():
    node = DiagramNode(id="end", type=NODE_WAIT, position=(0.0, 0.0), attributes=WaitAttributes())
    text = export_to_mermaid([node], [])

    assert "    end_node[" in text
    assert "    end[" not in text
