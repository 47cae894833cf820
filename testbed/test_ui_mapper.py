from types import SimpleNamespace

from src.nurture_generator.canvas_editor import CanvasEditor
from src.nurture_generator.canvas_nodes import NODE_AB_TEST, NODE_SPLIT, NODE_WAIT
from src.nurture_generator.sequence_generator import EmailArtifact
from src.nurture_generator.ui_mapper import (
    find_moved_nodes,
    flow_positions,
    node_label,
    node_positions,
    pick_moved_node,
    to_flow_edge_specs,
    to_flow_node_specs,
)


def _editor():
    editor = CanvasEditor()
    editor.seed_from_sequence([EmailArtifact(1, "Welcome", "b"), EmailArtifact(2, "Tips", "b")])
    return editor


def test_to_flow_node_specs_maps_positions_and_types():
    editor = _editor()
    specs = to_flow_node_specs(editor.nodes, editor.connections)

    assert specs[0]["id"] == "trigger-start"
    assert specs[0]["node_type"] == "input"
    assert specs[0]["pos"] == (300.0, 40.0)
    assert specs[1]["node_type"] == "default"
    assert specs[2]["node_type"] == "output"
    assert specs[1]["data"]["content"] == "✉️ Email 1: Welcome"
    assert specs[1]["source_position"] == "bottom"
    assert specs[1]["target_position"] == "top"
    assert all(spec["draggable"] for spec in specs)


def test_to_flow_edge_specs_picks_edge_shape_from_positions():
    editor = _editor()
    editor.add_connection("email-2", "email-1", "loop")
    specs = to_flow_edge_specs(editor.connections, node_positions(editor.nodes))

    assert specs[0]["edge_type"] == "smoothstep"
    assert specs[-1]["edge_type"] == "step"
    assert specs[-1]["label"] == "loop"
    assert all(spec["animated"] for spec in specs)


def test_node_labels_per_type():
    editor = CanvasEditor()
    wait = editor.add_node(NODE_WAIT)
    ab = editor.add_node(NODE_AB_TEST)
    split = editor.add_node(NODE_SPLIT)
    editor.update_node(split.id, attributes={"percentage": 30})

    assert node_label(editor.get_node(wait.id)) == "⏱️ Wait 1 days"
    assert node_label(editor.get_node(ab.id)) == "🔀 A/B Test 50/50"
    assert node_label(editor.get_node(split.id)) == "➗ Split 30% / 70%"


def test_flow_positions_accepts_objects_and_dicts():
    flow_nodes = [
        SimpleNamespace(id="a", position={"x": 1, "y": 2}),
        {"id": "b", "pos": (3, 4)},
        {"id": "c"},
        {"id": "", "position": {"x": 0, "y": 0}},
    ]
    assert flow_positions(flow_nodes) == {"a": (1.0, 2.0), "b": (3.0, 4.0)}


def test_find_moved_nodes_uses_tolerance():
    editor = _editor()
    positions = {
        "trigger-start": (300.4, 40.0),
        "email-1": (300.0, 400.0),
        "ghost": (0.0, 0.0),
    }
    assert find_moved_nodes(editor.nodes, positions) == ["email-1"]


def test_handles_stay_vertical_on_the_ladder_and_turn_for_side_links():
    editor = _editor()
    wait = editor.add_node(NODE_WAIT)
    editor.update_node(wait.id, position=(700.0, 100.0))
    editor.add_connection("email-1", wait.id, "later")
    editor.add_connection("email-2", "email-1", "loop")

    specs = {spec["id"]: spec for spec in to_flow_node_specs(editor.nodes, editor.connections)}

    assert specs["email-1"]["source_position"] == "bottom"
    assert specs["email-1"]["target_position"] == "top"
    assert specs[wait.id]["target_position"] == "left"
    assert specs[wait.id]["source_position"] == "bottom"


def test_pick_moved_node_applies_one_move_and_prefers_emails():
    editor = _editor()
    wait = editor.add_node(NODE_WAIT)
    positions = {
        wait.id: (900.0, 900.0),
        "email-1": (300.0, 800.0),
        "email-2": (300.0, 50.0),
    }

    assert pick_moved_node(editor.nodes, positions) == "email-1"
    editor.update_node("email-1", position=positions["email-1"])
    assert [node.id for node in editor.email_nodes()] == ["email-2", "email-1"]

    assert pick_moved_node(editor.nodes, {wait.id: (900.0, 900.0)}) == wait.id
    assert pick_moved_node(editor.nodes, {}) is None
