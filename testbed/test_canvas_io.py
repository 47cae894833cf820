import json
from datetime import datetime, timezone

from src.nurture_generator.canvas_editor import CanvasEditor
from src.nurture_generator.canvas_io import (
    build_export_document,
    export_filename,
    load_document,
    save_document,
    save_filename,
)
from src.nurture_generator.canvas_nodes import NODE_CONDITION, NODE_EMAIL
from src.nurture_generator.sequence_generator import EmailArtifact, FormData

NOW = datetime(2024, 5, 17, 9, 30, tzinfo=timezone.utc)


def _seeded_editor():
    editor = CanvasEditor()
    form = FormData(product_description="Planner", number_of_emails=2)
    editor.seed_from_sequence([EmailArtifact(1, "Welcome", "b1"), EmailArtifact(2, "Tips", "b2")], form)
    condition = editor.add_node(NODE_CONDITION)
    editor.update_node(condition.id, position=(620.0, 180.0), attributes={"field": "plan", "value": "pro"})
    editor.add_connection("email-2", condition.id, "opened")
    return editor


def test_save_then_load_keeps_ids_positions_and_endpoints():
    original = _seeded_editor()
    document = save_document(original, NOW)

    restored = CanvasEditor()
    ok, reason = load_document(restored, document)

    assert ok and reason == ""
    assert [(n.id, n.position) for n in restored.nodes] == [(n.id, n.position) for n in original.nodes]
    assert [(c.source, c.target, c.label) for c in restored.connections] == [
        (c.source, c.target, c.label) for c in original.connections
    ]
    assert restored.form_data == original.form_data
    assert save_document(restored, NOW) == document


def test_saved_document_layout():
    data = json.loads(save_document(_seeded_editor(), NOW))

    assert set(data) == {"nodes", "connections", "formData", "timestamp"}
    assert data["timestamp"] == "2024-05-17T09:30:00+00:00"
    first_email = data["nodes"][1]
    assert first_email["position"] == {"x": 300.0, "y": 100.0}
    assert first_email["data"]["sequencePosition"] == 1
    assert data["connections"][0] == {"id": "conn-trigger", "from": "trigger-start", "to": "email-1"}
    assert data["formData"]["productDescription"] == "Planner"


def test_load_without_connections_gives_empty_list():
    editor = CanvasEditor()
    document = {"nodes": [{"id": "email-1", "type": "email", "position": {"x": 300, "y": 100}, "data": {}}]}

    ok, _ = load_document(editor, json.dumps(document))
    assert ok
    assert editor.connections == []
    assert editor.form_data is None
    assert editor.get_node("email-1").attributes.subject == "New Email"


def test_load_skips_bad_nodes_and_dangling_connections():
    editor = CanvasEditor()
    document = {
        "nodes": [
            {"id": "a", "type": "wait", "position": {"x": 0, "y": 0}},
            {"id": "b", "type": "teleport", "position": {"x": 0, "y": 0}},
            {"id": "c", "type": "email"},
            "junk",
        ],
        "connections": [{"id": "c1", "from": "a", "to": "b"}, {"from": "a"}],
    }

    ok, _ = load_document(editor, json.dumps(document))
    assert ok
    assert [node.id for node in editor.nodes] == ["a"]
    assert editor.connections == []


def test_failed_load_leaves_state_untouched():
    editor = _seeded_editor()
    before_nodes, before_connections = editor.nodes, editor.connections

    for text in ("{not json", "[1, 2, 3]", json.dumps({"nodes": "x"})):
        ok, reason = load_document(editor, text)
        assert not ok and reason
        assert editor.nodes == before_nodes
        assert editor.connections == before_connections


def test_export_document_lists_email_sequence():
    data = build_export_document(_seeded_editor(), NOW)

    assert [item["subject"] for item in data["sequence"]] == ["Welcome", "Tips"]
    assert all(item["type"] == NODE_EMAIL for item in data["sequence"])
    assert {"from": "email-2", "to": data["connections"][-1]["to"]} == data["connections"][-1]
    assert data["metadata"]["totalEmails"] == 2
    assert data["metadata"]["createdAt"] == NOW.isoformat()


def test_filenames_carry_the_date():
    assert save_filename(NOW) == "email-sequence-2024-05-17.json"
    assert export_filename(NOW) == "email-sequence-export-2024-05-17.json"
