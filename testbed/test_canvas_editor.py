from src.nurture_generator.canvas_editor import (
    LADDER_TOP_Y,
    LANE_X,
    MIN_Y,
    SLOT_HEIGHT,
    TRIGGER_POSITION,
    CanvasEditor,
    email_template_for_position,
)
from src.nurture_generator.canvas_nodes import NODE_EMAIL, NODE_TRIGGER, NODE_WAIT
from src.nurture_generator.sequence_generator import ABVariants, EmailArtifact, FormData


def _form():
    return FormData(
        product_description="Planner for remote teams",
        target_audience="Designer leads",
        tone_of_voice="friendly",
        number_of_emails=3,
    )


def _edges(editor):
    return {(c.source, c.target) for c in editor.connections}


def _assert_no_orphans(editor):
    ids = {node.id for node in editor.nodes}
    for connection in editor.connections:
        assert connection.source in ids and connection.target in ids


def test_trigger_and_three_emails_then_delete_middle_email():
    editor = CanvasEditor()
    trigger = editor.add_node(NODE_TRIGGER)
    first = editor.add_node(NODE_EMAIL)
    second = editor.add_node(NODE_EMAIL)
    third = editor.add_node(NODE_EMAIL)

    assert len(editor.connections) == 3
    assert _edges(editor) == {(trigger.id, first.id), (first.id, second.id), (second.id, third.id)}

    assert editor.delete_node(second.id) is True
    assert _edges(editor) == {(trigger.id, first.id)}
    _assert_no_orphans(editor)


def test_new_email_nodes_stack_down_the_lane():
    editor = CanvasEditor()
    first = editor.add_node(NODE_EMAIL)
    second = editor.add_node(NODE_EMAIL)
    wait = editor.add_node(NODE_WAIT)

    assert first.position == (LANE_X, LADDER_TOP_Y)
    assert second.position == (LANE_X, LADDER_TOP_Y + SLOT_HEIGHT)
    assert wait.position == (LANE_X, LADDER_TOP_Y + 2 * SLOT_HEIGHT)
    assert first.id == "email-1" and second.id == "email-2"
    assert wait.id.startswith("wait_")


def test_email_ids_stay_unique_after_deletion():
    editor = CanvasEditor()
    editor.add_node(NODE_EMAIL)
    second = editor.add_node(NODE_EMAIL)
    editor.delete_node("email-1")
    third = editor.add_node(NODE_EMAIL)

    assert third.id != second.id
    assert len({node.id for node in editor.nodes}) == len(editor.nodes)


def test_email_templates_follow_form_data():
    editor = CanvasEditor()
    form = _form()
    first = editor.add_node(NODE_EMAIL, form)

    assert first.attributes.subject == "Welcome to Planner!"
    assert first.attributes.content.endswith("💬 friendly")
    assert email_template_for_position(7, form) == email_template_for_position(4, form)
    assert email_template_for_position(2, None) == ("Email 2", "Auto-generated email content")


def test_unknown_node_type_is_ignored():
    editor = CanvasEditor()
    assert editor.add_node("webhook") is None
    assert editor.nodes == []


def test_seed_from_sequence_builds_chain():
    emails = [
        EmailArtifact(1, "Welcome", "b1"),
        EmailArtifact(2, "Tips", "b2", ABVariants("Tips", "Pro tips")),
    ]
    editor = CanvasEditor()
    editor.seed_from_sequence(emails, _form())

    assert [node.id for node in editor.nodes] == ["trigger-start", "email-1", "email-2"]
    assert _edges(editor) == {("trigger-start", "email-1"), ("email-1", "email-2")}
    assert editor.get_node("email-2").attributes.variants == ("Tips", "Pro tips")
    assert editor.get_node("trigger-start").attributes.label == "User Signs Up"


def test_moving_email_restacks_ladder_and_rebuilds_chain():
    editor = CanvasEditor()
    editor.seed_from_sequence([EmailArtifact(n, f"S{n}", "") for n in (1, 2, 3)])
    editor.add_connection("trigger-start", "email-3", "shortcut")

    editor.update_node("email-3", position=(900.0, 0.0))

    emails = editor.email_nodes()
    assert [node.id for node in emails] == ["email-3", "email-1", "email-2"]
    ys = [node.position[1] for node in emails]
    assert ys == [LADDER_TOP_Y + i * SLOT_HEIGHT for i in range(3)]
    assert all(node.position[0] == LANE_X for node in emails)
    assert [(c.source, c.target) for c in editor.connections] == [
        ("trigger-start", "email-3"),
        ("email-3", "email-1"),
        ("email-1", "email-2"),
    ]
    assert editor.nodes[0].type == NODE_TRIGGER


def test_email_position_is_clamped_before_restack():
    editor = CanvasEditor()
    editor.add_node(NODE_EMAIL)
    editor.update_node("email-1", position=(10.0, -500.0))
    assert editor.get_node("email-1").position[1] >= MIN_Y


def test_other_nodes_move_freely_without_touching_connections():
    editor = CanvasEditor()
    editor.add_node(NODE_TRIGGER)
    editor.add_node(NODE_EMAIL)
    wait = editor.add_node(NODE_WAIT)
    before = editor.connections

    editor.update_node(wait.id, position=(42.0, 7.0))
    assert editor.get_node(wait.id).position == (42.0, 7.0)
    assert editor.connections == before


def test_update_attributes_merges_into_node():
    editor = CanvasEditor()
    wait = editor.add_node(NODE_WAIT)
    editor.update_node(wait.id, attributes={"duration": 3, "unit": "hours"})

    attrs = editor.get_node(wait.id).attributes
    assert attrs.duration == 3 and attrs.unit == "hours"
    assert editor.update_node("missing", attributes={"duration": 1}) is None


def test_invalid_connections_are_ignored():
    editor = CanvasEditor()
    email = editor.add_node(NODE_EMAIL)

    assert editor.add_connection(email.id, email.id) is None
    assert editor.add_connection(email.id, "ghost") is None
    assert editor.delete_connection("ghost") is False
    assert editor.connections == []


def test_two_step_connection_clears_pending_state():
    editor = CanvasEditor()
    first = editor.add_node(NODE_WAIT)
    second = editor.add_node(NODE_WAIT)

    editor.start_connection(first.id)
    assert editor.complete_connection(first.id) is None
    assert editor.pending_connection_source is None

    editor.start_connection(first.id)
    connection = editor.complete_connection(second.id, "after")
    assert (connection.source, connection.target, connection.label) == (first.id, second.id, "after")
    assert editor.pending_connection_source is None


def test_delete_clears_selection_and_pending_connection():
    editor = CanvasEditor()
    node = editor.add_node(NODE_WAIT)
    editor.select_node(node.id)
    editor.start_connection(node.id)

    editor.delete_node(node.id)
    assert editor.selected_node_id is None
    assert editor.pending_connection_source is None
    assert editor.delete_node(node.id) is False


def test_subscribers_are_notified_until_unsubscribed():
    editor = CanvasEditor()
    seen = []
    unsubscribe = editor.subscribe(lambda ed: seen.append(len(ed.nodes)))

    editor.add_node(NODE_EMAIL)
    unsubscribe()
    editor.add_node(NODE_EMAIL)
    assert seen == [1]


def test_node_added_after_deletion_goes_below_lowest_email():
    editor = CanvasEditor()
    editor.add_node(NODE_TRIGGER)
    editor.add_node(NODE_EMAIL)
    second = editor.add_node(NODE_EMAIL)
    third = editor.add_node(NODE_EMAIL)
    editor.delete_node(second.id)

    fourth = editor.add_node(NODE_EMAIL)

    assert fourth.position == (LANE_X, third.position[1] + SLOT_HEIGHT)
    positions = [node.position for node in editor.nodes]
    assert len(set(positions)) == len(positions)
    assert editor.nodes[0].position == TRIGGER_POSITION
    assert (third.id, fourth.id) in _edges(editor)
