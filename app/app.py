from pathlib import Path
import sys
import html

import streamlit as st
import streamlit.components.v1 as components
from streamlit_flow import streamlit_flow
from streamlit_flow.elements import StreamlitFlowEdge, StreamlitFlowNode
from streamlit_flow.state import StreamlitFlowState

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.append(str(ROOT_DIR))

from src.nurture_generator.canvas_editor import CanvasEditor, describe_state  # noqa: E402
from src.nurture_generator.canvas_io import (  # noqa: E402
    export_document,
    export_filename,
    load_document,
    save_document,
    save_filename,
)
from src.nurture_generator.canvas_nodes import (  # noqa: E402
    NODE_AB_TEST,
    NODE_CONDITION,
    NODE_EMAIL,
    NODE_SPLIT,
    NODE_TRIGGER,
    NODE_TYPES,
    NODE_WAIT,
    WAIT_UNITS,
)
from src.nurture_generator.config import (  # noqa: E402
    AppConfig,
    configure_logging,
    ensure_env_loaded,
    load_credentials_from_env,
)
from src.nurture_generator.credentials import ConfigurationError, CredentialPool  # noqa: E402
from src.nurture_generator.dispatch import DispatchExhaustedError, Dispatcher  # noqa: E402
from src.nurture_generator.graph_logic import (  # noqa: E402
    export_to_mermaid,
    find_cycles,
    find_unreachable_nodes,
)
from src.nurture_generator.sequence_generator import (  # noqa: E402
    MAX_EMAILS,
    MIN_EMAILS,
    PRIMARY_GOALS,
    TONES_OF_VOICE,
    EmailSequenceGenerator,
    FormData,
    GenerationError,
    SequenceGenerationError,
)
from src.nurture_generator.ui_mapper import (  # noqa: E402
    flow_positions,
    node_label,
    node_positions,
    pick_moved_node,
    to_flow_edge_specs,
    to_flow_node_specs,
)


@st.cache_resource
def get_dispatcher() -> Dispatcher:
    ensure_env_loaded()
    config = AppConfig()
    configure_logging(config.log_level)
    return Dispatcher(CredentialPool(load_credentials_from_env()), config=config)


def get_generator() -> EmailSequenceGenerator:
    return EmailSequenceGenerator(get_dispatcher())


def ensure_state() -> None:
    if "editor" not in st.session_state:
        st.session_state.editor = CanvasEditor()
    if "emails" not in st.session_state:
        st.session_state.emails = []
    if "form_data" not in st.session_state:
        st.session_state.form_data = None
    if "autofill_warnings" not in st.session_state:
        st.session_state.autofill_warnings = []
    if "load_message" not in st.session_state:
        st.session_state.load_message = ""
    if "mermaid_fullscreen" not in st.session_state:
        st.session_state.mermaid_fullscreen = False


def to_flow_state(editor: CanvasEditor) -> StreamlitFlowState:
    nodes = editor.nodes
    connections = editor.connections
    node_specs = to_flow_node_specs(nodes, connections)
    edge_specs = to_flow_edge_specs(connections, node_positions(nodes))
    flow_nodes = [StreamlitFlowNode(**spec) for spec in node_specs]
    flow_edges = [StreamlitFlowEdge(**spec) for spec in edge_specs]
    return StreamlitFlowState(nodes=flow_nodes, edges=flow_edges)


def describe_failure(exc: Exception, action: str) -> str:
    timed_out = getattr(exc, "timed_out", False)
    if timed_out:
        return f"{action} timed out. The free models are busy; please try again in a moment."
    return f"{action} failed: {exc}"


def render_mermaid_preview(mermaid_code: str, height: int = 520) -> None:
    escaped = html.escape(mermaid_code or "")
    mermaid_html = f"""
<div style="padding: 8px;">
  <pre class="mermaid">{escaped}</pre>
  <div id="render_error" style="color:#b91c1c;font-family:monospace;"></div>
</div>
<script>
  function renderMermaid() {{
    try {{
      mermaid.initialize({{ startOnLoad: false, securityLevel: "loose" }});
      mermaid.run({{ nodes: document.querySelectorAll(".mermaid") }}).catch((err) => {{
        document.getElementById("render_error").textContent =
          "Mermaid render error: " + (err && err.message ? err.message : String(err));
      }});
    }} catch (err) {{
      document.getElementById("render_error").textContent = "Mermaid init error: " + String(err);
    }}
  }}

  if (window.mermaid) {{
    renderMermaid();
  }} else {{
    const script = document.createElement("script");
    script.src = "https://cdn.jsdelivr.net/npm/mermaid@10/dist/mermaid.min.js";
    script.onload = renderMermaid;
    script.onerror = function() {{
      document.getElementById("render_error").textContent = "Failed to load Mermaid runtime.";
    }};
    document.head.appendChild(script);
  }}
</script>
"""
    components.html(mermaid_html, height=height, scrolling=True)


def render_form() -> None:
    st.header("Campaign")
    product = st.text_area(
        "Product / service description",
        key="product_description",
        placeholder="e.g. A project management tool for remote design teams",
    )
    if st.button("Autofill from description", use_container_width=True):
        run_autofill(product)
    for warning in st.session_state.autofill_warnings:
        st.caption(f"⚠️ {warning}")

    st.text_area("Target audience", key="target_audience")
    st.text_area("Pain points", key="pain_points")
    st.selectbox("Primary goal", PRIMARY_GOALS, key="primary_goal")
    st.selectbox("Tone of voice", TONES_OF_VOICE, key="tone_of_voice")
    st.slider("Number of emails", MIN_EMAILS, MAX_EMAILS, 5, key="number_of_emails")

    if st.button("Generate sequence", type="primary", use_container_width=True):
        run_generation(current_form())


def current_form() -> FormData:
    return FormData(
        product_description=str(st.session_state.get("product_description", "")),
        target_audience=str(st.session_state.get("target_audience", "")),
        pain_points=str(st.session_state.get("pain_points", "")),
        primary_goal=str(st.session_state.get("primary_goal", PRIMARY_GOALS[0])),
        tone_of_voice=str(st.session_state.get("tone_of_voice", TONES_OF_VOICE[0])),
        number_of_emails=int(st.session_state.get("number_of_emails", 5)),
    )


def run_autofill(product: str) -> None:
    try:
        with st.spinner("Filling in audience, pain points, goal and tone..."):
            result = get_generator().autofill(product)
    except ValueError as exc:
        st.warning(str(exc))
        return
    except DispatchExhaustedError as exc:
        st.error(describe_failure(exc, "Autofill"))
        return

    st.session_state.target_audience = result.target_audience
    st.session_state.pain_points = result.pain_points
    st.session_state.primary_goal = result.primary_goal
    st.session_state.tone_of_voice = result.tone_of_voice
    st.session_state.autofill_warnings = result.warnings
    st.rerun()


def run_generation(form: FormData) -> None:
    try:
        with st.spinner(f"Writing {form.number_of_emails} emails..."):
            emails = get_generator().generate_sequence(form)
    except ValueError as exc:
        st.warning(str(exc))
        return
    except SequenceGenerationError as exc:
        st.error(describe_failure(exc, f"Email {exc.email_number}"))
        return

    st.session_state.emails = emails
    st.session_state.form_data = form
    st.session_state.editor.seed_from_sequence(emails, form)
    st.success(f"Generated {len(emails)} emails.")


def render_sequence() -> None:
    emails = st.session_state.emails
    form = st.session_state.form_data
    if not emails:
        st.info("Describe your product in the sidebar and generate a sequence.")
        return

    for index, email in enumerate(emails):
        with st.container(border=True):
            st.markdown(f"**Email {email.email_number}: {email.subject}**")
            st.text(email.body)
            if email.ab_variants:
                st.caption(f"A: {email.ab_variants.variant_a}  |  B: {email.ab_variants.variant_b}")
            col_ab, col_regen = st.columns(2)
            if col_ab.button("A/B subject variant", key=f"ab_{index}"):
                run_ab_variant(index)
            if col_regen.button("Regenerate", key=f"regen_{index}"):
                run_regenerate(index)

    if st.button("Reset canvas from sequence"):
        st.session_state.editor.seed_from_sequence(emails, form)
        st.rerun()


def run_ab_variant(index: int) -> None:
    email = st.session_state.emails[index]
    try:
        with st.spinner("Writing an alternative subject line..."):
            variants = get_generator().generate_ab_variant(
                email.subject, st.session_state.form_data, email.email_number
            )
    except (ValueError, GenerationError) as exc:
        st.error(str(exc))
        return
    except DispatchExhaustedError as exc:
        st.error(describe_failure(exc, "A/B generation"))
        return

    email.ab_variants = variants
    node = st.session_state.editor.get_node(f"email-{email.email_number}")
    if node is not None:
        st.session_state.editor.update_node(
            node.id,
            attributes={"abVariants": {"variantA": variants.variant_a, "variantB": variants.variant_b}},
        )
    st.rerun()


def run_regenerate(index: int) -> None:
    emails = st.session_state.emails
    email = emails[index]
    generator = get_generator()
    try:
        with st.spinner(f"Rewriting email {email.email_number}..."):
            fresh = generator.generate_single(
                st.session_state.form_data,
                email.email_number,
                emails[:index],
                timeout_seconds=generator.config.request_timeout_seconds,
            )
    except DispatchExhaustedError as exc:
        st.error(describe_failure(exc, "Regeneration"))
        return

    emails[index] = fresh
    node = st.session_state.editor.get_node(f"email-{email.email_number}")
    if node is not None:
        st.session_state.editor.update_node(node.id, attributes={"subject": fresh.subject, "content": fresh.body})
    st.rerun()


def render_canvas() -> None:
    editor: CanvasEditor = st.session_state.editor

    col_type, col_add = st.columns([3, 1])
    node_type = col_type.selectbox("Node type", NODE_TYPES, key="palette_type", label_visibility="collapsed")
    if col_add.button("Add node", use_container_width=True):
        added = editor.add_node(node_type, st.session_state.form_data)
        if added is not None:
            editor.select_node(added.id)
        st.rerun()

    curr_state = streamlit_flow(
        "nurture_flow",
        to_flow_state(editor),
        fit_view=True,
        height=560,
        get_node_on_click=True,
    )

    positions = flow_positions(curr_state.nodes)
    moved = pick_moved_node(editor.nodes, positions)
    if moved:
        editor.update_node(moved, position=positions[moved])
    selected_id = getattr(curr_state, "selected_id", None)
    if selected_id and selected_id != editor.selected_node_id:
        editor.select_node(selected_id)
    if moved:
        st.rerun()

    col_props, col_links = st.columns(2)
    with col_props:
        render_properties(editor)
    with col_links:
        render_connections(editor)

    render_documents(editor)
    render_diagnostics(editor)


def render_properties(editor: CanvasEditor) -> None:
    st.markdown("### Properties")
    node = editor.selected_node
    if node is None:
        st.caption("Select a node on the canvas.")
        return

    st.caption(f"{node_label(node)} ({node.id})")
    attrs = node.attributes
    with st.form(f"props_{node.id}"):
        updates = {}
        if node.type == NODE_EMAIL:
            updates["subject"] = st.text_input("Subject", attrs.subject)
            updates["content"] = st.text_area("Content", attrs.content, height=180)
            updates["template"] = st.text_input("Template", attrs.template)
        elif node.type == NODE_WAIT:
            updates["duration"] = st.number_input("Duration", min_value=0.0, value=float(attrs.duration))
            updates["unit"] = st.selectbox("Unit", WAIT_UNITS, index=_index_of(WAIT_UNITS, attrs.unit))
        elif node.type == NODE_TRIGGER:
            updates["event"] = st.text_input("Event", attrs.event)
            updates["label"] = st.text_input("Label", attrs.label)
        elif node.type == NODE_AB_TEST:
            updates["variantA"] = {
                "subject": st.text_input("Variant A subject", attrs.variant_a.subject),
                "content": st.text_area("Variant A content", attrs.variant_a.content),
            }
            updates["variantB"] = {
                "subject": st.text_input("Variant B subject", attrs.variant_b.subject),
                "content": st.text_area("Variant B content", attrs.variant_b.content),
            }
            updates["split"] = st.slider("Split % to A", 0, 100, int(attrs.split))
        elif node.type == NODE_CONDITION:
            updates["field"] = st.text_input("Field", attrs.field_name)
            updates["operator"] = st.text_input("Operator", attrs.operator)
            updates["value"] = st.text_input("Value", attrs.value)
            updates["truePath"] = st.text_input("True path", attrs.true_path)
            updates["falsePath"] = st.text_input("False path", attrs.false_path)
        elif node.type == NODE_SPLIT:
            updates["percentage"] = st.slider("Percentage to path A", 0, 100, int(attrs.percentage))
            updates["pathA"] = st.text_input("Path A", attrs.path_a)
            updates["pathB"] = st.text_input("Path B", attrs.path_b)
        submitted = st.form_submit_button("Apply")
    if submitted:
        editor.update_node(node.id, attributes=updates)
        st.rerun()

    if st.button("Delete node", key=f"delete_{node.id}"):
        editor.delete_node(node.id)
        st.rerun()


def render_connections(editor: CanvasEditor) -> None:
    st.markdown("### Connections")
    node_ids = [node.id for node in editor.nodes]
    if len(node_ids) < 2:
        st.caption("Add at least two nodes to connect them.")
    else:
        source = st.selectbox("From", node_ids, key="conn_source")
        target = st.selectbox("To", node_ids, key="conn_target")
        label = st.text_input("Label", key="conn_label")
        if st.button("Connect"):
            editor.start_connection(source)
            if editor.complete_connection(target, label) is None:
                st.warning("A node cannot be connected to itself.")
            else:
                st.rerun()

    for connection in editor.connections:
        col_text, col_delete = st.columns([4, 1])
        suffix = f" ({connection.label})" if connection.label else ""
        col_text.caption(f"{connection.source} → {connection.target}{suffix}")
        if col_delete.button("✕", key=f"del_conn_{connection.id}"):
            editor.delete_connection(connection.id)
            st.rerun()


def render_documents(editor: CanvasEditor) -> None:
    with st.expander("Save / Load / Export", expanded=False):
        col_save, col_export = st.columns(2)
        col_save.download_button(
            "Save sequence (.json)",
            data=save_document(editor),
            file_name=save_filename(),
            mime="application/json",
            use_container_width=True,
        )
        col_export.download_button(
            "Export sequence (.json)",
            data=export_document(editor),
            file_name=export_filename(),
            mime="application/json",
            use_container_width=True,
        )

        uploaded = st.file_uploader("Load sequence", type=["json"], key="sequence_upload")
        if uploaded is not None and st.button("Load into canvas"):
            ok, reason = load_document(editor, uploaded.getvalue().decode("utf-8", errors="replace"))
            if ok:
                st.session_state.form_data = editor.form_data
                st.session_state.load_message = "Sequence loaded."
                st.rerun()
            st.error(f"Error loading sequence file: {reason}")
        if st.session_state.load_message:
            st.caption(st.session_state.load_message)


def render_diagnostics(editor: CanvasEditor) -> None:
    nodes = editor.nodes
    connections = editor.connections
    mermaid_text = export_to_mermaid(nodes, connections)

    with st.expander("Workflow checks", expanded=False):
        st.json(describe_state(editor), expanded=False)
        unreachable = find_unreachable_nodes(nodes, connections)
        cycles = find_cycles(nodes, connections)
        if unreachable:
            st.warning("Unreachable from any trigger: " + ", ".join(unreachable))
        if cycles:
            st.warning("Loops: " + "; ".join(" → ".join(cycle) for cycle in cycles))
        if not unreachable and not cycles:
            st.caption("Every node is reachable and the flow has no loops.")

    st.markdown("### Flowchart Preview")
    toggle_label = "Exit Fullscreen Preview" if st.session_state.mermaid_fullscreen else "Fullscreen Preview"
    if st.button(toggle_label, key="mermaid_fullscreen_toggle"):
        st.session_state.mermaid_fullscreen = not st.session_state.mermaid_fullscreen
        st.rerun()
    render_mermaid_preview(mermaid_text, height=860 if st.session_state.mermaid_fullscreen else 540)
    with st.expander("Mermaid source", expanded=False):
        st.code(mermaid_text, language="mermaid")
        st.download_button(
            "Export Mermaid (.mmd)",
            data=mermaid_text,
            file_name="email-sequence.mmd",
            mime="text/plain",
        )


def render_api_status() -> None:
    with st.expander("API keys", expanded=False):
        stats = get_dispatcher().stats()
        st.metric("Success rate", f"{stats['success_rate'] * 100:.0f}%")
        st.caption(
            f"{stats['active_credentials']}/{stats['total_credentials']} keys active, "
            f"{stats['total_attempts']} attempts"
        )
        st.dataframe(stats["credentials"], use_container_width=True, hide_index=True)


def _index_of(options, value) -> int:
    return list(options).index(value) if value in options else 0


st.set_page_config(page_title="Email Nurture Generator", layout="wide")
ensure_state()

try:
    get_dispatcher()
except ConfigurationError as exc:
    st.error(f"{exc} Set OPENROUTER_API_KEY in your environment or .env file.")
    st.stop()

st.title("Email Nurture Generator")

with st.sidebar:
    render_form()
    render_api_status()

sequence_tab, canvas_tab = st.tabs(["Sequence", "Canvas"])
with sequence_tab:
    render_sequence()
with canvas_tab:
    render_canvas()
