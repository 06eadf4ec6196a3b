"""Gradio interface for trying the template finder on an image pair"""

import os
from typing import Dict, Optional

import gradio as gr
import numpy as np
import plotly.express as px

from template_finder import (
    MethodType,
    TemplateFinderError,
    TemplateMatchingFinder,
    __version__,
)
from template_finder.render import format_match_summary, render_primary_views

VIEW_KEYS = ["needle", "overview", "zoom_focus"]

VIEW_LABELS = {
    "needle": "Needle",
    "overview": "All matches",
    "zoom_focus": "Selected match (zoomed)",
}

METHOD_CHOICES = [m.value for m in MethodType]

FINDER = TemplateMatchingFinder()


def make_zoomable_plot(image: Optional[np.ndarray]):
    """Create a Plotly figure with zoom/pan for a numpy RGB image."""
    if image is None:
        base = np.zeros((10, 10, 3), dtype=np.uint8)
    else:
        base = image
    if base.dtype != np.uint8:
        base = np.clip(base, 0, 255).astype(np.uint8)
    fig = px.imshow(base)
    fig.update_layout(
        margin=dict(l=0, r=0, t=0, b=0),
        dragmode="pan",
        coloraxis_showscale=False,
    )
    fig.update_xaxes(showticklabels=False, showgrid=False, zeroline=False)
    fig.update_yaxes(
        showticklabels=False,
        showgrid=False,
        zeroline=False,
        scaleanchor="x",
        scaleratio=1,
    )
    return fig


def _views_to_outputs(
    views: Dict[str, Optional[np.ndarray]],
    summary: str,
    state,
    idx: int,
):
    ordered = [views.get(key) for key in VIEW_KEYS]
    return (*ordered, make_zoomable_plot(views.get("overview")), summary, state, idx)


def _blank_outputs(message: str):
    blank_views = {key: None for key in VIEW_KEYS}
    return _views_to_outputs(blank_views, message, None, 0)


def _render_state(state: Dict, idx: int):
    matches = state["matches"]
    views = render_primary_views(state["haystack"], state["needle"], matches, idx)
    summary = format_match_summary(matches, idx)
    return _views_to_outputs(views, summary, state, idx)


def _change_match(step: int, state, current_index: int):
    if state is None or not state.get("matches"):
        return _blank_outputs("Run the finder once both images are uploaded.")
    total = len(state["matches"])
    idx = ((current_index or 0) + step) % total
    return _render_state(state, idx)


def run_finder(
    haystack_path,
    needle_path,
    method: str,
    confidence: float,
    multi_scale: bool,
    rotation: bool,
):
    """Run find_matches on the uploaded pair and return visualization slices"""
    if not haystack_path or not os.path.exists(haystack_path):
        return _blank_outputs("Please upload a haystack image.")
    if not needle_path or not os.path.exists(needle_path):
        return _blank_outputs("Please upload a needle image.")

    try:
        matches = FINDER.find_matches(
            needle=needle_path,
            haystack=haystack_path,
            confidence=float(confidence),
            method_type=MethodType(method),
            is_search_multiple_scales=bool(multi_scale),
            is_rotation=bool(rotation),
        )
    except TemplateFinderError as exc:
        return _blank_outputs(f"Error: {exc}")

    state = {
        "haystack": FINDER.engine.load_image(haystack_path).image,
        "needle": FINDER.engine.load_image(needle_path).image,
        "matches": matches,
    }
    return _render_state(state, 0)


def goto_previous_match(state, current_index):
    return _change_match(-1, state, current_index)


def goto_next_match(state, current_index):
    return _change_match(1, state, current_index)


app_theme = gr.themes.Soft()
with gr.Blocks(title=f"Template Finder v{__version__}") as demo:
    gr.Markdown(
        f"""
    # Template Finder v{__version__}

    Upload a haystack (e.g. a screenshot) and a needle (the template to look
    for). The finder searches several scales of both images, or rotated
    copies when rotation is enabled, and lists every region that clears the
    confidence threshold.
    """
    )

    with gr.Row():
        with gr.Column(scale=1):
            haystack_input = gr.Image(
                label="Haystack",
                type="filepath",
                sources=["upload", "clipboard"],
                height=260,
            )
            needle_input = gr.Image(
                label="Needle",
                type="filepath",
                sources=["upload", "clipboard"],
                height=160,
            )
            method_input = gr.Dropdown(
                label="Similarity method",
                choices=METHOD_CHOICES,
                value=MethodType.TM_CCOEFF_NORMED.value,
            )
            confidence_input = gr.Slider(
                label="Confidence",
                minimum=0.0,
                maximum=1.0,
                value=FINDER.get_config().confidence,
                step=0.01,
            )
            with gr.Row():
                multi_scale_input = gr.Checkbox(label="Search multiple scales", value=True)
                rotation_input = gr.Checkbox(label="Rotation search", value=False)
            find_button = gr.Button("🔍 Find matches", variant="primary", size="lg")
        with gr.Column(scale=1):
            gr.Markdown("### Matches (haystack view)")
            overview_plot = gr.Plot(value=make_zoomable_plot(None))
            gr.Markdown("Use the controls to zoom and pan the image.")

    image_components = {}
    with gr.Row():
        for key in VIEW_KEYS:
            image_components[key] = gr.Image(
                label=VIEW_LABELS[key],
                type="numpy",
                interactive=False,
                height=260,
            )

    with gr.Row():
        prev_button = gr.Button("⬅️ Previous match")
        next_button = gr.Button("Next match ➡️")
        match_summary = gr.Markdown("Run the finder to view matches.")

    match_state = gr.State()
    match_index = gr.State(0)

    ordered_components = [image_components[key] for key in VIEW_KEYS]
    outputs = [*ordered_components, overview_plot, match_summary, match_state, match_index]

    find_button.click(
        fn=run_finder,
        inputs=[
            haystack_input,
            needle_input,
            method_input,
            confidence_input,
            multi_scale_input,
            rotation_input,
        ],
        outputs=outputs,
    )
    prev_button.click(
        fn=goto_previous_match,
        inputs=[match_state, match_index],
        outputs=outputs,
    )
    next_button.click(
        fn=goto_next_match,
        inputs=[match_state, match_index],
        outputs=outputs,
    )

if __name__ == "__main__":
    demo.launch(theme=app_theme)
