"""
charts.py - Plotly figures and tables for the Streamlit dashboard.
"""

import pandas as pd
import plotly.graph_objects as go

from analyzer import bin_frequencies

HIGH_COLOR = "#ff6b6b"
LOW_COLOR = "#58a6ff"
MID_COLOR = "#8b949e"

_LAYOUT = dict(
    paper_bgcolor="#0d1117",
    plot_bgcolor="#0d1117",
    font=dict(color="#c9d1d9", family="Rajdhani"),
)


def format_offset(n: int) -> str:
    return f"0x{n:08X}"


def entropy_color(e: float, threshold: float) -> str:
    if e >= threshold:
        return HIGH_COLOR
    if e <= 1.0:
        return LOW_COLOR
    return MID_COLOR


def make_df(blocks, threshold: float):
    rows = []
    for b in blocks:
        if b["entropy"] < threshold:
            continue
        rows.append({
            "Offset": format_offset(b["offset"]),
            "Entropy": f"{b['entropy']:.4f}",
            "Chi-square": f"{b['chisq']:.2f}",
        })
    return pd.DataFrame(rows, columns=["Offset", "Entropy", "Chi-square"])


def entropy_figure(blocks, threshold: float) -> go.Figure:
    fig = go.Figure()
    fig.add_trace(go.Scatter(
        x=[b["offset"] for b in blocks],
        y=[b["entropy"] for b in blocks],
        mode="lines+markers",
        marker=dict(color=[entropy_color(b["entropy"], threshold) for b in blocks], size=4),
        line=dict(color="#4a9eff", width=1),
        hovertext=[f"{format_offset(b['offset'])}<br>Entropy: {b['entropy']:.3f}<br>χ²: {b['chisq']:.1f}" for b in blocks],
        hoverinfo="text",
        name="entropy",
    ))
    fig.add_hline(y=threshold, line_dash="dash", line_color=HIGH_COLOR,
                  annotation_text="flag threshold", annotation_font_color=HIGH_COLOR)
    fig.update_layout(
        **_LAYOUT,
        xaxis=dict(showgrid=False, color="#4a9eff", title="Offset"),
        yaxis=dict(gridcolor="#1e3a5f", color="#4a9eff", title="Entropy (bits/byte)", range=[0, 8.5]),
        margin=dict(t=20, b=40, l=50, r=20),
        showlegend=False,
    )
    return fig


def chisq_figure(blocks) -> go.Figure:
    """
    Chi-square per block on a linear axis. A perfectly uniform block has
    chi-square 0 and must stay visible.
    """
    fig = go.Figure(data=[go.Scatter(
        x=[b["offset"] for b in blocks],
        y=[b["chisq"] for b in blocks],
        mode="lines",
        line=dict(color="#da70d6", width=1),
    )])
    fig.update_layout(
        **_LAYOUT,
        xaxis=dict(showgrid=False, color="#4a9eff", title="Offset"),
        yaxis=dict(gridcolor="#1e3a5f", color="#4a9eff", title="χ²", rangemode="tozero"),
        height=250,
        margin=dict(t=10, b=40, l=50, r=20),
    )
    return fig


def bfd_figure(table, bin_size: int = 1) -> go.Figure:
    counts = bin_frequencies(table, bin_size)
    labels = [f"0x{i * bin_size:02X}" for i in range(len(counts))]
    fig = go.Figure(data=[go.Bar(x=labels, y=counts, marker_color="#00ff88")])
    fig.update_layout(
        **_LAYOUT,
        xaxis=dict(showgrid=False, color="#4a9eff", title="Byte value (bin start)"),
        yaxis=dict(gridcolor="#1e3a5f", color="#4a9eff", title="Count"),
        margin=dict(t=20, b=40, l=50, r=20),
    )
    return fig
