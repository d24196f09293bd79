import streamlit as st
import os
import tempfile
import time

from analyzer import Algorithm, FrequencyContext, batch_calculate, BatchRequest
from charts import HIGH_COLOR, bfd_figure, chisq_figure, entropy_figure, format_offset, make_df
from errors import EntropyError
from scanner import scan_overview

# ── Page config ───────────────────────────────────────────────────────────────
st.set_page_config(
    page_title="Entropy Detector",
    page_icon="🔍",
    layout="wide",
    initial_sidebar_state="expanded",
)

# ── Custom CSS ────────────────────────────────────────────────────────────────
st.markdown("""
<style>
@import url('https://fonts.googleapis.com/css2?family=Share+Tech+Mono&family=Rajdhani:wght@400;600;700&display=swap');

html, body, [class*="css"] {
    font-family: 'Rajdhani', sans-serif;
}
.stApp {
    background-color: #0a0e14;
    color: #c9d1d9;
}
[data-testid="stSidebar"] {
    background-color: #0d1117;
    border-right: 1px solid #1a2332;
}
.hero-title {
    font-family: 'Share Tech Mono', monospace;
    font-size: 2.4rem;
    color: #00ff88;
    letter-spacing: 4px;
    margin: 0;
}
.hero-sub {
    font-family: 'Share Tech Mono', monospace;
    color: #4a9eff;
    letter-spacing: 2px;
}
.section-header {
    font-family: 'Share Tech Mono', monospace;
    color: #4a9eff;
    letter-spacing: 2px;
    border-bottom: 1px solid #1e3a5f;
}
.metric-card {
    background: #0d1117;
    border: 1px solid #1e3a5f;
    border-radius: 8px;
    padding: 1rem;
    text-align: center;
}
.metric-value {
    font-family: 'Share Tech Mono', monospace;
    font-size: 1.8rem;
    color: #00ff88;
}
.metric-label {
    color: #8b949e;
    font-size: 0.8rem;
    letter-spacing: 1px;
}
</style>
""", unsafe_allow_html=True)

# ── Session state ─────────────────────────────────────────────────────────────

if "blocks" not in st.session_state:
    st.session_state.blocks = []
if "bfd" not in st.session_state:
    st.session_state.bfd = None
if "scan_done" not in st.session_state:
    st.session_state.scan_done = False
if "scan_target" not in st.session_state:
    st.session_state.scan_target = ""
if "scan_time" not in st.session_state:
    st.session_state.scan_time = 0.0


# ── SIDEBAR ───────────────────────────────────────────────────────────────────

with st.sidebar:
    st.markdown('<p class="section-header">⚙ SCAN CONFIGURATION</p>', unsafe_allow_html=True)

    scan_mode = st.selectbox(
        "Scan Mode",
        ["Upload File / Image", "Local Path (disk/device)"],
        help="Upload a file, or enter a local path like /dev/sda1"
    )

    st.divider()

    block_size = st.select_slider(
        "Block Size",
        options=[512, 1024, 2048, 4096, 8192, 16384, 65536],
        value=4096,
        help="Bytes per measurement window."
    )

    threshold = st.slider(
        "Flag entropy ≥",
        min_value=0.0, max_value=8.0, value=7.5, step=0.1,
        help="Blocks at or above this entropy are listed as suspicious."
    )

    bin_size = st.select_slider(
        "BFD bin size",
        options=[1, 2, 4, 8, 16, 32, 64, 128],
        value=1,
        help="Sum adjacent byte values in the distribution chart."
    )

    limit_mb = st.number_input(
        "Limit Scan (MB, 0 = unlimited)",
        min_value=0, max_value=100000, value=0,
        help="Limit how many MB to scan. Useful for large disks."
    )

# ── MAIN AREA ─────────────────────────────────────────────────────────────────

st.markdown("""
<div class="hero-title">🔍 ENTROPY DETECTOR</div>
<div class="hero-sub">SHANNON ENTROPY &nbsp;|&nbsp; CHI-SQUARE &nbsp;|&nbsp; BYTE FREQUENCY DISTRIBUTION</div>
""", unsafe_allow_html=True)

st.markdown('<p class="section-header">📂 TARGET</p>', unsafe_allow_html=True)

uploaded_file = None
local_path = ""

if scan_mode == "Upload File / Image":
    uploaded_file = st.file_uploader("Upload any binary file or disk image", type=None)
else:
    local_path = st.text_input(
        "Enter local file or device path",
        placeholder="/dev/sda1  or  samples/mixed.bin",
        help="Requires read permissions. Use sudo for block devices."
    )

scan_btn = st.button("▶  RUN SCAN")

# ── SCAN LOGIC ────────────────────────────────────────────────────────────────

if scan_btn:
    target_path = None
    if scan_mode == "Upload File / Image":
        if uploaded_file is None:
            st.error("Please upload a file first.")
            st.stop()
        tmp = tempfile.NamedTemporaryFile(delete=False, suffix=".bin")
        tmp.write(uploaded_file.read())
        tmp.close()
        target_path = tmp.name
        display_name = uploaded_file.name
    else:
        if not local_path.strip():
            st.error("Please enter a file or device path.")
            st.stop()
        if not os.path.exists(local_path.strip()):
            st.error(f"Path not found: `{local_path.strip()}`")
            st.stop()
        target_path = local_path.strip()
        display_name = target_path

    try:
        size = os.path.getsize(target_path)
    except OSError:
        size = 0
    if limit_mb:
        size = min(size, limit_mb * 1024 * 1024) if size else limit_mb * 1024 * 1024

    progress_bar = st.progress(0)
    status_text = st.empty()
    start_time = time.time()
    blocks, total = [], FrequencyContext()

    try:
        for done, blocks, total in scan_overview(target_path, block_size, int(limit_mb) * 1024 * 1024):
            if size:
                progress_bar.progress(min(done / size, 1.0))
            status_text.text(f"Block {len(blocks)}  |  {format_offset(done)}")
    except (EntropyError, OSError) as e:
        st.error(f"Scan error: {e}")
        st.stop()
    finally:
        if uploaded_file:
            os.unlink(target_path)

    progress_bar.progress(1.0)
    status_text.empty()

    bfd = None
    if total.symbol_count:
        request = batch_calculate(total, BatchRequest([Algorithm.SHANNON, Algorithm.CHISQ, Algorithm.BFD]))
        bfd = {
            "entropy": request.result_for(Algorithm.SHANNON).value,
            "chisq": request.result_for(Algorithm.CHISQ).value,
            "table": list(request.result_for(Algorithm.BFD).table),
            "size": total.symbol_count,
        }

    st.session_state.blocks = blocks
    st.session_state.bfd = bfd
    st.session_state.scan_done = True
    st.session_state.scan_target = display_name
    st.session_state.scan_time = time.time() - start_time

# ── RESULTS ───────────────────────────────────────────────────────────────────

if st.session_state.scan_done:
    blocks = st.session_state.blocks
    bfd = st.session_state.bfd

    st.markdown('<p class="section-header">✅ SCAN COMPLETE</p>', unsafe_allow_html=True)

    flagged = [b for b in blocks if b["entropy"] >= threshold]
    overall = f"{bfd['entropy']:.3f}" if bfd else "-"

    m1, m2, m3, m4 = st.columns(4)
    with m1:
        st.markdown(f'<div class="metric-card"><div class="metric-value">{len(blocks)}</div><div class="metric-label">Blocks</div></div>', unsafe_allow_html=True)
    with m2:
        st.markdown(f'<div class="metric-card"><div class="metric-value" style="color:{HIGH_COLOR}">{len(flagged)}</div><div class="metric-label">Flagged Blocks</div></div>', unsafe_allow_html=True)
    with m3:
        st.markdown(f'<div class="metric-card"><div class="metric-value">{overall}</div><div class="metric-label">Overall Entropy</div></div>', unsafe_allow_html=True)
    with m4:
        st.markdown(f'<div class="metric-card"><div class="metric-value" style="color:#4a9eff">{st.session_state.scan_time:.2f}s</div><div class="metric-label">Elapsed</div></div>', unsafe_allow_html=True)

    if not bfd:
        st.info("Nothing was read from the target.")
    else:
        tab1, tab2, tab3 = st.tabs(["📈  PER BLOCK", "📊  BYTE DISTRIBUTION", "📋  FLAGGED BLOCKS"])

        with tab1:
            if blocks:
                st.plotly_chart(entropy_figure(blocks, threshold), use_container_width=True)
                st.markdown("**Chi-square per block**")
                st.plotly_chart(chisq_figure(blocks), use_container_width=True)
            else:
                st.info(f"The target is shorter than one {block_size}-byte block.")

        with tab2:
            st.plotly_chart(bfd_figure(bfd["table"], bin_size), use_container_width=True)
            st.caption(f"{bfd['size']:,} bytes  |  entropy {bfd['entropy']:.4f}  |  χ² {bfd['chisq']:.2f}")

        with tab3:
            df = make_df(blocks, threshold)
            if df.empty:
                st.info("No blocks at or above the entropy threshold.")
            else:
                st.dataframe(df, use_container_width=True, height=400)
