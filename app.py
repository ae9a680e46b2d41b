"""
Promo Mailer - Streamlit UI
Turns a product page URL into on-brand, Gmail-safe marketing emails:
scrapes the page, has Claude extract brand & design decisions, then
renders one or more HTML email variations.
"""

import os
import html as html_module

import streamlit as st
import streamlit.components.v1 as components
from dotenv import load_dotenv

from promo_mailer.agent import EmailGeneratorAgent, GeneratorConfig, PipelineResult
from promo_mailer.llm_client import DEFAULT_MODEL

load_dotenv()

MODEL_OPTIONS = [
    "claude-sonnet-4-20250514",
    "claude-sonnet-4-5-20250929",
    "claude-opus-4-5",
    "claude-haiku-4-5",
]


def esc(text: str) -> str:
    """HTML-escape user/LLM-generated text for safe injection into markup."""
    return html_module.escape(str(text)) if text else ""


# --- Page Config ---
st.set_page_config(
    page_title="Promo Mailer",
    page_icon="M",
    layout="wide",
    initial_sidebar_state="expanded",
)

# --- Custom Styling ---
st.markdown("""
<style>
@import url('https://fonts.googleapis.com/css2?family=Inter:wght@300;400;500;600;700;800&display=swap');

html, body, [class*="css"] {
    font-family: 'Inter', -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
}
.main .block-container {
    padding-bottom: 2rem;
    max-width: 1100px;
    margin: 0 auto;
}
#MainMenu {visibility: hidden !important;}
footer {visibility: hidden !important;}

.brand-title {
    font-size: 1.6rem;
    font-weight: 800;
    color: #1e2a3a;
    margin: 0;
}
.brand-subtitle {
    font-size: 0.85rem;
    color: #6b7685;
    margin: 0 0 1rem 0;
}
.styled-card {
    background: #ffffff;
    border: 1px solid #e2e6ec;
    border-radius: 12px;
    padding: 1rem 1.25rem;
    margin-bottom: 0.75rem;
}
.overview-grid {
    display: grid;
    grid-template-columns: repeat(4, 1fr);
    gap: 1rem;
}
.overview-label {
    font-size: 0.7rem;
    font-weight: 700;
    letter-spacing: 0.08em;
    text-transform: uppercase;
    color: #6b7685;
}
.overview-value {
    font-size: 0.95rem;
    color: #1e2a3a;
    margin-top: 0.2rem;
}
.swatch {
    display: inline-block;
    width: 22px;
    height: 22px;
    border-radius: 6px;
    border: 1px solid #e2e6ec;
    margin-right: 6px;
    vertical-align: middle;
}
</style>
""", unsafe_allow_html=True)


def _known_model(name) -> str:
    return name if name in MODEL_OPTIONS else DEFAULT_MODEL


def init_session_state():
    """Initialize session state variables."""
    defaults = {
        "pipeline_result": None,
        "pipeline_logs": [],
        "api_key": os.getenv("ANTHROPIC_API_KEY", ""),
        "extraction_model": _known_model(os.getenv("EXTRACTION_MODEL")),
        "generation_model": _known_model(os.getenv("GENERATION_MODEL")),
    }
    for key, val in defaults.items():
        if key not in st.session_state:
            st.session_state[key] = val


def get_generator_config() -> GeneratorConfig:
    """Build GeneratorConfig from the environment plus sidebar settings."""
    config = GeneratorConfig.from_env()
    config.anthropic_api_key = st.session_state.get("api_key", "")
    config.extraction_model = st.session_state.get("extraction_model", DEFAULT_MODEL)
    config.generation_model = st.session_state.get("generation_model", DEFAULT_MODEL)
    return config


def render_sidebar():
    """Render the configuration sidebar."""
    with st.sidebar:
        st.markdown("**Configuration**")
        st.text_input(
            "Anthropic API Key (required)",
            type="password",
            key="api_key",
            help="Used for both the brand analysis call and the email generation call.",
        )
        st.selectbox(
            "Extraction model",
            options=MODEL_OPTIONS,
            key="extraction_model",
            help="Reads the product page and makes the design decisions.",
        )
        st.selectbox(
            "Generation model",
            options=MODEL_OPTIONS,
            key="generation_model",
            help="Writes the HTML emails from the design decisions.",
        )
        st.markdown("---")
        st.caption("Real page fetching · Gmail-safe HTML · Multiple styles")


def render_design_decisions(result: PipelineResult):
    """Show the palette and aesthetic the emails were built from."""
    decisions = result.design.design_decisions
    palette = decisions.color_palette.model_dump(exclude_none=True)

    with st.expander("Design decisions", expanded=False):
        if decisions.overall_aesthetic:
            st.markdown(f"**Aesthetic:** {esc(decisions.overall_aesthetic)}")
        if palette:
            swatches = "".join(
                f'<div style="margin:0.2rem 0;"><span class="swatch" style="background:{esc(color)};"></span>'
                f'{esc(name)} <code>{esc(color)}</code></div>'
                for name, color in palette.items()
            )
            st.markdown(swatches, unsafe_allow_html=True)
        st.json(result.design.section_dump("design_decisions"))
        st.markdown("**Copywriting direction**")
        st.json(result.design.section_dump("copywriting_direction"))


def render_results(result: PipelineResult):
    """Render product summary and the generated emails."""
    summary = result.summary
    st.markdown(
        f'<div class="styled-card"><div class="overview-grid">'
        f'<div><div class="overview-label">Product</div><div class="overview-value">{esc(summary.name) or "-"}</div></div>'
        f'<div><div class="overview-label">Price</div><div class="overview-value">{esc(summary.price) or "-"}</div></div>'
        f'<div><div class="overview-label">Brand</div><div class="overview-value">{esc(summary.brand) or "-"}</div></div>'
        f'<div><div class="overview-label">Images</div><div class="overview-value">{summary.image_count}</div></div>'
        f'</div></div>',
        unsafe_allow_html=True,
    )

    if result.usage:
        cost = result.usage.estimated_cost_usd
        cost_text = f"${cost:.6f}" if cost is not None else "N/A"
        st.caption(f"Tokens: {result.usage.total_tokens:,} · Estimated cost: {cost_text}")

    for warning in result.warnings:
        st.warning(warning)

    render_design_decisions(result)

    tabs = st.tabs([f"{doc.sequence_index}. {doc.style_label}" for doc in result.documents])
    for tab, doc in zip(tabs, result.documents):
        with tab:
            col1, col2 = st.columns([1, 1])
            with col1:
                st.download_button(
                    "Download HTML",
                    data=doc.html,
                    file_name=doc.filename,
                    mime="text/html",
                    key=f"download_{doc.sequence_index}",
                    use_container_width=True,
                )
            view = col2.radio(
                "View",
                options=["Preview", "HTML"],
                horizontal=True,
                key=f"view_{doc.sequence_index}",
                label_visibility="collapsed",
            )
            if view == "Preview":
                components.html(doc.html, height=700, scrolling=True)
            else:
                st.code(doc.html, language="html")


def render_generator():
    """Render the URL form and run the pipeline."""
    col1, col2, col3 = st.columns([3, 1, 2])
    with col1:
        url = st.text_input(
            "Product URL",
            placeholder="https://brand.com/products/item",
            help="A single product page. Storefronts with JSON-LD product data give the best results.",
        )
    with col2:
        email_count = st.selectbox("Emails", options=[1, 2, 3, 4], index=1)
    with col3:
        promotion = st.text_input("Promotion (optional)", placeholder="20% off this weekend")

    if st.button("Generate Emails", type="primary"):
        config = get_generator_config()
        if not config.anthropic_api_key:
            st.error("Please enter your Anthropic API key in the sidebar.")
            return

        agent = EmailGeneratorAgent(config)
        logs = st.session_state["pipeline_logs"] = []
        status_placeholder = st.empty()

        def progress_cb(msg: str):
            logs.append(msg)
            status_placeholder.text(msg)

        with st.spinner("Generating emails..."):
            result = agent.run_pipeline(
                url=url,
                email_count=email_count,
                promotion=promotion,
                progress_callback=progress_cb,
            )
        status_placeholder.empty()
        st.session_state["pipeline_result"] = result

    result: PipelineResult = st.session_state.get("pipeline_result")
    if not result:
        st.info("Paste a product page URL and click **Generate Emails**.")
        return

    with st.expander("Pipeline log", expanded=False):
        for log_line in st.session_state.get("pipeline_logs", []):
            st.text(log_line)

    if result.error:
        st.error(result.error)
        return

    render_results(result)


# --- Main App ---
def main():
    init_session_state()
    render_sidebar()

    st.markdown(
        '<p class="brand-title">Promo Mailer</p>'
        '<p class="brand-subtitle">Product page in, on-brand marketing emails out.</p>',
        unsafe_allow_html=True,
    )
    render_generator()


if __name__ == "__main__":
    main()
