"""
Veritas Streamlit dashboard.
Upload images, watch their authenticity analyses complete, review history.

Run with:
    streamlit run app.py
"""

import time

import requests
import streamlit as st

from veritas.config import settings
from veritas.dashboard.client import (
    ApiError,
    SUB_SCORE_LABELS,
    VeritasClient,
    format_confidence,
    format_timestamp,
    has_pending,
    upload_image,
    verdict_label,
)
from veritas.exceptions import UploadRejectedError


st.set_page_config(
    page_title="Veritas",
    page_icon="🔍",
    layout="wide",
)

POLL_SECONDS = 2


# ---------- Helpers ----------


def get_client(base_url: str) -> VeritasClient:
    """One client per browser session, rebuilt if the backend URL changes."""
    client = st.session_state.get("client")
    if client is None or client.base_url != base_url.rstrip("/"):
        client = VeritasClient(base_url, token=st.session_state.get("token"))
        st.session_state["client"] = client
    return client


def render_auth(client: VeritasClient):
    st.title("🔍 Veritas")
    st.markdown("**Image authenticity analysis**")
    st.markdown("---")

    sign_in_tab, sign_up_tab = st.tabs(["Sign in", "Create account"])

    for tab, flow in ((sign_in_tab, "signin"), (sign_up_tab, "signup")):
        with tab:
            with st.form(f"{flow}_form"):
                email = st.text_input("Email", key=f"{flow}_email")
                password = st.text_input("Password", type="password", key=f"{flow}_password")
                submitted = st.form_submit_button(
                    "Sign in" if flow == "signin" else "Create account",
                    type="primary",
                )
            if submitted:
                try:
                    if flow == "signin":
                        data = client.sign_in(email, password)
                    else:
                        data = client.sign_up(email, password)
                    st.session_state["token"] = data["token"]
                    st.session_state["email"] = data["email"]
                    st.rerun()
                except ApiError as e:
                    if flow == "signin":
                        st.error("Invalid credentials")
                    else:
                        st.error(f"Could not create account: {e.detail}")
                except requests.exceptions.RequestException as e:
                    st.error(f"Cannot reach backend: {e}")


def render_stats(client: VeritasClient):
    stats = client.stats()
    col1, col2, col3 = st.columns(3)
    with col1:
        st.metric("Total Scans", stats.get("total", 0))
    with col2:
        st.metric("Authentic", stats.get("authentic", 0))
    with col3:
        st.metric("AI Generated", stats.get("ai_generated", 0))


def render_uploader(client: VeritasClient):
    st.subheader("📤 Upload an image")
    image_file = st.file_uploader(
        "Drop an image to analyze",
        type=["png", "jpg", "jpeg", "webp", "gif", "bmp"],
        key=f"uploader_{st.session_state.get('upload_round', 0)}",
    )

    if image_file is not None and st.button("🔍 Analyze", type="primary"):
        with st.spinner("Uploading..."):
            try:
                upload_image(
                    client,
                    image_file.name,
                    image_file.getvalue(),
                    image_file.type,
                )
                st.toast(f"Analysis started for {image_file.name}")
                # New key clears the uploader widget
                st.session_state["upload_round"] = st.session_state.get("upload_round", 0) + 1
                st.rerun()
            except UploadRejectedError as e:
                st.warning(str(e))
            except ApiError as e:
                st.error(f"Upload failed. Please try again. ({e.status_code})")
            except requests.exceptions.RequestException:
                st.error("Upload failed. Please try again.")


def render_analysis(client: VeritasClient, analysis: dict):
    with st.container(border=True):
        img_col, info_col = st.columns([1, 2])

        with img_col:
            st.image(analysis["image_url"], use_container_width=True)

        with info_col:
            st.markdown(f"**{analysis['filename']}**")
            st.caption(format_timestamp(analysis["created_at"]))
            st.markdown(f"### {verdict_label(analysis['verdict'])}")

            if analysis["verdict"] == "PENDING":
                st.progress(0.5, text="Running analysis...")
            else:
                st.metric("Confidence", format_confidence(analysis))
                details = analysis.get("analysis_details") or {}
                with st.expander("📊 Score breakdown"):
                    for key, label in SUB_SCORE_LABELS.items():
                        score = details.get(key, 0.0)
                        st.progress(min(score / 100, 1.0), text=f"{label}: {score:.1f}")

            if st.button("🗑️ Delete", key=f"delete_{analysis['id']}"):
                try:
                    client.delete_analysis(analysis["id"])
                    st.rerun()
                except ApiError as e:
                    st.error(f"Delete failed: {e.detail}")


# ---------- Sidebar config ----------


st.sidebar.title("⚙️ Settings")

base_url = st.sidebar.text_input(
    "Backend URL",
    value=settings.public_base_url or "http://127.0.0.1:8000",
    help="FastAPI server base URL.",
)

client = get_client(base_url)

if st.sidebar.button("🔌 Check Connection"):
    if client.health():
        st.sidebar.success("✅ Backend is online!")
    else:
        st.sidebar.error("❌ Cannot connect to backend")

if client.is_authenticated:
    st.sidebar.markdown("---")
    st.sidebar.markdown(f"Signed in as **{st.session_state.get('email', '')}**")
    if st.sidebar.button("Sign out"):
        try:
            client.sign_out()
        except (ApiError, requests.exceptions.RequestException) as e:
            st.sidebar.warning(f"Sign-out request failed: {e}")
        st.session_state.pop("token", None)
        st.session_state.pop("email", None)
        st.rerun()


# ---------- Main UI ----------


if not client.is_authenticated:
    render_auth(client)
    st.stop()

st.title("🔍 Veritas")
st.markdown("---")

try:
    render_stats(client)
    st.markdown("---")
    render_uploader(client)
    st.markdown("---")

    st.subheader("🕘 Recent analyses")
    analyses = client.recent(limit=settings.dashboard_recent_limit)
    if not analyses:
        st.info("No analyses yet. Upload an image to get started.")
    for analysis in analyses:
        render_analysis(client, analysis)
except ApiError as e:
    if e.status_code == 401:
        client.token = None
        st.session_state.pop("token", None)
        st.rerun()
    st.error(f"API Error: {e.status_code} - {e.detail}")
    analyses = []
except requests.exceptions.RequestException as e:
    st.error(f"Error calling backend: {e}")
    analyses = []

# --- Footer ---
st.markdown("---")
st.markdown(
    "<div style='text-align: center; color: gray;'>"
    "Veritas v0.1.0 • Image authenticity analysis"
    "</div>",
    unsafe_allow_html=True,
)

# Re-poll while any analysis is still running
if has_pending(analyses):
    time.sleep(POLL_SECONDS)
    st.rerun()
