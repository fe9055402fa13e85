"""
HTTP client for the Veritas API and the upload flow the dashboard drives.

    client = VeritasClient("http://127.0.0.1:8000")
    client.sign_in("me@example.com", "hunter22")
    analysis_id = upload_image(client, "photo.png", data, "image/png")
"""

import logging
import mimetypes
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests

from veritas.exceptions import UploadRejectedError

logger = logging.getLogger(__name__)

SUB_SCORE_LABELS = {
    "artifact_score": "Artifact Detection",
    "pattern_consistency": "Pattern Consistency",
    "noise_analysis": "Noise Analysis",
    "color_distribution": "Color Distribution",
    "edge_coherence": "Edge Coherence",
    "metadata_score": "Metadata Analysis",
}

VERDICT_LABELS = {
    "PENDING": "⏳ Analyzing",
    "AUTHENTIC": "✅ Authentic",
    "AI_GENERATED": "🤖 AI Generated",
}


class ApiError(Exception):
    """Non-2xx response from the API."""

    def __init__(self, status_code: int, detail: str):
        super().__init__(f"{status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


class VeritasClient:
    """
    Thin wrapper over the Veritas HTTP API.

    ``session`` may be any object with a requests-compatible ``request()``
    method (a ``requests.Session`` by default).
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        session: Optional[Any] = None,
        timeout: float = 30,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.session = session or requests.Session()
        self.timeout = timeout

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    def _url(self, path_or_url: str) -> str:
        if path_or_url.startswith(("http://", "https://")):
            return path_or_url
        return f"{self.base_url}{path_or_url}"

    def _request(self, method: str, path: str, **kwargs) -> Any:
        headers = kwargs.pop("headers", {}) or {}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        resp = self.session.request(
            method,
            self._url(path),
            headers=headers,
            timeout=self.timeout,
            **kwargs,
        )
        if resp.status_code >= 400:
            try:
                detail = resp.json().get("detail", resp.text)
            except ValueError:
                detail = resp.text
            raise ApiError(resp.status_code, str(detail))
        if not resp.content:
            return None
        return resp.json()

    # ---------- auth ----------

    def sign_up(self, email: str, password: str) -> Dict[str, Any]:
        data = self._request("POST", "/auth/signup", json={"email": email, "password": password})
        self.token = data["token"]
        return data

    def sign_in(self, email: str, password: str) -> Dict[str, Any]:
        data = self._request("POST", "/auth/signin", json={"email": email, "password": password})
        self.token = data["token"]
        return data

    def sign_out(self) -> None:
        if self.token:
            self._request("POST", "/auth/signout")
        self.token = None

    # ---------- read-only ----------

    def health(self) -> bool:
        try:
            return self._request("GET", "/health").get("status") == "ok"
        except (ApiError, requests.RequestException):
            return False

    def list_analyses(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/analyses")

    def recent(self, limit: int = 10) -> List[Dict[str, Any]]:
        return self._request("GET", "/analyses/recent", params={"limit": limit})

    def stats(self) -> Dict[str, int]:
        return self._request("GET", "/analyses/stats")

    # ---------- mutations ----------

    def issue_upload_target(self) -> Dict[str, Any]:
        return self._request("POST", "/analyses/upload-url")

    def upload_bytes(
        self,
        upload_url: str,
        filename: str,
        content: bytes,
        content_type: str,
    ) -> str:
        """Send bytes to an issued upload target; returns the storage id."""
        data = self._request(
            "POST",
            upload_url,
            files={"file": (filename, content, content_type)},
        )
        return data["storage_id"]

    def create_analysis(self, storage_id: str, filename: str) -> str:
        data = self._request(
            "POST",
            "/analyses",
            json={"storage_id": storage_id, "filename": filename},
        )
        return data["id"]

    def trigger_scoring(self, analysis_id: str) -> Dict[str, Any]:
        return self._request("POST", f"/analyses/{analysis_id}/score")

    def delete_analysis(self, analysis_id: str) -> None:
        self._request("DELETE", f"/analyses/{analysis_id}")


def guess_content_type(filename: str, content_type: Optional[str] = None) -> Optional[str]:
    if content_type:
        return content_type
    guessed, _ = mimetypes.guess_type(filename)
    return guessed


def is_image(filename: str, content_type: Optional[str] = None) -> bool:
    kind = guess_content_type(filename, content_type)
    return bool(kind) and kind.lower().startswith("image/")


def upload_image(
    client: VeritasClient,
    filename: str,
    content: bytes,
    content_type: Optional[str] = None,
) -> str:
    """
    Upload an image and start its analysis.

    Non-image files are rejected before anything goes over the network.
    Scoring is only triggered, not awaited; the verdict arrives later through
    the listing endpoints. Nothing here is retried.

    Returns:
        The new analysis id.
    """
    kind = guess_content_type(filename, content_type)
    if not is_image(filename, kind):
        raise UploadRejectedError("Please upload an image file")

    target = client.issue_upload_target()
    storage_id = client.upload_bytes(target["upload_url"], filename, content, kind)
    analysis_id = client.create_analysis(storage_id, filename)
    client.trigger_scoring(analysis_id)

    logger.info(f"Uploaded {filename} as analysis {analysis_id}")
    return analysis_id


# ---------- formatting ----------


def verdict_label(verdict: str) -> str:
    return VERDICT_LABELS.get(verdict, verdict)


def format_confidence(analysis: Dict[str, Any]) -> str:
    if analysis.get("verdict") == "PENDING":
        return "—"
    return f"{analysis.get('confidence', 0.0):.2f}%"


def format_timestamp(value: str) -> str:
    try:
        return datetime.fromisoformat(value).strftime("%Y-%m-%d %H:%M")
    except (TypeError, ValueError):
        return str(value)


def has_pending(analyses: List[Dict[str, Any]]) -> bool:
    return any(a.get("verdict") == "PENDING" for a in analyses)
