import logging
from typing import Any, Optional

import httpx

from reachbot.config import (
    CANDIDATE_SEARCH_URL,
    INDEX_UPLOAD_URL,
    INTEGRATION_API_KEY,
    INTEGRATION_TIMEOUT_SECS,
)
from reachbot.models import User

logger = logging.getLogger(__name__)

INDEX_IDS = {
    "candidate_index": "1",
    "freelancer_index": "2",
}


class CandidateSearchClient:
    """Hybrid candidate search service: free-text need in, raw candidate records out."""

    def __init__(self, url: str = CANDIDATE_SEARCH_URL, api_key: str = INTEGRATION_API_KEY,
                 timeout: float = INTEGRATION_TIMEOUT_SECS, client: Optional[httpx.Client] = None):
        self.url = url
        self.api_key = api_key
        self.client = client or httpx.Client(timeout=timeout)

    def search(self, nlp: str) -> list[Any]:
        """Return the raw result list, or [] when the service is unset or fails."""
        if not self.url:
            logger.warning("[SEARCH] CANDIDATE_SEARCH_URL not configured, skipping search")
            return []
        logger.info("[SEARCH] Hybrid search for %r", nlp[:80])
        try:
            response = self.client.post(
                self.url,
                data={"prompt": nlp},
                headers={"accept": "application/json", "x-api-key": self.api_key},
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("[SEARCH] Hybrid search failed: %s", exc)
            return []

        if isinstance(payload, dict):
            payload = payload.get("results") or payload.get("candidates") or []
        if not isinstance(payload, list):
            logger.warning("[SEARCH] Unexpected payload type %s", type(payload).__name__)
            return []
        logger.info("[SEARCH] %d raw candidates", len(payload))
        return payload


class ArtifactIndexClient:
    """Uploads verified profile links and resumes to the search index."""

    def __init__(self, url: str = INDEX_UPLOAD_URL, api_key: str = INTEGRATION_API_KEY,
                 timeout: float = INTEGRATION_TIMEOUT_SECS, client: Optional[httpx.Client] = None):
        self.url = url
        self.api_key = api_key
        self.client = client or httpx.Client(timeout=timeout)

    def ingest(self, user: User, artifact: str, index: str, file_name: str = "") -> bool:
        """Best-effort upload. Returns True when the service accepted the artifact."""
        if not self.url:
            logger.info("[INDEX] INDEX_UPLOAD_URL not configured, skipping ingestion for %s", user.jid)
            return False
        index_id = INDEX_IDS[index]
        name = file_name or f"{user.id}.txt"
        try:
            response = self.client.post(
                self.url,
                files={"file": (name, artifact.encode("utf-8"), "text/plain")},
                data={"keyword": user.name or user.phone, "index_id": index_id},
                headers={"accept": "application/json", "x-api-key": self.api_key},
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("[INDEX] Upload for %s to %s failed: %s", user.jid, index, exc)
            return False
        logger.info("[INDEX] Uploaded %s for %s to %s", name, user.jid, index)
        return True
