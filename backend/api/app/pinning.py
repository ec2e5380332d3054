"""Content pinning: publish a verified artifact to a content-addressed store.

The store adapter is the Pinata REST API (no SDK). Publication is
idempotent at the artifact level: once content_id is set, pin_artifact
refuses to run again.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional, Protocol

import httpx

from app import audit, repo
from app.config import Settings
from app.errors import Conflict, ExternalUnavailable, NotFound, PreconditionFailed
from app.models import Artifact, ArtifactStatus, Decision, EventType

if TYPE_CHECKING:
    from app.context import CurationContext

logger = logging.getLogger(__name__)


class ContentStore(Protocol):
    def publish_json(self, document: Dict[str, Any], name: str) -> str: ...

    def publish_file(self, url: str, name: str) -> str: ...

    def gateway_url(self, content_id: str) -> str: ...


def is_storage_reference(reference: str, base_url: str) -> bool:
    """True when `reference` points inside the file storage at `base_url`."""
    if not base_url:
        return False
    try:
        url, base = httpx.URL(reference), httpx.URL(base_url)
    except httpx.InvalidURL:
        return False
    if (url.scheme, url.host, url.port) != (base.scheme, base.host, base.port):
        return False
    prefix = base.path if base.path.endswith("/") else base.path + "/"
    return url.path.startswith(prefix) and ".." not in url.path.split("/")


class PinataContentStore:
    def __init__(
        self,
        jwt: str,
        api_url: str = "https://api.pinata.cloud",
        gateway: str = "",
        file_base_url: str = "",
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._gateway = gateway
        self._file_base_url = file_base_url
        self._client = httpx.Client(
            base_url=api_url,
            timeout=timeout,
            headers={"Authorization": f"Bearer {jwt}"},
            transport=transport,
        )
        # Separate client so the API token never reaches the file host. No
        # redirects: a file URL must resolve inside storage on its own.
        self._fetch = httpx.Client(timeout=timeout, follow_redirects=False, transport=transport)

    def gateway_url(self, content_id: str) -> str:
        if self._gateway:
            return f"https://{self._gateway}/ipfs/{content_id}"
        return f"https://gateway.pinata.cloud/ipfs/{content_id}"

    def _post(self, path: str, **kwargs: Any) -> str:
        try:
            res = self._client.post(path, **kwargs)
        except httpx.HTTPError as e:
            raise ExternalUnavailable(f"Pinata request failed: {e}") from e
        if res.status_code >= 400:
            raise ExternalUnavailable(f"Pinata {path} failed ({res.status_code}): {res.text}")
        try:
            return res.json()["IpfsHash"]
        except (ValueError, KeyError) as e:
            raise ExternalUnavailable(f"Pinata {path} returned an unexpected body: {res.text}") from e

    def publish_json(self, document: Dict[str, Any], name: str) -> str:
        return self._post(
            "/pinning/pinJSONToIPFS",
            json={"pinataContent": document, "pinataMetadata": {"name": name}},
        )

    def publish_file(self, url: str, name: str) -> str:
        if not is_storage_reference(url, self._file_base_url):
            raise ExternalUnavailable(f"Refusing to fetch {url}: not in file storage")
        try:
            res = self._fetch.get(url)
            res.raise_for_status()
        except httpx.HTTPError as e:
            raise ExternalUnavailable(f"Failed to fetch file from {url}: {e}") from e

        content_type = res.headers.get("content-type", "application/octet-stream")
        return self._post(
            "/pinning/pinFileToIPFS",
            files={"file": (name, res.content, content_type)},
            data={"pinataMetadata": json.dumps({"name": name})},
        )

    def close(self) -> None:
        self._client.close()
        self._fetch.close()


def content_store_from_settings(settings: Settings) -> Optional[PinataContentStore]:
    if not settings.pinata_jwt:
        logger.warning("PINATA_JWT not set; content pinning disabled")
        return None
    return PinataContentStore(
        jwt=settings.pinata_jwt,
        api_url=settings.pinata_api_url,
        gateway=settings.pinata_gateway,
        file_base_url=settings.file_storage_base_url,
        timeout=settings.content_store_timeout_seconds,
    )


@dataclass(frozen=True)
class PinResult:
    content_id: str
    file_content_id: Optional[str]
    gateway_url: str


def build_metadata(
    artifact: Artifact,
    submitter_identity: str,
    verifier_identity: Optional[str],
    file_content_id: Optional[str],
) -> Dict[str, Any]:
    return {
        "artifactId": artifact.id,
        "title": artifact.title,
        "description": artifact.description,
        "type": artifact.type.value,
        "status": artifact.status.value,
        "sourceUrl": artifact.source_url,
        "fileReference": artifact.file_reference,
        "fileContentType": artifact.file_content_type,
        "fileContentId": file_content_id,
        "language": artifact.language,
        "license": artifact.license,
        "tags": list(artifact.tags),
        "submittedBy": submitter_identity,
        "verifiedBy": verifier_identity,
        "createdAt": artifact.created_at.isoformat(),
        "chainTxHash": artifact.chain_tx_hash,
        "chainBlock": artifact.chain_block,
    }


def pin_artifact(ctx: "CurationContext", artifact_id: str, actor_id: str) -> PinResult:
    """
    Publish the file (best effort) and the metadata document (required),
    then record the content id once and emit PINNED.
    """
    with ctx.engine.connect() as conn:
        artifact = repo.get_artifact(conn, artifact_id)
        if not artifact:
            raise NotFound("Artifact not found")
        if artifact.status != ArtifactStatus.VERIFIED:
            raise PreconditionFailed("Only VERIFIED artifacts can be pinned")
        if artifact.content_id:
            raise PreconditionFailed(f"Already pinned: {artifact.content_id}")

        submitter = repo.get_user(conn, artifact.submitted_by_id)
        approvals = repo.list_reviews(conn, artifact_id, decision=Decision.APPROVE)
        verifier = repo.get_user(conn, approvals[0].expert_id) if approvals else None

    store = ctx.content_store
    if store is None:
        raise ExternalUnavailable("Content pinning not configured")

    file_content_id: Optional[str] = None
    if artifact.file_reference and not is_storage_reference(
        artifact.file_reference, ctx.settings.file_storage_base_url
    ):
        logger.warning("Skipping file for %s: %s is outside file storage", artifact_id, artifact.file_reference)
    elif artifact.file_reference:
        try:
            file_content_id = store.publish_file(artifact.file_reference, f"artifact-file-{artifact_id}")
            logger.info("File pinned for %s: %s", artifact_id, file_content_id)
        except ExternalUnavailable as e:
            logger.error("File pin failed for %s: %s", artifact_id, e)

    document = build_metadata(
        artifact,
        submitter.wallet if submitter else artifact.submitted_by_id,
        verifier.wallet if verifier else None,
        file_content_id,
    )
    content_id = store.publish_json(document, f"artifact-{artifact_id}")
    gateway_url = store.gateway_url(content_id)

    now = ctx.now()
    with ctx.engine.begin() as conn:
        if not repo.set_content_id(conn, artifact_id, content_id, now):
            raise Conflict("Artifact was pinned concurrently")
        audit.emit(
            conn,
            artifact_id,
            actor_id,
            EventType.PINNED,
            {"contentId": content_id, "fileContentId": file_content_id, "gatewayUrl": gateway_url},
            now,
        )

    logger.info("Pinned %s: metadata=%s file=%s", artifact_id, content_id, file_content_id)
    return PinResult(content_id=content_id, file_content_id=file_content_id, gateway_url=gateway_url)
