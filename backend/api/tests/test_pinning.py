import httpx
import pytest

from app import audit, lifecycle, repo
from app.errors import ExternalUnavailable, NotFound, PreconditionFailed
from app.expert import submit_decision
from app.models import Decision, EventType
from app.pinning import PinataContentStore, is_storage_reference, pin_artifact


@pytest.fixture
def verified_unpinned(ctx, people, expert_review_artifact, content_store, ledger):
    """VERIFIED with both publication steps failed, so pin/anchor can be retried by hand."""

    def _make(**overrides):
        artifact_id = expert_review_artifact(**overrides)
        content_store.fail_json = True
        ledger.available = False
        submit_decision(ctx, artifact_id, people.expert.user_id, Decision.APPROVE)
        content_store.fail_json = False
        ledger.available = True
        return artifact_id

    return _make


def test_manual_pin_after_failed_auto_pin(ctx, people, verified_unpinned, content_store):
    artifact_id = verified_unpinned()

    result = pin_artifact(ctx, artifact_id, people.admin.user_id)

    assert lifecycle.get_visible(ctx, artifact_id, None).content_id == result.content_id
    assert result.gateway_url == f"https://gateway.test/ipfs/{result.content_id}"
    document = content_store.documents[-1]
    assert document["artifactId"] == artifact_id
    assert document["submittedBy"] == "5Submitter"
    assert document["verifiedBy"] == "5Expert"
    assert document["status"] == "VERIFIED"

    event = audit.list_by_artifact(ctx.engine, artifact_id)[-1]
    assert event.type == EventType.PINNED
    assert event.payload == {"contentId": result.content_id, "fileContentId": None, "gatewayUrl": result.gateway_url}


def test_pin_twice_is_refused(ctx, people, verified_unpinned):
    artifact_id = verified_unpinned()
    first = pin_artifact(ctx, artifact_id, people.admin.user_id)

    with pytest.raises(PreconditionFailed):
        pin_artifact(ctx, artifact_id, people.admin.user_id)

    assert lifecycle.get_visible(ctx, artifact_id, None).content_id == first.content_id


def test_file_is_published_before_metadata(ctx, people, expert_review_artifact, content_store):
    artifact_id = expert_review_artifact(file_reference="https://files.test/scan.pdf")

    result = submit_decision(ctx, artifact_id, people.expert.user_id, Decision.APPROVE)

    assert content_store.files == ["https://files.test/scan.pdf"]
    assert result.pin.file_content_id == "bafyfile1"
    assert content_store.documents[-1]["fileContentId"] == "bafyfile1"


def test_file_failure_does_not_block_metadata(ctx, people, expert_review_artifact, content_store):
    artifact_id = expert_review_artifact(file_reference="https://files.test/scan.pdf")
    content_store.fail_file = True

    result = submit_decision(ctx, artifact_id, people.expert.user_id, Decision.APPROVE)

    assert result.pin is not None
    assert result.pin.file_content_id is None
    assert content_store.documents[-1]["fileReference"] == "https://files.test/scan.pdf"


def test_file_outside_storage_is_never_fetched(ctx, people, clock, expert_review_artifact, content_store):
    artifact_id = expert_review_artifact()
    # A reference that predates the storage restriction.
    with ctx.engine.begin() as conn:
        repo.update_artifact_fields(
            conn, artifact_id, {"file_reference": "http://169.254.169.254/latest/meta-data/iam"}, clock()
        )

    result = submit_decision(ctx, artifact_id, people.expert.user_id, Decision.APPROVE)

    assert content_store.files == []
    assert result.pin is not None
    assert result.pin.file_content_id is None


def test_pin_requires_verified(ctx, people, make_artifact):
    artifact = make_artifact()
    with pytest.raises(PreconditionFailed):
        pin_artifact(ctx, artifact.id, people.admin.user_id)
    with pytest.raises(NotFound):
        pin_artifact(ctx, "missing", people.admin.user_id)


def test_metadata_failure_leaves_content_id_unset(ctx, people, verified_unpinned, content_store):
    artifact_id = verified_unpinned()
    content_store.fail_json = True

    with pytest.raises(ExternalUnavailable):
        pin_artifact(ctx, artifact_id, people.admin.user_id)
    assert lifecycle.get_visible(ctx, artifact_id, None).content_id is None


def test_pin_without_store_is_unavailable(ctx, people, verified_unpinned):
    artifact_id = verified_unpinned()
    ctx.content_store = None
    with pytest.raises(ExternalUnavailable):
        pin_artifact(ctx, artifact_id, people.admin.user_id)


# ----------------------------
# Pinata adapter
# ----------------------------

def _store(handler) -> PinataContentStore:
    return PinataContentStore(
        jwt="test-jwt",
        api_url="https://pinata.test",
        gateway="example.mypinata.cloud",
        file_base_url="https://files.test/",
        transport=httpx.MockTransport(handler),
    )


def test_pinata_publish_json():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(200, json={"IpfsHash": "bafyabc", "PinSize": 10})

    store = _store(handler)
    assert store.publish_json({"a": 1}, "artifact-1") == "bafyabc"
    assert seen == {"path": "/pinning/pinJSONToIPFS", "auth": "Bearer test-jwt"}
    assert store.gateway_url("bafyabc") == "https://example.mypinata.cloud/ipfs/bafyabc"


def test_pinata_file_fetch_does_not_leak_token():
    auth_on_fetch = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "files.test":
            auth_on_fetch.append(request.headers.get("authorization"))
            return httpx.Response(200, content=b"%PDF-1.4", headers={"content-type": "application/pdf"})
        assert request.url.path == "/pinning/pinFileToIPFS"
        return httpx.Response(200, json={"IpfsHash": "bafyfile"})

    store = _store(handler)
    assert store.publish_file("https://files.test/scan.pdf", "artifact-file-1") == "bafyfile"
    assert auth_on_fetch == [None]


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(401, text="unauthorized"),
        httpx.Response(200, text="not json"),
        httpx.Response(200, json={"unexpected": True}),
    ],
)
def test_pinata_errors_are_unavailable(response):
    store = _store(lambda request: response)
    with pytest.raises(ExternalUnavailable):
        store.publish_json({"a": 1}, "artifact-1")


def test_pinata_transport_error_is_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ExternalUnavailable):
        _store(handler).publish_json({"a": 1}, "artifact-1")


def test_pinata_refuses_files_outside_storage():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(str(request.url))
        return httpx.Response(200, json={"IpfsHash": "bafyfile"})

    with pytest.raises(ExternalUnavailable):
        _store(handler).publish_file("http://169.254.169.254/latest/meta-data/iam", "artifact-file-1")
    assert requests == []


def test_pinata_does_not_follow_file_redirects():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(str(request.url))
        return httpx.Response(302, headers={"location": "http://169.254.169.254/latest/meta-data/iam"})

    with pytest.raises(ExternalUnavailable):
        _store(handler).publish_file("https://files.test/scan.pdf", "artifact-file-1")
    assert requests == ["https://files.test/scan.pdf"]


@pytest.mark.parametrize(
    "reference, base, allowed",
    [
        ("https://files.test/uploads/a.pdf", "https://files.test/uploads/", True),
        ("https://files.test/uploads/a.pdf", "https://files.test/uploads", True),
        ("https://files.test/other/a.pdf", "https://files.test/uploads/", False),
        ("https://files.test:8443/uploads/a.pdf", "https://files.test/uploads/", False),
        ("https://files.test/uploads/a.pdf", "", False),
        ("not a url", "https://files.test/", False),
    ],
)
def test_is_storage_reference(reference, base, allowed):
    assert is_storage_reference(reference, base) is allowed
