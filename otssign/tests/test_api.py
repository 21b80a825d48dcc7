import hashlib
import json

import anyio
import pytest
from fastapi.testclient import TestClient

from otssign.app.bundle.session import SigningSession
from otssign.app.crypto.merkle import build_commitment
from otssign.app.main import app

from otssign.tests.fixtures.bundle_factory import (
    ALICE,
    SAMPLE_PDF,
    capture,
    credentials_for,
    draft_bundle,
    signer_id_for,
)


async def _sign_alice() -> SigningSession:
    session = SigningSession(draft_bundle([ALICE]))
    await session.sign(
        signer_id_for(session.bundle, ALICE[1]),
        credentials_for(ALICE),
        capture(),
    )
    return session


@pytest.fixture(scope="module")
def signed_session() -> SigningSession:
    return anyio.run(_sign_alice)


@pytest.fixture
def client(monkeypatch):
    monkeypatch.delenv("OTSSIGN_MAX_BUNDLE_SIZE_MB", raising=False)
    with TestClient(app) as test_client:
        yield test_client


def _upload(content, name="contract.ots-sign"):
    return {"bundle": (name, content, "application/json")}


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "otssign"}


def test_verify_signed_bundle(client, signed_session):
    response = client.post("/verify", files=_upload(signed_session.dump()))

    assert response.status_code == 200
    report = response.json()
    assert report["passed"] is True
    assert report["bundle_status"] == "completed"
    assert report["signer_results"][0]["signature_valid"] is True


def test_verify_with_expected_document_hash(client, signed_session):
    good = client.post(
        "/verify",
        files=_upload(signed_session.dump()),
        data={"expected_document_hash": hashlib.sha256(SAMPLE_PDF).hexdigest()},
    )
    bad = client.post(
        "/verify",
        files=_upload(signed_session.dump()),
        data={"expected_document_hash": "ab" * 32},
    )

    assert good.json()["passed"] is True
    assert bad.json()["passed"] is False
    assert any(f["finding_id"] == "DOC-CRIT-001" for f in bad.json()["findings"])


def test_tampered_upload_is_reported_not_rejected(client, signed_session):
    wire = json.loads(signed_session.dump())
    wire["signers"][0]["email"] = "mallory@example.com"

    response = client.post("/verify", files=_upload(json.dumps(wire)))

    assert response.status_code == 200
    assert response.json()["passed"] is False


def test_malformed_bundle_is_422(client):
    response = client.post("/verify", files=_upload(b'{"version": "1.0"}'))

    assert response.status_code == 422


def test_empty_upload_is_400(client):
    response = client.post("/verify", files=_upload(b""))

    assert response.status_code == 400


def test_oversized_upload_is_413(monkeypatch):
    monkeypatch.setenv("OTSSIGN_MAX_BUNDLE_SIZE_MB", "1")

    with TestClient(app) as client:
        response = client.post("/verify", files=_upload(b" " * (1024 * 1024 + 1)))

    assert response.status_code == 413


def test_commitment_endpoint(client, signed_session):
    response = client.post("/commitment", files=_upload(signed_session.dump()))

    assert response.status_code == 200
    body = response.json()
    assert body["root"] == build_commitment(signed_session.bundle).root
    assert body["leaf_count"] == 2


def test_undecodable_text_is_422(client, signed_session):
    content = signed_session.dump().replace(ALICE[1], "alice\\ud800@example.com")

    response = client.post("/verify", files=_upload(content.encode("utf-8")))

    assert response.status_code == 422
