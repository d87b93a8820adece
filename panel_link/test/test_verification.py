"""Ownership verification: challenge issuance, adjudication and permission checks."""

import pytest

from panel_link.errors import (
    AlreadyUsed, ChallengeExpired, NoActiveChallenge, NotFound, PermissionDenied,
    ProofMismatch, UpstreamUnavailable,
)
from panel_link.services.credentials import CredentialService
from panel_link.services.verification import (
    CODE_ALPHABET, CODE_LENGTH, MODE_FILE, MODE_SHAPE, OwnershipVerificationService,
    generate_code, proof_line,
)

PANEL_URL = "https://panel.example.com"


def _service(store, panel, clock, collector, mode=MODE_SHAPE):
    credentials = CredentialService(store, default_panel_url=PANEL_URL,
                                    client_factory=panel.client_factory)
    return OwnershipVerificationService(store, credentials, mode=mode, clock=clock,
                                        metrics=collector)


def _attempts(collector, outcome):
    return collector.registry.get_sample_value(
        "panel_link_verification_attempts_total", {"outcome": outcome}
    ) or 0


def test_generated_codes_have_expected_shape():
    codes = {generate_code() for _ in range(200)}
    for code in codes:
        assert len(code) == CODE_LENGTH
        assert set(code) <= set(CODE_ALPHABET)
    assert len(codes) > 190


def test_issue_and_adjudicate_links_resource(store, panel, clock, collector):
    service = _service(store, panel, clock, collector)
    issued = service.issue_challenge("u1", "abc123")
    assert issued.code in issued.instructions
    assert not service.has_permission("u1", "abc123")

    linked = service.adjudicate("u1", "abc123", issued.code.lower(),
                                origin_context={"guild_id": "g1"})

    assert linked.verified is True
    assert service.has_permission("u1", "abc123")
    assert store.get_resource("u1", "abc123").origin_context == {"guild_id": "g1"}
    assert _attempts(collector, "success") == 1


def test_replay_is_rejected(store, panel, clock, collector):
    service = _service(store, panel, clock, collector)
    issued = service.issue_challenge("u1", "abc123")
    service.adjudicate("u1", "abc123", issued.code)

    with pytest.raises(AlreadyUsed):
        service.adjudicate("u1", "abc123", issued.code)


def test_no_challenge(store, panel, clock, collector):
    service = _service(store, panel, clock, collector)
    with pytest.raises(NoActiveChallenge):
        service.adjudicate("u1", "abc123", "ABCD1234")
    assert _attempts(collector, "no_active_challenge") == 1


def test_expired_challenge_rejected_even_with_right_code(store, panel, clock, collector):
    service = _service(store, panel, clock, collector)
    issued = service.issue_challenge("u1", "abc123")
    clock.advance(hours=24)

    with pytest.raises(ChallengeExpired):
        service.adjudicate("u1", "abc123", issued.code)
    assert not service.has_permission("u1", "abc123")


def test_challenge_valid_just_before_expiry(store, panel, clock, collector):
    service = _service(store, panel, clock, collector)
    issued = service.issue_challenge("u1", "abc123")
    clock.advance(hours=23, minutes=59)

    service.adjudicate("u1", "abc123", issued.code)
    assert service.has_permission("u1", "abc123")


def test_wrong_code_does_not_consume(store, panel, clock, collector):
    service = _service(store, panel, clock, collector)
    issued = service.issue_challenge("u1", "abc123")
    wrong = "00000000" if issued.code != "00000000" else "11111111"

    with pytest.raises(ProofMismatch):
        service.adjudicate("u1", "abc123", wrong)
    with pytest.raises(ProofMismatch):
        service.adjudicate("u1", "abc123", "not a code")

    service.adjudicate("u1", "abc123", issued.code)
    assert service.has_permission("u1", "abc123")


def test_newest_challenge_wins(store, panel, clock, collector):
    service = _service(store, panel, clock, collector)
    first = service.issue_challenge("u1", "abc123")
    second = service.issue_challenge("u1", "abc123")

    if first.code != second.code:
        with pytest.raises(ProofMismatch):
            service.adjudicate("u1", "abc123", first.code)
    service.adjudicate("u1", "abc123", second.code)


def test_replay_after_relink_is_already_used(store, panel, clock, collector):
    service = _service(store, panel, clock, collector)
    service.issue_challenge("u1", "abc123")
    clock.advance(seconds=1)
    second = service.issue_challenge("u1", "abc123")
    service.adjudicate("u1", "abc123", second.code)

    with pytest.raises(AlreadyUsed):
        service.adjudicate("u1", "abc123", second.code)
    assert all(c.used for c in store.list_challenges("u1", "abc123"))


def test_challenge_is_scoped_to_user(store, panel, clock, collector):
    service = _service(store, panel, clock, collector)
    issued = service.issue_challenge("u1", "abc123")

    with pytest.raises(NoActiveChallenge):
        service.adjudicate("u2", "abc123", issued.code)


def test_permission_requires_link(store, panel, clock, collector):
    service = _service(store, panel, clock, collector)
    assert service.has_permission("u1", "abc123") is False
    with pytest.raises(PermissionDenied):
        service.require_permission("u1", "abc123")


def test_unlink(store, panel, clock, collector):
    service = _service(store, panel, clock, collector)
    issued = service.issue_challenge("u1", "abc123")
    service.adjudicate("u1", "abc123", issued.code)
    assert [r.resource_id for r in service.list_linked("u1")] == ["abc123"]

    service.unlink("u1", "abc123")
    assert service.list_linked("u1") == []
    with pytest.raises(PermissionDenied):
        service.unlink("u1", "abc123")


def test_file_mode_requires_credentials_to_issue(store, panel, clock, collector):
    service = _service(store, panel, clock, collector, mode=MODE_FILE)
    with pytest.raises(NotFound):
        service.issue_challenge("u1", "abc123")


def test_file_mode_accepts_matching_proof(store, panel, clock, collector, api_key):
    service = _service(store, panel, clock, collector, mode=MODE_FILE)
    service.credentials.submit_api_key("u1", api_key)
    issued = service.issue_challenge("u1", "abc123")
    panel.files["abc123"] = f'"{proof_line(issued.code, issued.token)}"\n'

    linked = service.adjudicate("u1", "abc123", issued.code)

    assert linked.resource_name == "Server abc123"
    assert panel.reads == [("abc123", service.proof_path)]
    assert service.has_permission("u1", "abc123")


def test_file_mode_rejects_wrong_proof(store, panel, clock, collector, api_key):
    service = _service(store, panel, clock, collector, mode=MODE_FILE)
    service.credentials.submit_api_key("u1", api_key)
    issued = service.issue_challenge("u1", "abc123")
    panel.files["abc123"] = proof_line(issued.code, "someone-elses-token")

    with pytest.raises(ProofMismatch):
        service.adjudicate("u1", "abc123", issued.code)
    assert not service.has_permission("u1", "abc123")
    assert store.list_challenges("u1", "abc123")[0].used is False


def test_file_mode_unreadable_proof(store, panel, clock, collector, api_key):
    service = _service(store, panel, clock, collector, mode=MODE_FILE)
    service.credentials.submit_api_key("u1", api_key)
    issued = service.issue_challenge("u1", "abc123")

    with pytest.raises(UpstreamUnavailable):
        service.adjudicate("u1", "abc123", issued.code)


def test_unknown_mode_rejected(store, panel, clock, collector):
    with pytest.raises(ValueError):
        _service(store, panel, clock, collector, mode="trust-me")
