"""Tests for the link request lifecycle."""
from __future__ import annotations

import threading

import pytest

from pearl_gate.models import Decision, RequestStatus
from pearl_gate.service import (
    AlreadyResolved,
    Forbidden,
    LinkService,
    NotFound,
    NotLinked,
    Unauthorized,
    ValidationError,
)
from pearl_gate.state import ACCOUNTS, REQUESTS


def _submit(service, ign="Notch", requester="100", target=None):
    target = target or requester
    return service.create_request(requester, f"user{requester}", target, f"user{target}", ign)


def test_create_request_starts_pending_and_persists(service, store):
    request = _submit(service, ign="  Notch  ")

    assert request.status is RequestStatus.PENDING
    assert request.ign == "Notch"
    assert request.target_id == "100"
    assert request.presentation_ref is None
    assert [r.id for r in store.load(REQUESTS)] == [request.id]


@pytest.mark.parametrize("ign", ["", "   ", "\t\n"])
def test_blank_ign_is_rejected_without_persisting(service, store, ign):
    with pytest.raises(ValidationError):
        _submit(service, ign=ign)
    assert store.load(REQUESTS) == []
    assert service.pending_requests() == []


def test_request_ids_are_unique_within_the_same_millisecond(service, monkeypatch):
    monkeypatch.setattr("pearl_gate.service.time.time", lambda: 1700000000.0)
    ids = {_submit(service, ign=f"Player{i}").id for i in range(50)}
    assert len(ids) == 50


def test_request_id_generation_retries_on_collision(service, monkeypatch):
    tokens = iter(["abcd1234", "abcd1234", "feedface"])
    monkeypatch.setattr("pearl_gate.service.time.time", lambda: 1700000000.0)
    monkeypatch.setattr("pearl_gate.service.secrets.token_hex", lambda _n: next(tokens))

    first = _submit(service)
    second = _submit(service, ign="Jeb")
    assert first.id == "1700000000000-abcd1234"
    assert second.id == "1700000000000-feedface"


@pytest.mark.parametrize(
    "first,second",
    [
        (Decision.APPROVE, Decision.APPROVE),
        (Decision.APPROVE, Decision.REJECT),
        (Decision.REJECT, Decision.APPROVE),
        (Decision.REJECT, Decision.REJECT),
    ],
)
def test_second_resolution_reports_prior_outcome(service, first, second):
    request = _submit(service)
    service.resolve(request.id, "900", first, True)

    with pytest.raises(AlreadyResolved) as excinfo:
        service.resolve(request.id, "901", second, True)
    assert excinfo.value.request.status is first.status
    assert excinfo.value.request.resolved_by == "900"
    assert first.status.value in str(excinfo.value)


def test_unknown_request_is_not_found(service):
    with pytest.raises(NotFound):
        service.resolve("nope", "900", Decision.APPROVE, True)


def test_unauthorized_resolver_leaves_request_pending(service, store):
    request = _submit(service)
    with pytest.raises(Unauthorized):
        service.resolve(request.id, "555", Decision.APPROVE, False)

    assert service.get_request(request.id).status is RequestStatus.PENDING
    assert store.load(ACCOUNTS) == {}


def test_approval_links_ign_only_to_target(service, store):
    request = _submit(service, requester="100", target="200")
    resolved = service.resolve(request.id, "900", Decision.APPROVE, True)

    assert resolved.status is RequestStatus.APPROVED
    assert resolved.resolved_by == "900"
    assert resolved.resolved_at is not None
    assert service.is_ign_linked_to("200", "Notch")
    assert not service.is_ign_linked_to("100", "Notch")
    assert not service.is_ign_linked_to("300", "Notch")

    persisted = store.load(ACCOUNTS)
    assert persisted["200"].igns == ["Notch"]
    assert persisted["200"].label == "user200"
    assert store.load(REQUESTS)[0].status is RequestStatus.APPROVED


def test_ign_lookup_is_case_sensitive(service):
    request = _submit(service)
    service.resolve(request.id, "900", Decision.APPROVE, True)

    assert service.is_ign_linked_to("100", "Notch")
    assert not service.is_ign_linked_to("100", "notch")
    assert not service.is_ign_linked_to("100", "Notch ")


def test_approving_same_ign_twice_keeps_single_entry(service, store):
    for _ in range(2):
        request = _submit(service)
        service.resolve(request.id, "900", Decision.APPROVE, True)

    assert service.get_account("100").igns == ["Notch"]
    assert store.load(ACCOUNTS)["100"].igns == ["Notch"]


def test_rejection_does_not_touch_accounts(service, store):
    request = _submit(service)
    resolved = service.resolve(request.id, "900", Decision.REJECT, True)

    assert resolved.status is RequestStatus.REJECTED
    assert service.get_account("100") is None
    assert store.load(ACCOUNTS) == {}


def test_second_admin_cannot_change_approved_request(service, store):
    request = _submit(service)
    service.resolve(request.id, "900", Decision.APPROVE, True)
    before = store.path_for(ACCOUNTS).read_text(encoding="utf-8")

    with pytest.raises(AlreadyResolved):
        service.resolve(request.id, "901", Decision.REJECT, True)
    assert store.path_for(ACCOUNTS).read_text(encoding="utf-8") == before
    assert service.get_request(request.id).resolved_by == "900"


def test_concurrent_resolutions_yield_one_success(service):
    request = _submit(service)
    barrier = threading.Barrier(2)
    outcomes = []

    def _worker(decision, resolver):
        barrier.wait()
        try:
            service.resolve(request.id, resolver, decision, True)
            outcomes.append("ok")
        except AlreadyResolved:
            outcomes.append("already")

    threads = [
        threading.Thread(target=_worker, args=(Decision.APPROVE, "900")),
        threading.Thread(target=_worker, args=(Decision.APPROVE, "901")),
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes) == ["already", "ok"]
    assert service.get_account("100").igns == ["Notch"]


def test_state_survives_restart(service, store):
    approved = _submit(service)
    service.resolve(approved.id, "900", Decision.APPROVE, True)
    pending = _submit(service, ign="Jeb")
    service.attach_presentation(pending.id, 77)

    restarted = LinkService(store)
    assert restarted.is_ign_linked_to("100", "Notch")
    assert [r.id for r in restarted.pending_requests()] == [pending.id]
    assert restarted.get_request(pending.id).presentation_ref == 77
    assert restarted.list_pending_without_presentation() == []


def test_list_pending_without_presentation(service):
    rendered = _submit(service)
    service.attach_presentation(rendered.id, 11)
    unrendered = _submit(service, ign="Jeb")
    resolved = _submit(service, ign="Dinnerbone")
    service.resolve(resolved.id, "900", Decision.REJECT, True)

    assert [r.id for r in service.list_pending_without_presentation()] == [unrendered.id]


def test_attach_presentation_refuses_terminal_request(service):
    request = _submit(service)
    service.resolve(request.id, "900", Decision.REJECT, True)
    with pytest.raises(AlreadyResolved):
        service.attach_presentation(request.id, 12)
    assert service.get_request(request.id).presentation_ref is None


def test_write_failure_keeps_memory_ahead_of_disk(service, store, monkeypatch, caplog):
    monkeypatch.setattr(store, "save", lambda kind, collection: False)
    request = _submit(service)

    assert service.get_request(request.id) is request
    assert any("ahead of disk" in record.message for record in caplog.records)


def test_teleport_for_own_linked_ign(service):
    request = _submit(service)
    service.resolve(request.id, "900", Decision.APPROVE, True)

    assert service.request_teleport("100", False, "100", " Notch ") == ".tp instapearl Notch"


def test_teleport_for_other_account_requires_admin(service):
    request = _submit(service)
    service.resolve(request.id, "900", Decision.APPROVE, True)

    with pytest.raises(Forbidden):
        service.request_teleport("555", False, "100", "Notch")
    assert service.request_teleport("555", True, "100", "Notch") == ".tp instapearl Notch"


def test_teleport_requires_linked_ign(service):
    pending = _submit(service)
    with pytest.raises(NotLinked):
        service.request_teleport("100", False, "100", "Notch")
    service.resolve(pending.id, "900", Decision.APPROVE, True)
    with pytest.raises(NotLinked):
        service.request_teleport("100", True, "100", "Jeb")


def test_custom_teleport_command(store):
    service = LinkService(store, teleport_command="/tp {ign} spawn")
    request = _submit(service)
    service.resolve(request.id, "900", Decision.APPROVE, True)
    assert service.request_teleport("100", False, "100", "Notch") == "/tp Notch spawn"
