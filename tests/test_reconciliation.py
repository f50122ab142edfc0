"""Tests for restoring admin messages of pending requests after a restart."""
from __future__ import annotations

import pytest

from pearl_gate.models import Decision
from pearl_gate.service import LinkService
from pearl_gate.state import REQUESTS


class FakePresenter:
    def __init__(self, live=(), fail_for=()):
        self.live = set(live)
        self.fail_for = set(fail_for)
        self.rendered = []
        self.checked = []
        self._next_ref = 1000

    async def render(self, request):
        if request.id in self.fail_for:
            raise RuntimeError("channel unavailable")
        self._next_ref += 1
        self.rendered.append(request.id)
        self.live.add(self._next_ref)
        return self._next_ref

    async def is_live(self, presentation_ref):
        self.checked.append(presentation_ref)
        return presentation_ref in self.live


def _submit(service, ign):
    return service.create_request("100", "alice", "100", "alice", ign)


@pytest.mark.asyncio
async def test_unrendered_pending_request_is_rendered_once(service, store):
    request = _submit(service, "Notch")
    presenter = FakePresenter()

    restarted = LinkService(store)
    assert await restarted.reconcile_presentations(presenter) == 1
    assert presenter.rendered == [request.id]
    assert store.load(REQUESTS)[0].presentation_ref == 1001

    # A second pass finds the artifact live and sends nothing new.
    assert await restarted.reconcile_presentations(presenter) == 0
    assert presenter.rendered == [request.id]


@pytest.mark.asyncio
async def test_live_presentation_is_not_rerendered(service, store):
    request = _submit(service, "Notch")
    service.attach_presentation(request.id, 42)
    presenter = FakePresenter(live={42})

    assert await LinkService(store).reconcile_presentations(presenter) == 0
    assert presenter.rendered == []
    assert presenter.checked == [42]


@pytest.mark.asyncio
async def test_deleted_presentation_is_replaced(service, store):
    request = _submit(service, "Notch")
    service.attach_presentation(request.id, 42)
    presenter = FakePresenter()

    restarted = LinkService(store)
    assert await restarted.reconcile_presentations(presenter) == 1
    assert restarted.get_request(request.id).presentation_ref == 1001


@pytest.mark.asyncio
async def test_resolved_requests_are_ignored(service):
    request = _submit(service, "Notch")
    service.resolve(request.id, "900", Decision.APPROVE, True)
    presenter = FakePresenter()

    assert await service.reconcile_presentations(presenter) == 0
    assert presenter.rendered == []
    assert presenter.checked == []


@pytest.mark.asyncio
async def test_render_failure_keeps_request_eligible(service, caplog):
    broken = _submit(service, "Notch")
    healthy = _submit(service, "Jeb")
    presenter = FakePresenter(fail_for={broken.id})

    assert await service.reconcile_presentations(presenter) == 1
    assert service.get_request(healthy.id).presentation_ref == 1001
    assert [r.id for r in service.list_pending_without_presentation()] == [broken.id]
    assert any("Failed to restore" in record.message for record in caplog.records)


@pytest.mark.asyncio
async def test_stale_reference_is_left_to_reconciliation(service):
    request = _submit(service, "Notch")
    service.attach_presentation(request.id, 42)

    assert service.list_pending_without_presentation() == []
    assert await service.reconcile_presentations(FakePresenter()) == 1
    assert service.get_request(request.id).presentation_ref == 1001
