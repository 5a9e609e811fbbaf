"""
Tests for coordinator.py — the analysis state machine.

Covers:
  - remote matches → RESOLVED_WITH_MATCHES (Nike scenario)
  - zero matches → fallback with brand title (Kerastase scenario)
  - remote failure without text → generic title + error banner + Retry
  - duplicate start/retry while analyzing → one remote call
  - Retry clears result/selection/title before anything else is visible
  - Skip: manual entry, late result discarded, Retry after Skip
  - missing location: no remote call, hint, RESOLVED_EMPTY
  - select_match / none_of_these / dismiss_error
  - invariants: confidence range, non-empty title, suggestions vs state
"""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from coordinator import AnalysisCoordinator, AnalysisSnapshot
from fallback import GENERIC_TITLE, LocalFallbackEngine
from identification import AnalysisState, LocaleContext, RemoteMatch, RemoteQuery, RemoteResponse
from identifiers.base import (
    MalformedResponse,
    PreconditionMissing,
    RemoteIdentifier,
    RemoteTransportError,
)

US = LocaleContext("US", "USD", "en")
NO_LOCATION = LocaleContext(None)

NIKE = RemoteResponse(
    query=RemoteQuery(detected_text="NIKE AIR", detected_brand="Nike", guessed_category="Shoes"),
    matches=(RemoteMatch(name="Nike Air Max", image_url="https://img/nike.jpg", confidence=0.92),),
)
TWO_MATCHES = RemoteResponse(
    query=RemoteQuery(detected_text="Lego Technic 42115"),
    matches=(
        RemoteMatch(name="LEGO Technic Lamborghini", image_url="https://img/1.jpg", confidence=0.8),
        RemoteMatch(name="LEGO Technic Ferrari", image_url="https://img/2.jpg", confidence=0.6),
    ),
)
KERASTASE_EMPTY = RemoteResponse(
    query=RemoteQuery(detected_text="Kerastase Elixir Ultime 100ml", guessed_category="Beauty"),
    matches=(),
)


class FakeIdentifier(RemoteIdentifier):
    """Deterministic identifier. With gate set, every call waits until the gate opens."""

    name = "fake"

    def __init__(self, response=None, exc=None, gate: asyncio.Event = None):
        self.response = response
        self.exc = exc
        self.gate = gate
        self.calls = 0

    async def identify(self, photo, country_code, currency_code=None, language_code=None):
        self.calls += 1
        if not country_code:
            raise PreconditionMissing("no country")
        if self.gate is not None:
            await self.gate.wait()
        if self.exc is not None:
            raise self.exc
        return self.response

    async def _request(self, photo, country_code, currency_code, language_code):
        raise NotImplementedError


class Recorder:
    """Listener that keeps every snapshot it was handed."""

    def __init__(self):
        self.snapshots: list[AnalysisSnapshot] = []

    async def __call__(self, snapshot):
        self.snapshots.append(snapshot)

    @property
    def states(self):
        return [s.state for s in self.snapshots]


def make(identifier, **kwargs):
    recorder = Recorder()
    coordinator = AnalysisCoordinator(identifier, listener=recorder, **kwargs)
    return coordinator, recorder


def assert_invariants(snapshot: AnalysisSnapshot):
    if snapshot.state.is_terminal:
        assert snapshot.draft_title and snapshot.draft_title.strip()
    if snapshot.result is not None:
        assert 0.0 <= snapshot.result.confidence <= 1.0
        empty = len(snapshot.result.suggested_products) == 0
        assert empty == (snapshot.state in (AnalysisState.RESOLVED_EMPTY, AnalysisState.FAILED))


# ── Resolution paths ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestResolution:
    async def test_single_remote_match(self, photo):
        coordinator, recorder = make(FakeIdentifier(NIKE))
        snapshot = await coordinator.start(photo, US)

        assert snapshot.state is AnalysisState.RESOLVED_WITH_MATCHES
        assert snapshot.draft_title == "Nike Air Max"
        assert snapshot.draft_image_url == "https://img/nike.jpg"
        assert snapshot.selected_index == 0
        assert len(snapshot.result.suggested_products) == 1
        assert snapshot.result.confidence == 0.92
        assert snapshot.result.best_guess_category == "Shoes"
        assert snapshot.error is None
        assert recorder.states == [AnalysisState.ANALYZING, AnalysisState.RESOLVED_WITH_MATCHES]

    async def test_zero_matches_uses_brand_fallback(self, photo):
        coordinator, _ = make(FakeIdentifier(KERASTASE_EMPTY))
        snapshot = await coordinator.start(photo, US)

        assert snapshot.state is AnalysisState.RESOLVED_EMPTY
        assert snapshot.draft_title == "Kerastase (detected) - Please specify product"
        assert snapshot.result.confidence == 0.5
        assert snapshot.result.suggested_products == ()
        assert snapshot.result.best_guess_category == "Beauty"
        assert snapshot.error is None

    async def test_remote_failure_without_text_is_generic(self, photo):
        coordinator, _ = make(FakeIdentifier(exc=RemoteTransportError("HTTP 502")))
        snapshot = await coordinator.start(photo, US)

        assert snapshot.state is AnalysisState.FAILED
        assert snapshot.draft_title == GENERIC_TITLE
        assert snapshot.result.confidence == 0.0
        assert isinstance(snapshot.error, RemoteTransportError)
        assert snapshot.can_retry

    async def test_malformed_with_text_uses_that_text(self, photo):
        error = MalformedResponse("bad matches", detected_text="Dyson V15 Detect")
        coordinator, _ = make(FakeIdentifier(exc=error))
        snapshot = await coordinator.start(photo, US)

        assert snapshot.state is AnalysisState.FAILED
        assert snapshot.draft_title == "Dyson (detected) - Please specify product"
        assert snapshot.error is error

    async def test_untyped_exception_becomes_transport_error(self, photo):
        coordinator, _ = make(FakeIdentifier(exc=OSError("socket closed")))
        snapshot = await coordinator.start(photo, US)
        assert snapshot.state is AnalysisState.FAILED
        assert isinstance(snapshot.error, RemoteTransportError)

    async def test_no_identifier_configured(self, photo):
        coordinator, _ = make(None)
        snapshot = await coordinator.start(photo, US)
        assert snapshot.state is AnalysisState.FAILED
        assert isinstance(snapshot.error, RemoteTransportError)
        assert snapshot.draft_title == GENERIC_TITLE

    async def test_missing_location_skips_remote(self, photo):
        identifier = FakeIdentifier(NIKE)
        coordinator, _ = make(identifier)
        snapshot = await coordinator.start(photo, NO_LOCATION)

        assert identifier.calls == 0
        assert snapshot.state is AnalysisState.RESOLVED_EMPTY
        assert snapshot.location_required
        assert snapshot.draft_title == GENERIC_TITLE

    async def test_fallback_crash_still_resolves_generic(self, photo):
        fallback = LocalFallbackEngine()
        fallback.run_fallback = AsyncMock(side_effect=RuntimeError("boom"))
        coordinator, _ = make(FakeIdentifier(KERASTASE_EMPTY), fallback=fallback)
        snapshot = await coordinator.start(photo, US)

        assert snapshot.state is AnalysisState.RESOLVED_EMPTY
        assert snapshot.draft_title == GENERIC_TITLE
        assert snapshot.result.confidence == 0.0

    @pytest.mark.parametrize("identifier", [
        FakeIdentifier(NIKE),
        FakeIdentifier(TWO_MATCHES),
        FakeIdentifier(KERASTASE_EMPTY),
        FakeIdentifier(exc=RemoteTransportError("down")),
        FakeIdentifier(exc=MalformedResponse("junk", detected_text="the 12 ml")),
        None,
    ])
    async def test_invariants_hold_for_every_snapshot(self, photo, identifier):
        coordinator, recorder = make(identifier)
        await coordinator.start(photo, US)
        await coordinator.retry()
        for snapshot in recorder.snapshots:
            assert_invariants(snapshot)

    async def test_idempotent_results(self, photo):
        first, _ = make(FakeIdentifier(TWO_MATCHES))
        second, _ = make(FakeIdentifier(TWO_MATCHES))
        a = await first.start(photo, US)
        b = await second.start(photo, US)
        assert a.result == b.result
        assert a.result.to_dict() == b.result.to_dict()

    async def test_listener_errors_do_not_break_analysis(self, photo):
        listener = AsyncMock(side_effect=RuntimeError("telegram down"))
        coordinator = AnalysisCoordinator(FakeIdentifier(NIKE), listener=listener)
        snapshot = await coordinator.start(photo, US)
        assert snapshot.state is AnalysisState.RESOLVED_WITH_MATCHES
        assert listener.await_count == 2


# ── Single flight ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestSingleFlight:
    async def test_duplicate_requests_make_one_remote_call(self, photo):
        gate = asyncio.Event()
        identifier = FakeIdentifier(NIKE, gate=gate)
        coordinator, _ = make(identifier)

        first = asyncio.create_task(coordinator.start(photo, US))
        await asyncio.sleep(0)
        second = await coordinator.start(photo, US)
        third = await coordinator.retry()
        assert second.state is AnalysisState.ANALYZING
        assert third.state is AnalysisState.ANALYZING

        gate.set()
        final = await first
        assert identifier.calls == 1
        assert final.state is AnalysisState.RESOLVED_WITH_MATCHES

    async def test_concurrent_starts_before_any_await(self, photo):
        gate = asyncio.Event()
        identifier = FakeIdentifier(NIKE, gate=gate)
        coordinator, _ = make(identifier)

        tasks = [asyncio.create_task(coordinator.start(photo, US)) for _ in range(3)]
        await asyncio.sleep(0)
        gate.set()
        await asyncio.gather(*tasks)
        assert identifier.calls == 1

    async def test_start_after_resolution_is_ignored(self, photo):
        identifier = FakeIdentifier(NIKE)
        coordinator, _ = make(identifier)
        await coordinator.start(photo, US)
        await coordinator.start(photo, US)
        assert identifier.calls == 1

    async def test_retry_before_start_is_ignored(self):
        coordinator, recorder = make(FakeIdentifier(NIKE))
        snapshot = await coordinator.retry()
        assert snapshot.state is AnalysisState.IDLE
        assert recorder.snapshots == []


# ── Retry ─────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestRetry:
    async def test_retry_after_failure_clears_everything_first(self, photo):
        identifier = FakeIdentifier(exc=RemoteTransportError("down"))
        coordinator, recorder = make(identifier)
        await coordinator.start(photo, US)

        identifier.exc = None
        identifier.response = NIKE
        recorder.snapshots.clear()
        snapshot = await coordinator.retry()

        analyzing = recorder.snapshots[0]
        assert analyzing.state is AnalysisState.ANALYZING
        assert analyzing.result is None
        assert analyzing.error is None
        assert analyzing.selected_index is None
        assert analyzing.draft_title is None
        assert analyzing.attempt == 2
        assert snapshot.state is AnalysisState.RESOLVED_WITH_MATCHES
        assert identifier.calls == 2

    async def test_retry_uses_new_locale(self, photo):
        identifier = FakeIdentifier(NIKE)
        coordinator, _ = make(identifier)
        first = await coordinator.start(photo, NO_LOCATION)
        assert first.location_required

        snapshot = await coordinator.retry(US)
        assert identifier.calls == 1
        assert snapshot.state is AnalysisState.RESOLVED_WITH_MATCHES

    async def test_retry_keeps_locale_when_not_given(self, photo):
        identifier = FakeIdentifier(NIKE)
        coordinator, _ = make(identifier)
        await coordinator.start(photo, US)
        await coordinator.retry()
        assert identifier.calls == 2


# ── Skip ──────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestSkip:
    async def test_skip_goes_to_manual_entry_and_discards_late_result(self, photo):
        gate = asyncio.Event()
        coordinator, recorder = make(FakeIdentifier(NIKE, gate=gate))

        task = asyncio.create_task(coordinator.start(photo, US))
        await asyncio.sleep(0)
        assert coordinator.snapshot.can_skip

        skipped = await coordinator.skip()
        assert skipped.state is AnalysisState.SKIPPED
        assert skipped.result is None
        assert skipped.draft_title == GENERIC_TITLE

        gate.set()
        final = await task
        assert final.state is AnalysisState.SKIPPED
        assert AnalysisState.RESOLVED_WITH_MATCHES not in recorder.states

    async def test_skip_ignored_when_not_analyzing(self, photo):
        coordinator, _ = make(FakeIdentifier(NIKE))
        assert (await coordinator.skip()).state is AnalysisState.IDLE
        await coordinator.start(photo, US)
        assert (await coordinator.skip()).state is AnalysisState.RESOLVED_WITH_MATCHES

    async def test_retry_after_skip_while_old_call_in_flight(self, photo):
        slow_gate = asyncio.Event()
        identifier = FakeIdentifier(KERASTASE_EMPTY, gate=slow_gate)
        coordinator, _ = make(identifier)

        old = asyncio.create_task(coordinator.start(photo, US))
        await asyncio.sleep(0)
        await coordinator.skip()

        # The retried call answers immediately with a match
        identifier.gate = None
        identifier.response = NIKE
        retried = await coordinator.retry()
        assert retried.state is AnalysisState.RESOLVED_WITH_MATCHES

        slow_gate.set()
        await old
        assert coordinator.snapshot.state is AnalysisState.RESOLVED_WITH_MATCHES
        assert coordinator.snapshot.draft_title == "Nike Air Max"
        assert coordinator.snapshot.attempt == 2

    async def test_cancelled_attempt_resolves_failed(self, photo):
        gate = asyncio.Event()
        coordinator, recorder = make(FakeIdentifier(NIKE, gate=gate))
        task = asyncio.create_task(coordinator.start(photo, US))
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        snapshot = coordinator.snapshot
        assert snapshot.state is AnalysisState.FAILED
        assert snapshot.draft_title == GENERIC_TITLE
        assert recorder.states[-1] is AnalysisState.FAILED
        assert recorder.snapshots[-1].draft_title == GENERIC_TITLE


# ── User choices ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestUserChoices:
    async def test_select_match(self, photo):
        coordinator, _ = make(FakeIdentifier(TWO_MATCHES))
        await coordinator.start(photo, US)
        snapshot = await coordinator.select_match(1)
        assert snapshot.selected_index == 1
        assert snapshot.draft_title == "LEGO Technic Ferrari"
        assert snapshot.draft_image_url == "https://img/2.jpg"

    async def test_select_out_of_range_ignored(self, photo):
        coordinator, _ = make(FakeIdentifier(TWO_MATCHES))
        await coordinator.start(photo, US)
        snapshot = await coordinator.select_match(9)
        assert snapshot.selected_index == 0
        assert snapshot.draft_title == "LEGO Technic Lamborghini"

    async def test_select_ignored_without_matches(self, photo):
        coordinator, _ = make(FakeIdentifier(KERASTASE_EMPTY))
        await coordinator.start(photo, US)
        assert (await coordinator.select_match(0)).selected_index is None

    async def test_none_of_these_uses_local_title(self, photo):
        coordinator, _ = make(FakeIdentifier(TWO_MATCHES))
        await coordinator.start(photo, US)
        snapshot = await coordinator.none_of_these()

        assert snapshot.state is AnalysisState.RESOLVED_WITH_MATCHES
        assert snapshot.selected_index is None
        assert snapshot.draft_title == "Lego (detected) - Please specify product"
        assert snapshot.draft_image_url is None
        assert len(snapshot.result.suggested_products) == 2

    async def test_select_after_none_of_these(self, photo):
        coordinator, _ = make(FakeIdentifier(TWO_MATCHES))
        await coordinator.start(photo, US)
        await coordinator.none_of_these()
        snapshot = await coordinator.select_match(0)
        assert snapshot.draft_title == "LEGO Technic Lamborghini"

    async def test_dismiss_error_keeps_state(self, photo):
        coordinator, _ = make(FakeIdentifier(exc=RemoteTransportError("down")))
        await coordinator.start(photo, US)
        snapshot = await coordinator.dismiss_error()
        assert snapshot.error is None
        assert snapshot.state is AnalysisState.FAILED
        assert snapshot.can_retry

    async def test_dismiss_without_error_is_noop(self, photo):
        coordinator, recorder = make(FakeIdentifier(NIKE))
        await coordinator.start(photo, US)
        count = len(recorder.snapshots)
        await coordinator.dismiss_error()
        assert len(recorder.snapshots) == count
