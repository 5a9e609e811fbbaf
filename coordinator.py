"""
coordinator.py — runs and tracks the analysis of one photo.

State machine:

  IDLE ──start()──▶ ANALYZING ──▶ RESOLVED_WITH_MATCHES   (remote found ≥1 match)
                      │     ├──▶ RESOLVED_EMPTY          (0 matches, or no location)
                      │     └──▶ FAILED                  (remote raised; fallback still ran)
                      └─skip()─▶ SKIPPED
  any terminal state ──retry()──▶ ANALYZING

Single-flight: the only way into ANALYZING is _begin_attempt(), which checks
and sets the state with no await in between, so on the event loop it can't be
interleaved with another start()/retry(). While ANALYZING every further
start()/retry() is a no-op.

Every attempt gets a new number. A completion whose number is stale, or that
lands after the user pressed Skip, is dropped instead of overwriting state.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from aggregator import ResultAggregator
from fallback import GENERIC_TITLE, FallbackOutcome, LocalFallbackEngine, generic_outcome
from identification import AnalysisState, IdentificationResult, LocaleContext, RemoteQuery
from identifiers.base import (
    IdentificationError,
    PreconditionMissing,
    RemoteIdentifier,
    RemoteTransportError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnalysisSnapshot:
    """Immutable view of the coordinator handed to the presentation layer."""
    state: AnalysisState
    result: Optional[IdentificationResult] = None
    error: Optional[IdentificationError] = None     # banner / hint only, never blocking
    selected_index: Optional[int] = None
    draft_title: Optional[str] = None
    draft_image_url: Optional[str] = None
    attempt: int = 0

    @property
    def location_required(self) -> bool:
        return isinstance(self.error, PreconditionMissing)

    @property
    def can_retry(self) -> bool:
        return self.state.is_terminal

    @property
    def can_skip(self) -> bool:
        return self.state is AnalysisState.ANALYZING


Listener = Callable[[AnalysisSnapshot], Awaitable[None]]


class AnalysisCoordinator:

    def __init__(
        self,
        identifier: Optional[RemoteIdentifier],
        fallback: Optional[LocalFallbackEngine] = None,
        aggregator: Optional[ResultAggregator] = None,
        listener: Optional[Listener] = None,
    ) -> None:
        self._identifier = identifier
        self._fallback = fallback or LocalFallbackEngine()
        self._aggregator = aggregator or ResultAggregator()
        self._listener = listener

        self._state = AnalysisState.IDLE
        self._result: Optional[IdentificationResult] = None
        self._error: Optional[IdentificationError] = None
        self._selected_index: Optional[int] = None
        self._draft_title: Optional[str] = None
        self._draft_image_url: Optional[str] = None
        self._query: Optional[RemoteQuery] = None
        self._attempt = 0

        self._photo: Optional[bytes] = None
        self._locale: Optional[LocaleContext] = None

    # ── Read side ─────────────────────────────────────────────────────────────

    @property
    def state(self) -> AnalysisState:
        return self._state

    @property
    def snapshot(self) -> AnalysisSnapshot:
        return AnalysisSnapshot(
            state=self._state,
            result=self._result,
            error=self._error,
            selected_index=self._selected_index,
            draft_title=self._draft_title,
            draft_image_url=self._draft_image_url,
            attempt=self._attempt,
        )

    # ── Entry points ──────────────────────────────────────────────────────────

    async def start(self, photo: bytes, locale: LocaleContext) -> AnalysisSnapshot:
        """First analysis of this photo. Ignored unless IDLE."""
        if self._state is not AnalysisState.IDLE:
            logger.debug("start() ignored in state %s", self._state.value)
            return self.snapshot
        self._photo = photo
        self._locale = locale
        return await self._run()

    async def retry(self, locale: Optional[LocaleContext] = None) -> AnalysisSnapshot:
        """
        Re-run on the same photo. Pass locale when the user changed it since.
        Ignored while ANALYZING or before start().
        """
        if self._photo is None or not self._state.is_terminal:
            logger.debug("retry() ignored in state %s", self._state.value)
            return self.snapshot
        if locale is not None:
            self._locale = locale
        return await self._run()

    async def skip(self) -> AnalysisSnapshot:
        """Give up waiting and go to manual entry. The in-flight call is left running."""
        if self._state is not AnalysisState.ANALYZING:
            return self.snapshot
        self._state = AnalysisState.SKIPPED
        self._result = None
        self._error = None
        self._selected_index = None
        self._draft_title = GENERIC_TITLE
        self._draft_image_url = None
        logger.info("Attempt %d skipped by user", self._attempt)
        await self._notify()
        return self.snapshot

    async def select_match(self, index: int) -> AnalysisSnapshot:
        if self._state is not AnalysisState.RESOLVED_WITH_MATCHES or self._result is None:
            return self.snapshot
        if not 0 <= index < len(self._result.suggested_products):
            logger.warning("select_match(%d) out of range (%d matches)",
                           index, len(self._result.suggested_products))
            return self.snapshot
        self._selected_index = index
        self._draft_title, self._draft_image_url = self._aggregator.seed_draft(self._result, index)
        await self._notify()
        return self.snapshot

    async def none_of_these(self) -> AnalysisSnapshot:
        """Reject every match: clear the selection and pre-fill a locally derived title."""
        if self._state is not AnalysisState.RESOLVED_WITH_MATCHES:
            return self.snapshot
        attempt = self._attempt
        detected_text = self._query.detected_text if self._query else None
        outcome = await self._safe_fallback(detected_text)
        if attempt != self._attempt or self._state is not AnalysisState.RESOLVED_WITH_MATCHES:
            return self.snapshot
        self._selected_index = None
        self._draft_title, self._draft_image_url = self._aggregator.seed_draft(
            self._result, None, outcome.title,
        )
        await self._notify()
        return self.snapshot

    async def dismiss_error(self) -> AnalysisSnapshot:
        if self._error is None or self._state is AnalysisState.ANALYZING:
            return self.snapshot
        self._error = None
        await self._notify()
        return self.snapshot

    # ── Attempt lifecycle ─────────────────────────────────────────────────────

    def _begin_attempt(self) -> int:
        # Must stay synchronous: this is the check-and-set of the single-flight guard.
        self._attempt += 1
        self._state = AnalysisState.ANALYZING
        self._result = None
        self._error = None
        self._selected_index = None
        self._draft_title = None
        self._draft_image_url = None
        self._query = None
        logger.info("Attempt %d: analyzing", self._attempt)
        return self._attempt

    async def _run(self) -> AnalysisSnapshot:
        attempt = self._begin_attempt()
        try:
            await self._notify()
            await self._analyze(attempt)
        except asyncio.CancelledError:
            if self._attempt == attempt and self._state is AnalysisState.ANALYZING:
                logger.info("Attempt %d cancelled while analyzing", attempt)
                outcome = generic_outcome()
                self._apply(
                    AnalysisState.FAILED, outcome.result,
                    RemoteTransportError("Analysis interrupted"), None, outcome.title,
                )
                # The listener must still see the terminal state
                await asyncio.shield(self._notify())
            raise
        return self.snapshot

    async def _analyze(self, attempt: int) -> None:
        try:
            await self._identify(attempt)
        except Exception as exc:
            logger.error("Attempt %d crashed, using generic result: %s", attempt, exc, exc_info=True)
            outcome = generic_outcome()
            await self._resolve(
                attempt, AnalysisState.FAILED, outcome.result,
                error=RemoteTransportError(str(exc)), fallback_title=outcome.title,
            )

    async def _identify(self, attempt: int) -> None:
        locale = self._locale
        if not locale or not locale.country_code:
            logger.info("Attempt %d: no location configured, skipping remote call", attempt)
            await self._resolve_with_fallback(
                attempt, AnalysisState.RESOLVED_EMPTY,
                PreconditionMissing("Location is not configured"), None,
            )
            return

        try:
            if self._identifier is None:
                raise RemoteTransportError("No remote identifier configured")
            response = await self._identifier.identify(
                self._photo, locale.country_code, locale.currency_code, locale.language_code,
            )
        except PreconditionMissing as exc:
            await self._resolve_with_fallback(attempt, AnalysisState.RESOLVED_EMPTY, exc, None)
            return
        except Exception as exc:
            error = exc if isinstance(exc, IdentificationError) else RemoteTransportError(str(exc))
            logger.warning("Attempt %d: remote identification failed: %s", attempt, error)
            await self._resolve_with_fallback(
                attempt, AnalysisState.FAILED, error, error.detected_text,
            )
            return

        if response.matches:
            await self._resolve(
                attempt, AnalysisState.RESOLVED_WITH_MATCHES,
                self._aggregator.from_remote(response), selected_index=0,
                query=response.query,
            )
        else:
            await self._resolve_with_fallback(
                attempt, AnalysisState.RESOLVED_EMPTY, None,
                response.query.detected_text, response.query.guessed_category,
            )

    async def _resolve_with_fallback(
        self,
        attempt: int,
        state: AnalysisState,
        error: Optional[IdentificationError],
        detected_text: Optional[str],
        category: Optional[str] = None,
    ) -> None:
        outcome = await self._safe_fallback(detected_text)
        await self._resolve(
            attempt, state, self._aggregator.from_fallback(outcome, category),
            error=error, fallback_title=outcome.title,
        )

    async def _safe_fallback(self, detected_text: Optional[str]) -> FallbackOutcome:
        try:
            return await self._fallback.run_fallback(self._photo, detected_text)
        except Exception as exc:
            logger.error("Local fallback failed, using generic result: %s", exc, exc_info=True)
            return generic_outcome()

    async def _resolve(
        self,
        attempt: int,
        state: AnalysisState,
        result: IdentificationResult,
        error: Optional[IdentificationError] = None,
        selected_index: Optional[int] = None,
        fallback_title: Optional[str] = None,
        query: Optional[RemoteQuery] = None,
    ) -> bool:
        if attempt != self._attempt or self._state is not AnalysisState.ANALYZING:
            logger.info(
                "Discarding late result of attempt %d (current attempt %d, state %s)",
                attempt, self._attempt, self._state.value,
            )
            return False
        self._apply(state, result, error, selected_index, fallback_title)
        self._query = query
        await self._notify()
        return True

    def _apply(
        self,
        state: AnalysisState,
        result: IdentificationResult,
        error: Optional[IdentificationError],
        selected_index: Optional[int],
        fallback_title: Optional[str],
    ) -> None:
        self._state = state
        self._result = result
        self._error = error
        self._selected_index = selected_index
        self._draft_title, self._draft_image_url = self._aggregator.seed_draft(
            result, selected_index, fallback_title,
        )
        logger.info(
            "Attempt %d: %s (%d suggestion(s), title=%r)",
            self._attempt, state.value, len(result.suggested_products), self._draft_title,
        )

    async def _notify(self) -> None:
        if self._listener is None:
            return
        try:
            await self._listener(self.snapshot)
        except Exception as exc:
            logger.warning("Analysis listener failed: %s", exc)
