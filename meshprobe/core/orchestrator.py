"""
Measurement session orchestration: submit, poll, render, record.
"""

from __future__ import annotations

import signal
import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional

from loguru import logger

from meshprobe.core.context import Context
from meshprobe.core.errors import (
    ApiError,
    AuthRefreshFailed,
    MeasurementFailed,
    MeasurementInterrupted,
    MeshProbeError,
    PollFailed,
    SubmissionFailed,
)
from meshprobe.core.locator import LocatorResolver
from meshprobe.core.models import (
    Measurement,
    MeasurementCreate,
    MeasurementStatus,
    ProbeMeasurement,
    SessionRecord,
)

# Consecutive failed polls tolerated before giving up.
MAX_POLL_FAILURES = 3

RenderCallback = Callable[[Measurement, bool], None]


class CancelToken:
    """Cooperative cancellation flag checked between polls."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds. Returns True if cancelled."""
        if timeout <= 0:
            return self._event.is_set()
        return self._event.wait(timeout)


@contextmanager
def interrupt_on_signals(cancel: CancelToken) -> Iterator[CancelToken]:
    """
    Cancel ``cancel`` on SIGINT/SIGTERM while the block runs.

    The handlers only set the token; a request in flight finishes or times
    out normally. Outside the main thread signals cannot be hooked and the
    token is yielded unchanged.
    """
    if threading.current_thread() is not threading.main_thread():
        yield cancel
        return

    def _handler(signum, frame):
        logger.info(f"Received signal {signum}, stopping measurement")
        cancel.cancel()

    previous = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        previous[sig] = signal.signal(sig, _handler)
    try:
        yield cancel
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def merge_results(previous: List[ProbeMeasurement], current: List[ProbeMeasurement]) -> List[ProbeMeasurement]:
    """Merge a poll into accumulated results without dropping any probe slot."""
    merged = list(current)
    if len(previous) > len(current):
        merged.extend(previous[len(current):])
    return merged


class SessionOrchestrator:
    """
    Drive one measurement from submission to a terminal state.

    ``render`` is called with ``(measurement, is_final)``: once per changed
    in-progress poll (interactive mode only) and exactly once at the end,
    whatever the outcome after submission.
    """

    def __init__(
        self,
        client,
        render: Optional[RenderCallback] = None,
        resolver: Optional[LocatorResolver] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.render = render or (lambda measurement, is_final: None)
        self.resolver = resolver
        self.clock = clock

    def run(
        self,
        ctx: Context,
        spec: MeasurementCreate,
        cancel: Optional[CancelToken] = None,
    ) -> Measurement:
        """
        Run a measurement and return it in its finished state.

        Raises:
            NoSuchSessionReference, NoSuchMeasurement, AmbiguousLocatorExpression:
                the locator could not be resolved; nothing was submitted.
            SubmissionFailed: the service rejected the measurement.
            MeasurementFailed, MeasurementInterrupted, PollFailed, AuthRefreshFailed:
                raised after the final render, with the partial measurement
                attached as ``error.measurement``.
        """
        cancel = cancel or CancelToken()
        request = self._prepare(ctx, spec)
        measurement_id = self._submit(request)

        measurement = Measurement(id=measurement_id, type=request.type, target=request.target)
        try:
            measurement = self._poll(ctx, measurement, cancel)
        except MeshProbeError as e:
            partial = e.measurement or measurement
            self._final_render(partial)
            e.measurement = partial
            raise

        self._final_render(measurement)
        ctx.history.append(SessionRecord.from_measurement(measurement))
        return measurement

    def _prepare(self, ctx: Context, spec: MeasurementCreate) -> MeasurementCreate:
        resolver = self.resolver or LocatorResolver(ctx.history, self.client)
        resolved = resolver.resolve(ctx.locator)
        locations, limit = resolved.to_locations(ctx.limit)
        return spec.model_copy(
            update={
                "locations": locations,
                "limit": limit,
                "in_progress_updates": not ctx.ci_mode,
            }
        )

    def _submit(self, request: MeasurementCreate) -> str:
        try:
            created = self.client.create_measurement(request)
        except ApiError as e:
            logger.error(f"Measurement submission failed: {e}")
            raise SubmissionFailed(f"failed to create measurement: {e}") from e
        return created.id

    def _poll(self, ctx: Context, measurement: Measurement, cancel: CancelToken) -> Measurement:
        failures = 0
        last_poll: Optional[float] = None

        while True:
            if last_poll is not None:
                remaining = ctx.api_min_interval - (self.clock() - last_poll)
                if cancel.wait(remaining):
                    raise MeasurementInterrupted("measurement interrupted", measurement)
            elif cancel.cancelled:
                raise MeasurementInterrupted("measurement interrupted", measurement)

            last_poll = self.clock()
            try:
                snapshot = self.client.get_measurement(measurement.id)
            except AuthRefreshFailed as e:
                e.measurement = measurement
                raise
            except ApiError as e:
                failures += 1
                logger.warning(f"Poll {failures}/{MAX_POLL_FAILURES} for {measurement.id} failed: {e}")
                if failures >= MAX_POLL_FAILURES:
                    raise PollFailed(
                        f"failed to get measurement {measurement.id}: {e}", measurement
                    ) from e
                continue
            failures = 0

            results = merge_results(measurement.results, snapshot.results)
            changed = results != measurement.results
            measurement = snapshot.model_copy(update={"results": results})

            if measurement.status == MeasurementStatus.FAILED:
                raise MeasurementFailed(f"measurement {measurement.id} failed", measurement)
            if measurement.status == MeasurementStatus.FINISHED:
                logger.info(f"Measurement {measurement.id} finished with {len(results)} result(s)")
                return measurement
            if changed and not ctx.ci_mode:
                self.render(measurement, False)

    def _final_render(self, measurement: Measurement) -> None:
        logger.debug(f"Final render of {measurement.id} ({measurement.status.value})")
        self.render(measurement, True)
