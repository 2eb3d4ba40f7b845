"""Shared fixtures for meshprobe tests."""
from typing import List, Optional

import pytest

from meshprobe.core.models import (
    Measurement,
    MeasurementStatus,
    ProbeDetails,
    ProbeMeasurement,
    ProbeResult,
)
from meshprobe.core.orchestrator import CancelToken

MEASUREMENT_ID_1 = "nzGzfAGL7sZfUs3c"
MEASUREMENT_ID_2 = "A2ovR0jjGFyDZ3OM"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingCancel(CancelToken):
    """CancelToken that never sleeps and records requested waits."""

    def __init__(self, cancel_on_wait: Optional[int] = None):
        super().__init__()
        self.waits: List[float] = []
        self.cancel_on_wait = cancel_on_wait

    def wait(self, timeout: float) -> bool:
        self.waits.append(timeout)
        if self.cancel_on_wait is not None and len(self.waits) >= self.cancel_on_wait:
            self.cancel()
        return self.cancelled


def make_probe(city: str, country: str, continent: str, asn: int, network: str, state=None) -> ProbeDetails:
    return ProbeDetails(
        continent=continent,
        country=country,
        city=city,
        state=state,
        asn=asn,
        network=network,
    )


@pytest.fixture
def berlin() -> ProbeDetails:
    return make_probe("Berlin", "DE", "EU", 123, "Network 1")


@pytest.fixture
def new_york() -> ProbeDetails:
    return make_probe("New York", "US", "NA", 567, "Network 2", state="NY")


@pytest.fixture
def tokyo() -> ProbeDetails:
    return make_probe("Tokyo", "JP", "AS", 2516, "KDDI")


@pytest.fixture
def sydney() -> ProbeDetails:
    return make_probe("Sydney", "AU", "OC", 1221, "Telstra")


def make_measurement(
    probes: List[ProbeDetails],
    status: MeasurementStatus = MeasurementStatus.FINISHED,
    measurement_id: str = MEASUREMENT_ID_1,
    outputs: Optional[List[str]] = None,
) -> Measurement:
    outputs = outputs or [f"output {i + 1}" for i in range(len(probes))]
    return Measurement(
        id=measurement_id,
        type="ping",
        status=status,
        target="example.com",
        probes_count=len(probes),
        results=[
            ProbeMeasurement(probe=probe, result=ProbeResult(raw_output=output))
            for probe, output in zip(probes, outputs)
        ],
    )


@pytest.fixture
def measurement_factory():
    """Build measurements from probe lists."""
    return make_measurement


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cancel_factory():
    """Build CancelTokens that never sleep; optionally cancel on the Nth wait."""
    return RecordingCancel
