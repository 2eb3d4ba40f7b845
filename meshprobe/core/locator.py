"""
Probe locator resolution: turn a "--from" expression into locations.

An expression is a comma-separated list of tokens. Every token must be
either a location filter (continent, region, country, state, city, ASN or
network name) or a reference to probes used before: a session reference
(@1, @-1, first, last, previous) or a measurement id.
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

from loguru import logger

from meshprobe.core.errors import (
    AmbiguousLocatorExpression,
    NoSuchMeasurement,
    NotFoundError,
)
from meshprobe.core.history import SessionHistory, parse_session_reference
from meshprobe.core.models import Location, ProbeDetails

DEFAULT_LOCATION = "world"

_MEASUREMENT_ID_RE = re.compile(r"^(?=.*\d)[A-Za-z0-9]{16,32}$")


def is_measurement_id(token: str) -> bool:
    """Check if a token looks like a measurement id."""
    return bool(_MEASUREMENT_ID_RE.match(token))


@dataclass(frozen=True)
class FilterList:
    """Literal location tokens, ANDed into a single filter."""
    tokens: Tuple[str, ...]

    @property
    def magic(self) -> str:
        return "+".join(self.tokens)


@dataclass(frozen=True)
class HistoryReference:
    """References to probes used earlier: session indexes or measurement ids."""
    refs: Tuple[Union[int, str], ...]


ProbeLocator = Union[FilterList, HistoryReference]


def parse_locator(expression: Optional[str]) -> ProbeLocator:
    """
    Parse a locator expression without touching the network.

    Raises:
        AmbiguousLocatorExpression: if literal and symbolic tokens are mixed.
    """
    tokens = [t.strip() for t in (expression or "").split(",")]
    tokens = [t for t in tokens if t]
    if not tokens:
        return FilterList((DEFAULT_LOCATION,))

    literals: List[str] = []
    refs: List[Union[int, str]] = []
    for token in tokens:
        index = parse_session_reference(token)
        if index is not None:
            refs.append(index)
        elif token.startswith("@"):
            # "@" is reserved for session references; "@abc" is a typo, not a city
            refs.append(token)
        elif is_measurement_id(token):
            refs.append(token)
        else:
            literals.append(token)

    if literals and refs:
        raise AmbiguousLocatorExpression(
            f"cannot mix locations ({', '.join(literals)}) with references to "
            f"previous measurements in \"{expression}\""
        )
    if refs:
        return HistoryReference(tuple(refs))
    return FilterList(tuple(literals))


@dataclass
class ResolvedLocations:
    """Either an explicit probe list or a location filter string."""
    probes: Optional[List[ProbeDetails]] = None
    filter: Optional[str] = None

    def to_locations(self, limit: int) -> Tuple[List[Location], int]:
        """Build the request locations and the overall probe limit."""
        if self.probes is not None:
            return [Location.for_probe(p) for p in self.probes], len(self.probes)
        return [Location(magic=self.filter or DEFAULT_LOCATION)], limit


class LocatorResolver:
    """Resolve locator expressions against the session history and the service."""

    def __init__(self, history: SessionHistory, client=None):
        self.history = history
        self.client = client

    def resolve(self, expression: Optional[str]) -> ResolvedLocations:
        locator = parse_locator(expression)
        if isinstance(locator, FilterList):
            return ResolvedLocations(filter=locator.magic)

        probes: List[ProbeDetails] = []
        for ref in locator.refs:
            if isinstance(ref, str) and is_measurement_id(ref):
                probes.extend(self._probes_of_measurement(ref))
            else:
                probes.extend(self.history.resolve(ref))
        logger.debug(f"Resolved locator '{expression}' to {len(probes)} probe(s)")
        return ResolvedLocations(probes=probes)

    def _probes_of_measurement(self, measurement_id: str) -> List[ProbeDetails]:
        record = self.history.find(measurement_id)
        if record is not None:
            return list(record.probes)
        if self.client is None:
            raise NoSuchMeasurement(f"measurement {measurement_id} is not known")
        try:
            measurement = self.client.get_measurement(measurement_id)
        except NotFoundError as e:
            raise NoSuchMeasurement(f"measurement {measurement_id} not found") from e
        return measurement.probes
