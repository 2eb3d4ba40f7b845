"""
Data models exchanged with the probe service.

Field names are snake_case in Python and camelCase on the wire.
"""

import sys
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


MEASUREMENT_TYPES = ("ping", "traceroute", "dns", "mtr", "http")

# Expiry used for a user-pinned token; never reached, so never refreshed.
PINNED_EXPIRY = datetime.max.replace(tzinfo=timezone.utc)


class WireModel(BaseModel):
    """Base model using camelCase aliases for (de)serialization."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class MeasurementStatus(str, Enum):
    """Lifecycle status reported by the service."""

    IN_PROGRESS = "in-progress"
    FINISHED = "finished"
    FAILED = "failed"


class ProbeDetails(WireModel):
    """A probe's location and network."""

    model_config = ConfigDict(frozen=True)

    continent: str = ""
    region: str = ""
    country: str = ""
    state: Optional[str] = None
    city: str = ""
    asn: int = 0
    network: str = ""
    tags: List[str] = Field(default_factory=list)
    resolvers: List[str] = Field(default_factory=list)

    def __hash__(self) -> int:
        return hash((self.continent, self.country, self.state, self.city, self.asn, self.network))


class TLSSubject(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    common_name: str = Field(default="", alias="CN")
    alternative_name: str = Field(default="", alias="alt")


class TLSIssuer(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    country: str = Field(default="", alias="C")
    organization: str = Field(default="", alias="O")
    common_name: str = Field(default="", alias="CN")


class TLSCertificate(WireModel):
    """TLS details reported by an http probe."""

    protocol: str = ""
    cipher_name: str = ""
    authorized: bool = False
    error: Optional[str] = None
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    subject: TLSSubject = Field(default_factory=TLSSubject)
    issuer: TLSIssuer = Field(default_factory=TLSIssuer)
    key_type: str = ""
    key_bits: int = 0
    serial_number: str = ""
    fingerprint256: str = ""


class ProbeResult(WireModel):
    """Raw output plus command-specific structured fields."""

    model_config = ConfigDict(extra="allow")

    status: str = ""
    raw_output: str = ""
    raw_headers: str = ""
    raw_body: str = ""
    resolved_address: Optional[str] = None
    resolved_hostname: Optional[str] = None
    stats: Dict[str, Any] = Field(default_factory=dict)
    timings: Any = None
    tls: Optional[TLSCertificate] = None


class ProbeMeasurement(WireModel):
    probe: ProbeDetails
    result: ProbeResult = Field(default_factory=ProbeResult)


class Measurement(WireModel):
    """A submitted measurement as last reported by the service."""

    id: str
    type: str = ""
    status: MeasurementStatus = MeasurementStatus.IN_PROGRESS
    target: str = ""
    probes_count: int = 0
    results: List[ProbeMeasurement] = Field(default_factory=list)

    @property
    def probes(self) -> List[ProbeDetails]:
        return [r.probe for r in self.results]


class Location(WireModel):
    """A single location filter in a measurement request."""

    continent: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None
    state: Optional[str] = None
    city: Optional[str] = None
    asn: Optional[int] = None
    network: Optional[str] = None
    magic: Optional[str] = None
    limit: Optional[int] = None

    @classmethod
    def for_probe(cls, probe: ProbeDetails) -> "Location":
        """Location matching exactly one previously seen probe."""
        return cls(
            country=probe.country or None,
            state=probe.state or None,
            city=probe.city or None,
            asn=probe.asn or None,
            network=probe.network or None,
            limit=1,
        )


class QueryOptions(WireModel):
    type: str = "A"


class RequestOptions(WireModel):
    method: str = "HEAD"
    path: Optional[str] = None
    host: Optional[str] = None
    query: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)


class MeasurementOptions(WireModel):
    packets: Optional[int] = None
    port: Optional[int] = None
    protocol: Optional[str] = None
    ip_version: Optional[int] = None
    query: Optional[QueryOptions] = None
    resolver: Optional[str] = None
    trace: Optional[bool] = None
    request: Optional[RequestOptions] = None


class MeasurementCreate(WireModel):
    """Request body for submitting a measurement."""

    type: str
    target: str
    limit: Optional[int] = None
    locations: List[Location] = Field(default_factory=list)
    measurement_options: Optional[MeasurementOptions] = None
    in_progress_updates: bool = True

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class MeasurementCreateResponse(WireModel):
    id: str
    probes_count: int = 0


class Token(WireModel):
    """OAuth access token with its expiry."""

    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    expires_in: int = 0
    expiry: Optional[datetime] = None

    @classmethod
    def pinned(cls, access_token: str) -> "Token":
        """A user-supplied token that is never refreshed."""
        return cls(
            access_token=access_token,
            expires_in=sys.maxsize,
            expiry=PINNED_EXPIRY,
        )

    @property
    def is_pinned(self) -> bool:
        return self.expiry is not None and self.expiry >= PINNED_EXPIRY


class SessionRecord(BaseModel):
    """Probes used by one finished measurement; immutable."""

    model_config = ConfigDict(frozen=True)

    id: str
    probes: Tuple[ProbeDetails, ...]

    @classmethod
    def from_measurement(cls, measurement: Measurement) -> "SessionRecord":
        return cls(id=measurement.id, probes=tuple(measurement.probes))


class RateLimitStatus(WireModel):
    type: str = ""
    limit: int = 0
    remaining: int = 0
    reset: int = 0


class Limits(BaseModel):
    """Rate limit and credit status of the current caller."""

    create: RateLimitStatus = Field(default_factory=RateLimitStatus)
    credits_remaining: Optional[int] = None
