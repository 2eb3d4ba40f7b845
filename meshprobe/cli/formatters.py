"""
Text layout of a single probe's result, per measurement command.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from meshprobe.core.context import Context
from meshprobe.core.models import (
    Limits,
    MeasurementCreate,
    ProbeDetails,
    ProbeMeasurement,
    ProbeResult,
    TLSCertificate,
)

LATENCY_COMMANDS = ("ping", "dns", "http")


@dataclass
class ProbeText:
    """Rendered probe: header and details go to stderr, body to stdout."""
    header: str
    details: str = ""
    body: str = ""


def probe_header(probe: ProbeDetails) -> str:
    """Format the one-line probe header, e.g. ``> Berlin, DE, EU, Network 1 (AS123)``."""
    location = probe.city
    if probe.state:
        location += f" ({probe.state})"
    return f"> {location}, {probe.country}, {probe.continent}, {probe.network} (AS{probe.asn})"


def share_line(dashboard_url: str, measurement_id: str) -> str:
    return f"> View the results online: {dashboard_url.rstrip('/')}?measurement={measurement_id}"


def _rfc3339(value: Optional[datetime]) -> str:
    if value is None:
        return "-"
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat(timespec="seconds").replace("+00:00", "Z")


def _ms(value: Any) -> str:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return f"{value:.2f} ms"
    return "-"


def format_tls(tls: TLSCertificate) -> str:
    """Certificate summary shown by ``http --full``."""
    lines = [f"{tls.protocol}/{tls.cipher_name}"]
    if tls.error:
        lines.append(f"Error: {tls.error}")
    lines.append(f"Subject: {tls.subject.common_name}; {tls.subject.alternative_name}")
    lines.append(
        f"Issuer: {tls.issuer.common_name}; {tls.issuer.organization}; {tls.issuer.country}"
    )
    lines.append(f"Validity: {_rfc3339(tls.created_at)}; {_rfc3339(tls.expires_at)}")
    lines.append(f"Serial number: {tls.serial_number}")
    lines.append(f"Fingerprint: {tls.fingerprint256}")
    lines.append(f"Key type: {tls.key_type}{tls.key_bits}")
    return "\n".join(lines)


def _format_raw(ctx: Context, spec: MeasurementCreate, result: ProbeResult) -> ProbeText:
    return ProbeText(header="", body=result.raw_output.rstrip("\n"))


def _format_http(ctx: Context, spec: MeasurementCreate, result: ProbeResult) -> ProbeText:
    options = spec.measurement_options
    method = options.request.method.upper() if options and options.request else "HEAD"

    if method == "HEAD":
        return ProbeText(header="", body=(result.raw_headers or result.raw_output).rstrip("\n"))

    body = result.raw_body.rstrip("\n")
    if not ctx.full:
        return ProbeText(header="", body=body or result.raw_output.rstrip("\n"))

    details: List[str] = []
    if result.tls is not None:
        details.append(format_tls(result.tls))
        details.append("")
    status_line = result.raw_output.split("\n", 1)[0]
    details.append(status_line)
    details.append(result.raw_headers.rstrip("\n"))
    return ProbeText(header="", details="\n".join(details), body=body)


def _timing(result: ProbeResult, key: str) -> Any:
    timings = result.timings
    if isinstance(timings, dict):
        return timings.get(key)
    return None


def _latency_ping(result: ProbeResult) -> str:
    stats = result.stats or {}
    return "\n".join(
        [
            f"Min: {_ms(stats.get('min'))}",
            f"Max: {_ms(stats.get('max'))}",
            f"Avg: {_ms(stats.get('avg'))}",
        ]
    )


def _latency_dns(result: ProbeResult) -> str:
    return f"Total: {_ms(_timing(result, 'total'))}"


def _latency_http(result: ProbeResult) -> str:
    return "\n".join(
        [
            f"Total: {_ms(_timing(result, 'total'))}",
            f"Download: {_ms(_timing(result, 'download'))}",
            f"First byte: {_ms(_timing(result, 'firstByte'))}",
            f"DNS: {_ms(_timing(result, 'dns'))}",
            f"TLS: {_ms(_timing(result, 'tls'))}",
            f"TCP: {_ms(_timing(result, 'tcp'))}",
        ]
    )


_FORMATTERS: Dict[str, Callable[[Context, MeasurementCreate, ProbeResult], ProbeText]] = {
    "http": _format_http,
}

_LATENCY_FORMATTERS: Dict[str, Callable[[ProbeResult], str]] = {
    "ping": _latency_ping,
    "dns": _latency_dns,
    "http": _latency_http,
}


def format_probe(ctx: Context, spec: MeasurementCreate, measurement: ProbeMeasurement) -> ProbeText:
    """Dispatch to the layout of ``ctx.cmd`` and return the probe's text."""
    if ctx.to_latency and ctx.cmd in _LATENCY_FORMATTERS:
        text = ProbeText(header="", body=_LATENCY_FORMATTERS[ctx.cmd](measurement.result))
    else:
        formatter = _FORMATTERS.get(ctx.cmd, _format_raw)
        text = formatter(ctx, spec, measurement.result)
    text.header = probe_header(measurement.probe)
    return text


def print_limits(limits: Limits, console: Console) -> None:
    """Print rate limit and credits status."""
    table = Table(title="Limits", show_header=False, box=None)
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="white")

    create = limits.create
    table.add_row("Measurements", f"{create.remaining}/{create.limit} remaining ({create.type or 'n/a'})")
    table.add_row("Resets in", f"{create.reset}s")
    if limits.credits_remaining is not None:
        table.add_row("Credits", str(limits.credits_remaining))

    console.print()
    console.print(table)
    console.print()
