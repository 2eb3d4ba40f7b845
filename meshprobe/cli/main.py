"""
Main CLI application using Typer.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import urlsplit

import questionary
from questionary import Choice
import typer
from rich.console import Console
from rich.table import Table

from meshprobe.__version__ import __version__
from meshprobe.api.auth import AuthClient, TokenStore
from meshprobe.api.cache import ResponseCache
from meshprobe.api.client import ProbeApiClient
from meshprobe.cli.formatters import LATENCY_COMMANDS, print_limits, probe_header
from meshprobe.core.config import AppConfig, load_config_file
from meshprobe.core.context import Context
from meshprobe.core.errors import (
    MeasurementInterrupted,
    MeshProbeError,
    RateLimitError,
)
from meshprobe.core.history import SessionHistory
from meshprobe.core.installer import CONTAINER_NAME, DOCKER_INSTALL_URL, ProbeInstaller
from meshprobe.core.models import (
    MeasurementCreate,
    MeasurementOptions,
    QueryOptions,
    RequestOptions,
    Token,
)
from meshprobe.core.orchestrator import CancelToken, SessionOrchestrator, interrupt_on_signals
from meshprobe.storage.logger import setup_logging
from meshprobe.storage.measurement_log import MeasurementLog
from meshprobe.storage.profile import ProfileStore
from meshprobe.tui.renderer import MeasurementRenderer

app = typer.Typer(
    name="meshprobe",
    help="Run ping, traceroute, dns, mtr and http measurements from probes around the world",
    add_completion=False,
)
auth_app = typer.Typer(help="Sign in to the probe service and manage your token")
app.add_typer(auth_app, name="auth")

console = Console()
err_console = Console(stderr=True)

EXIT_INTERRUPTED = 130

FROM_HELP = (
    "Probe locations as a comma-separated list: names of continents, regions, "
    "countries, US states, cities or networks; @1|first, @2 ... @-2, @-1|last|previous "
    "to reuse the probes of a previous measurement in this session; or the ID of a "
    "previous measurement."
)

FromOption = typer.Option(None, "--from", "-F", help=FROM_HELP)
LimitOption = typer.Option(None, "--limit", "-L", help="Number of probes to use")
JsonOption = typer.Option(False, "--json", "-J", help="Output results in JSON format")
LatencyOption = typer.Option(False, "--latency", help="Output only the latency stats (dns, http and ping)")
ShareOption = typer.Option(False, "--share", help="Print a link to view the results online")
Ipv4Option = typer.Option(False, "--ipv4", "-4", help="Resolve names to IPv4 addresses")
Ipv6Option = typer.Option(False, "--ipv6", "-6", help="Resolve names to IPv6 addresses")


def _load_config(file_cfg: Optional[dict] = None) -> AppConfig:
    """
    Build AppConfig; ~/.meshprobe.yaml values apply where no MESHPROBE_*
    variable is set.
    """
    if file_cfg is None:
        file_cfg = load_config_file()
    overrides = {
        k: file_cfg[k]
        for k in ("data_dir", "api_min_interval")
        if k in file_cfg and f"MESHPROBE_{k.upper()}" not in os.environ
    }
    return AppConfig(**overrides)


@dataclass
class CliState:
    """Global options collected by the app callback."""
    ci_mode: bool = False
    verbose: bool = False


class CliSession:
    """
    Shared objects of one process run: config, logger, API client and the
    session history that makes @N references work.
    """

    def __init__(self, state: CliState):
        file_cfg = load_config_file()
        self.config = _load_config(file_cfg)
        self.ci_mode = state.ci_mode
        self.verbose = state.verbose or self.config.verbose or file_cfg.get("verbose", False)
        self.default_from: str = file_cfg.get("from", "world")
        self.default_limit: int = file_cfg.get("limit", 1)

        self.logger = setup_logging(self.config.data_dir, self.verbose)
        self.profile = ProfileStore(self.config.profile_file)
        self.measurement_log = MeasurementLog(self.config.measurement_log_file)
        self.history = SessionHistory()

        self.token_store = TokenStore(
            self._initial_token(),
            AuthClient(
                self.config.auth_url,
                self.config.auth_client_id,
                self.config.auth_client_secret,
                timeout=self.config.request_timeout,
            ),
        )
        self.token_store.on_refreshed(self.profile)

        cache = ResponseCache(default_ttl=self.config.cache_ttl)
        cache.start_sweeper(self.config.cache_sweep_interval)
        self.client = ProbeApiClient(
            self.config.api_url,
            token_store=self.token_store,
            cache=cache,
            user_agent=f"meshprobe/{__version__}",
            timeout=self.config.request_timeout,
            cache_ttl=self.config.cache_ttl,
        )

    def _initial_token(self) -> Optional[Token]:
        if self.config.token:
            self.logger.debug("Using pinned token from MESHPROBE_TOKEN")
            return Token.pinned(self.config.token)
        return self.profile.load_token()

    def context(self, cmd: str, target: str, **kwargs) -> Context:
        if kwargs.get("locator") is None:
            kwargs["locator"] = self.default_from
        if kwargs.get("limit") is None:
            kwargs["limit"] = self.default_limit
        return Context(
            cmd=cmd,
            target=target,
            ci_mode=self.ci_mode,
            api_min_interval=self.config.api_min_interval,
            history=self.history,
            **kwargs,
        )

    def execute(self, ctx: Context, spec: MeasurementCreate) -> int:
        """Run one measurement and return the process exit code."""
        renderer = MeasurementRenderer(ctx, spec, dashboard_url=self.config.dashboard_url)
        orchestrator = SessionOrchestrator(self.client, renderer)
        cancel = CancelToken()
        self.logger.info(f"Running {ctx.cmd} {ctx.target} from '{ctx.locator}' (limit {ctx.limit})")

        try:
            with interrupt_on_signals(cancel):
                measurement = orchestrator.run(ctx, spec, cancel)
        except MeasurementInterrupted as e:
            self._log_run(ctx, e)
            err_console.print("[yellow]Measurement interrupted[/yellow]")
            return EXIT_INTERRUPTED
        except MeshProbeError as e:
            self._log_run(ctx, e)
            self.logger.error(str(e))
            _print_error(e)
            return 1
        finally:
            renderer.close()

        self.measurement_log.record(ctx.cmd, ctx.target, ctx.locator, measurement)
        return 0

    def _log_run(self, ctx: Context, error: MeshProbeError) -> None:
        if error.measurement is not None:
            self.measurement_log.record(ctx.cmd, ctx.target, ctx.locator, error.measurement)

    def close(self) -> None:
        self.client.close()


def _print_error(error: MeshProbeError) -> None:
    """Print an error, with the rate limit hint when a 429 caused it."""
    err_console.print(f"[bold red]Error:[/bold red] {error}")
    cause = error if isinstance(error, RateLimitError) else error.__cause__
    if isinstance(cause, RateLimitError) and cause.hint:
        err_console.print(f"[yellow]{cause.hint}[/yellow]")


def _state(ctx: typer.Context) -> CliState:
    return ctx.obj if isinstance(ctx.obj, CliState) else CliState()


def _run_command(
    typer_ctx: typer.Context,
    cmd: str,
    target: str,
    options: Optional[MeasurementOptions],
    locator: Optional[str],
    limit: Optional[int],
    to_json: bool,
    to_latency: bool,
    share: bool,
    ipv4: bool,
    ipv6: bool,
    full: bool = False,
) -> None:
    """Validate flags, run a measurement and exit with its status."""
    if to_latency and cmd not in LATENCY_COMMANDS:
        err_console.print(f"[bold red]Error:[/bold red] --latency is only supported by {', '.join(LATENCY_COMMANDS)}")
        raise typer.Exit(1)
    if ipv4 and ipv6:
        err_console.print("[bold red]Error:[/bold red] --ipv4 and --ipv6 are mutually exclusive")
        raise typer.Exit(1)

    session = CliSession(_state(typer_ctx))
    try:
        ctx = session.context(
            cmd,
            target,
            locator=locator,
            limit=limit,
            to_json=to_json,
            to_latency=to_latency,
            share=share,
            ipv4=ipv4,
            ipv6=ipv6,
            full=full,
        )
        if ctx.ip_version is not None:
            options = options or MeasurementOptions()
            options.ip_version = ctx.ip_version
        spec = MeasurementCreate(type=cmd, target=target, measurement_options=options)
        code = session.execute(ctx, spec)
    finally:
        session.close()
    if code:
        raise typer.Exit(code)


def parse_http_target(target: str, options: RequestOptions) -> tuple[str, RequestOptions, Optional[str], Optional[int]]:
    """
    Split a URL target into host and request options.

    Returns:
        (host, request options, protocol or None, port or None)
    """
    if "://" not in target:
        return target, options, None, None
    parts = urlsplit(target)
    update = {}
    if parts.path and not options.path:
        update["path"] = parts.path
    if parts.query and not options.query:
        update["query"] = parts.query
    return parts.hostname or target, options.model_copy(update=update), parts.scheme.upper(), parts.port


@app.callback(invoke_without_command=True)
def _default(
    ctx: typer.Context,
    ci: bool = typer.Option(
        False,
        "--ci",
        "-C",
        help="Disable real-time terminal updates and colors, suitable for CI and scripting",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose output",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
    ),
):
    """
    meshprobe - network measurements from a global probe network.
    Run with no command for an interactive session, or use a subcommand.
    """
    if version:
        console.print(f"meshprobe {__version__}")
        raise typer.Exit(0)
    ctx.obj = CliState(ci_mode=ci, verbose=verbose)
    if ctx.invoked_subcommand is None:
        _run_interactive(ctx.obj)


@app.command()
def ping(
    typer_ctx: typer.Context,
    target: str = typer.Argument(..., help="Target hostname or IP address"),
    locator: Optional[str] = FromOption,
    limit: Optional[int] = LimitOption,
    packets: Optional[int] = typer.Option(None, "--packets", help="Number of packets to send (default 3)"),
    to_json: bool = JsonOption,
    to_latency: bool = LatencyOption,
    share: bool = ShareOption,
    ipv4: bool = Ipv4Option,
    ipv6: bool = Ipv6Option,
):
    """
    Run a ping measurement.
    """
    options = MeasurementOptions(packets=packets) if packets else None
    _run_command(typer_ctx, "ping", target, options, locator, limit, to_json, to_latency, share, ipv4, ipv6)


@app.command()
def traceroute(
    typer_ctx: typer.Context,
    target: str = typer.Argument(..., help="Target hostname or IP address"),
    locator: Optional[str] = FromOption,
    limit: Optional[int] = LimitOption,
    protocol: Optional[str] = typer.Option(None, "--protocol", help="ICMP, TCP or UDP (default ICMP)"),
    port: Optional[int] = typer.Option(None, "--port", help="Destination port for TCP (default 80)"),
    to_json: bool = JsonOption,
    share: bool = ShareOption,
    ipv4: bool = Ipv4Option,
    ipv6: bool = Ipv6Option,
):
    """
    Run a traceroute measurement.
    """
    options = MeasurementOptions(protocol=protocol.upper() if protocol else None, port=port)
    _run_command(typer_ctx, "traceroute", target, options, locator, limit, to_json, False, share, ipv4, ipv6)


@app.command()
def dns(
    typer_ctx: typer.Context,
    target: str = typer.Argument(..., help="Hostname to resolve"),
    locator: Optional[str] = FromOption,
    limit: Optional[int] = LimitOption,
    query_type: Optional[str] = typer.Option(None, "--type", help="Record type: A, AAAA, CNAME, MX, NS, TXT, ... (default A)"),
    resolver: Optional[str] = typer.Option(None, "--resolver", help="Resolver to query (default: the probe's)"),
    protocol: Optional[str] = typer.Option(None, "--protocol", help="TCP or UDP (default UDP)"),
    port: Optional[int] = typer.Option(None, "--port", help="Resolver port (default 53)"),
    trace: bool = typer.Option(False, "--trace", help="Trace delegation from the root servers"),
    to_json: bool = JsonOption,
    to_latency: bool = LatencyOption,
    share: bool = ShareOption,
    ipv4: bool = Ipv4Option,
    ipv6: bool = Ipv6Option,
):
    """
    Run a DNS lookup measurement.
    """
    options = MeasurementOptions(
        query=QueryOptions(type=query_type.upper()) if query_type else None,
        resolver=resolver,
        protocol=protocol.upper() if protocol else None,
        port=port,
        trace=trace or None,
    )
    _run_command(typer_ctx, "dns", target, options, locator, limit, to_json, to_latency, share, ipv4, ipv6)


@app.command()
def mtr(
    typer_ctx: typer.Context,
    target: str = typer.Argument(..., help="Target hostname or IP address"),
    locator: Optional[str] = FromOption,
    limit: Optional[int] = LimitOption,
    protocol: Optional[str] = typer.Option(None, "--protocol", help="ICMP, TCP or UDP (default ICMP)"),
    port: Optional[int] = typer.Option(None, "--port", help="Destination port for TCP/UDP (default 80)"),
    packets: Optional[int] = typer.Option(None, "--packets", help="Packets per hop (default 3)"),
    to_json: bool = JsonOption,
    share: bool = ShareOption,
    ipv4: bool = Ipv4Option,
    ipv6: bool = Ipv6Option,
):
    """
    Run an MTR measurement.
    """
    options = MeasurementOptions(protocol=protocol.upper() if protocol else None, port=port, packets=packets)
    _run_command(typer_ctx, "mtr", target, options, locator, limit, to_json, False, share, ipv4, ipv6)


@app.command()
def http(
    typer_ctx: typer.Context,
    target: str = typer.Argument(..., help="URL or hostname"),
    locator: Optional[str] = FromOption,
    limit: Optional[int] = LimitOption,
    method: Optional[str] = typer.Option(None, "--method", help="HEAD or GET (default HEAD, GET with --full)"),
    path: Optional[str] = typer.Option(None, "--path", help="URL path"),
    query: Optional[str] = typer.Option(None, "--query", help="URL query string"),
    host: Optional[str] = typer.Option(None, "--host", help="Host header value"),
    headers: Optional[List[str]] = typer.Option(None, "--header", "-H", help="Extra header as 'Name: value'"),
    resolver: Optional[str] = typer.Option(None, "--resolver", help="Resolver used for the target name"),
    protocol: Optional[str] = typer.Option(None, "--protocol", help="HTTP, HTTPS or HTTP2 (default HTTPS)"),
    port: Optional[int] = typer.Option(None, "--port", help="Destination port"),
    full: bool = typer.Option(False, "--full", help="Show TLS details, status line, headers and body"),
    to_json: bool = JsonOption,
    to_latency: bool = LatencyOption,
    share: bool = ShareOption,
    ipv4: bool = Ipv4Option,
    ipv6: bool = Ipv6Option,
):
    """
    Run an HTTP measurement.
    """
    request_method = (method or ("GET" if full else "HEAD")).upper()
    header_map = {}
    for header in headers or []:
        name, sep, value = header.partition(":")
        if not sep:
            err_console.print(f"[bold red]Error:[/bold red] invalid header '{header}', expected 'Name: value'")
            raise typer.Exit(1)
        header_map[name.strip()] = value.strip()

    request = RequestOptions(method=request_method, path=path, query=query, host=host, headers=header_map)
    target_host, request, url_protocol, url_port = parse_http_target(target, request)
    options = MeasurementOptions(
        request=request,
        resolver=resolver,
        protocol=(protocol or url_protocol or "").upper() or None,
        port=port or url_port,
    )
    _run_command(
        typer_ctx, "http", target_host, options, locator, limit, to_json, to_latency, share, ipv4, ipv6, full=full
    )


@app.command()
def history(
    limit: int = typer.Option(
        10,
        "--limit",
        "-n",
        help="Maximum number of measurements to show",
    ),
):
    """
    Show the last N measurements run from this machine.
    """
    config = _load_config()
    entries = MeasurementLog(config.measurement_log_file).read_entries(limit)
    if not entries:
        console.print("[dim]No measurements found.[/dim]")
        return

    table = Table(title="Recent measurements", show_header=True)
    table.add_column("Time", style="cyan")
    table.add_column("Command", style="white")
    table.add_column("Target", style="white")
    table.add_column("From", style="white")
    table.add_column("ID", style="white")
    table.add_column("Status", style="white")
    table.add_column("Probes", style="white", justify="right")

    for entry in entries:
        table.add_row(
            entry.get("timestamp", "—").replace("T", " "),
            entry.get("command", "—"),
            entry.get("target", "—"),
            entry.get("locations", "—"),
            entry.get("measurement_id", "—"),
            entry.get("status", "—"),
            entry.get("probes", "—"),
        )

    console.print()
    console.print(table)


@app.command()
def limits(typer_ctx: typer.Context):
    """
    Show your measurement rate limit and remaining credits.
    """
    session = CliSession(_state(typer_ctx))
    try:
        print_limits(session.client.get_limits(), console)
    except MeshProbeError as e:
        _print_error(e)
        raise typer.Exit(1)
    finally:
        session.close()


@app.command("install-probe")
def install_probe(
    yes: bool = typer.Option(False, "--yes", "-y", help="Install without asking for confirmation"),
):
    """
    Run a probe on this machine and join the probe network.
    """
    config = _load_config()
    setup_logging(config.data_dir, verbose=False)
    installer = ProbeInstaller()

    if not installer.docker_available():
        err_console.print("[bold red]Error:[/bold red] Docker is not installed or not running")
        err_console.print(f"[dim]Install it from {DOCKER_INSTALL_URL} and try again.[/dim]")
        raise typer.Exit(1)
    if installer.is_installed():
        console.print(f"[yellow]A container named {CONTAINER_NAME} already exists, nothing to do[/yellow]")
        return

    if not yes:
        confirmed = questionary.confirm(
            f"The probe runs as the Docker container '{CONTAINER_NAME}' and restarts with the machine. Continue?",
            default=True,
        ).ask()
        if not confirmed:
            console.print("[dim]Installation cancelled[/dim]")
            raise typer.Exit(1)

    with console.status("[cyan]Starting the probe container...[/cyan]"):
        result = installer.install()
    if not result.success:
        err_console.print(f"[bold red]Error:[/bold red] failed to start the probe: {result.stderr.strip()}")
        raise typer.Exit(1)
    console.print(f"[bold green]✓ Probe started[/bold green] (container {result.stdout.strip()[:12]})")


@app.command()
def version():
    """
    Show the installed version.
    """
    console.print(f"meshprobe {__version__}")


@auth_app.command("login")
def auth_login(
    token: Optional[str] = typer.Option(None, "--token", help="Access token (prompted when omitted)"),
):
    """
    Store an access token for authenticated measurements.
    """
    config = _load_config()
    if token is None:
        token = questionary.password("Access token:").ask()
    if not token:
        err_console.print("[yellow]No token given, nothing saved[/yellow]")
        raise typer.Exit(1)
    ProfileStore(config.profile_file).persist_token(Token.pinned(token.strip()))
    console.print("[bold green]✓ Token saved[/bold green]")


@auth_app.command("logout")
def auth_logout():
    """
    Remove the stored access token.
    """
    config = _load_config()
    ProfileStore(config.profile_file).clear_token()
    console.print("[bold green]✓ Signed out[/bold green]")


@auth_app.command("status")
def auth_status():
    """
    Show which token is used.
    """
    config = _load_config()
    if config.token:
        console.print("Using the token from [cyan]MESHPROBE_TOKEN[/cyan] (never refreshed)")
        return
    stored = ProfileStore(config.profile_file).load_token()
    if stored is None:
        console.print("[dim]Not signed in; measurements run anonymously.[/dim]")
    elif stored.is_pinned or stored.expiry is None:
        console.print("Signed in with a stored token (does not expire)")
    else:
        console.print(f"Signed in; token expires {stored.expiry.isoformat(timespec='seconds')} (refreshed automatically)")


def _run_interactive(state: CliState) -> None:
    """Interactive session: measurements share one session history."""
    session = CliSession(state)
    console.print("\n[bold cyan]meshprobe interactive session[/bold cyan]")
    console.print(
        "[dim]  Reuse probes with @1, @-1, first, last or previous as the location. "
        "Press Ctrl+C during a measurement to stop it.[/dim]"
    )
    last_locator = session.default_from
    try:
        while True:
            choice = _show_main_menu()
            if choice is None or choice == "exit":
                console.print("\n[bold cyan]👋 Bye![/bold cyan]")
                break
            if choice == "session":
                _print_session_history(session.history)
                continue

            target = questionary.text(
                "Target (hostname, IP address or URL):",
                validate=lambda x: len(x.strip()) > 0,
            ).ask()
            if not target:
                continue
            locator = questionary.text("Locations:", default=last_locator).ask()
            if locator is None:
                continue
            limit = questionary.text(
                "Number of probes:",
                default=str(session.default_limit),
                validate=lambda x: x.isdigit() and int(x) > 0,
            ).ask()
            if limit is None:
                continue

            target = target.strip()
            options = None
            if choice == "http":
                request = RequestOptions(method="HEAD")
                target, request, url_protocol, url_port = parse_http_target(target, request)
                options = MeasurementOptions(request=request, protocol=url_protocol, port=url_port)
            ctx = session.context(choice, target, locator=locator, limit=int(limit))
            spec = MeasurementCreate(type=choice, target=target, measurement_options=options)
            session.execute(ctx, spec)
            last_locator = locator
    finally:
        session.close()


def _show_main_menu() -> Optional[str]:
    """Display the main menu and return the chosen command."""
    choices = [
        Choice("Ping — reachability and latency", value="ping"),
        Choice("Traceroute — path to the target", value="traceroute"),
        Choice("DNS — resolve a name", value="dns"),
        Choice("MTR — traceroute with per-hop statistics", value="mtr"),
        Choice("HTTP — request a URL", value="http"),
        Choice("Session — measurements run in this session", value="session"),
        Choice("Exit", value="exit"),
    ]
    return questionary.select("Select a measurement:", choices=choices).ask()


def _print_session_history(session_history: SessionHistory) -> None:
    if not len(session_history):
        console.print("[dim]No measurements in this session yet.[/dim]")
        return
    table = Table(title="Session", show_header=True)
    table.add_column("Ref", style="cyan")
    table.add_column("ID", style="white")
    table.add_column("Probes", style="white")
    for index, record in enumerate(session_history, start=1):
        probes = "\n".join(probe_header(p)[2:] for p in record.probes) or "—"
        table.add_row(f"@{index}", record.id, probes)
    console.print()
    console.print(table)
