"""
Terminal rendering of a measurement: live frames while polling, then the
final output.
"""

from typing import List, Optional

from rich.console import Console, Group
from rich.live import Live
from rich.text import Text

from meshprobe.cli.formatters import format_probe, share_line
from meshprobe.core.context import Context
from meshprobe.core.models import Measurement, MeasurementCreate


class MeasurementRenderer:
    """
    Render callback for the SessionOrchestrator.

    In-progress frames replace each other in a transient live region on
    stderr. The final frame prints headers and details to ``err`` and probe
    output to ``out`` so the output can be piped.
    """

    def __init__(
        self,
        ctx: Context,
        spec: MeasurementCreate,
        out: Optional[Console] = None,
        err: Optional[Console] = None,
        dashboard_url: str = "https://globalping.io",
    ):
        self.ctx = ctx
        self.spec = spec
        self.out = out or Console(no_color=ctx.ci_mode, highlight=False)
        self.err = err or Console(stderr=True, no_color=ctx.ci_mode, highlight=False)
        self.dashboard_url = dashboard_url
        self.frame_count = 0
        self._live: Optional[Live] = None

    def __call__(self, measurement: Measurement, is_final: bool) -> None:
        self.frame_count += 1
        if is_final:
            self.close()
            self.print_final(measurement)
        else:
            self.update(measurement)

    def frame(self, measurement: Measurement) -> Group:
        """One block per probe, in arrival order, trimmed to the terminal height."""
        results = measurement.results
        if not results:
            return Group(Text("Waiting for probes…", style="dim"))

        height = self.err.size.height
        max_lines = max(2, (height - 2 * len(results)) // len(results))
        blocks: List[Text] = []
        for pm in results:
            text = format_probe(self.ctx, self.spec, pm)
            blocks.append(Text(text.header, style="bold cyan"))
            lines = text.body.splitlines()
            if len(lines) > max_lines:
                lines = lines[-max_lines:]
            blocks.append(Text("\n".join(lines)))
        return Group(*blocks)

    def update(self, measurement: Measurement) -> None:
        renderable = self.frame(measurement)
        if self._live is None:
            self._live = Live(
                renderable,
                console=self.err,
                auto_refresh=False,
                transient=True,
            )
            self._live.start()
        self._live.update(renderable, refresh=True)

    def close(self) -> None:
        if self._live is not None:
            self._live.stop()
            self._live = None

    def print_final(self, measurement: Measurement) -> None:
        if self.ctx.to_json:
            self._write(self.out, measurement.model_dump_json(by_alias=True, indent=2))
            return

        header_style = None if self.ctx.ci_mode else "bold cyan"
        for index, pm in enumerate(measurement.results):
            text = format_probe(self.ctx, self.spec, pm)
            if index > 0:
                self._write(self.out, "")
            self._write(self.err, text.header, header_style)
            if text.details:
                self._write(self.err, text.details)
                self._write(self.err, "")
            self._write(self.out, text.body)

        if self.ctx.share:
            self._write(self.err, share_line(self.dashboard_url, measurement.id))

    @staticmethod
    def _write(console: Console, text: str, style: Optional[str] = None) -> None:
        console.print(Text(text, style=style or ""), soft_wrap=True)
