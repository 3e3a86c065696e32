"""Rich rendering for reports, sync summaries and listings.

Color scheme
------------
- green     : trusted
- yellow    : low-confidence
- dim       : unreviewed
- bold red  : caution
"""

from __future__ import annotations

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from vouchsafe.core.signing import key_fingerprint
from vouchsafe.models.config import UserConfig
from vouchsafe.models.extension import ExtensionEntry
from vouchsafe.models.peer import PeerDescriptor
from vouchsafe.models.report import DependencyReport
from vouchsafe.models.review import ReviewRecord
from vouchsafe.models.sync import SyncSummary
from vouchsafe.models.trust import TrustClass

_CLASS_LABELS: dict[TrustClass, str] = {
    TrustClass.TRUSTED: "[green]trusted[/green]",
    TrustClass.LOW_CONFIDENCE: "[yellow]low-confidence[/yellow]",
    TrustClass.UNREVIEWED: "[dim]unreviewed[/dim]",
    TrustClass.CAUTION: "[bold red]caution[/bold red]",
}


def _score(value: float | None) -> str:
    return "-" if value is None else f"{value:+.2f}"


class Renderer:
    """Prints vouchsafe results to a Rich console.

    Parameters
    ----------
    console:
        Target console; a fresh stdout console if omitted.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # -- check --------------------------------------------------------------

    def report(self, report: DependencyReport) -> None:
        if not report.entries and not report.extension_failures:
            self.console.print(f"[dim]No dependencies found under {report.root}.[/dim]")
            return

        table = Table(title=f"Dependency check: {report.root}")
        table.add_column("Ecosystem", style="cyan")
        table.add_column("Package", style="bold")
        table.add_column("Version")
        table.add_column("Score", justify="right")
        table.add_column("Reviews", justify="right")
        table.add_column("Authors", justify="right")
        table.add_column("Class")
        for entry in report.entries:
            agg = entry.aggregate
            table.add_row(
                entry.package.ecosystem,
                entry.package.name,
                entry.package.version,
                _score(agg.score),
                str(agg.review_count),
                str(agg.distinct_author_count),
                _CLASS_LABELS[entry.classification],
            )
        self.console.print(table)

        for failure in report.extension_failures:
            self.console.print(
                f"[yellow]Skipped ecosystem {failure.ecosystem_id}:[/yellow] {failure.reason}"
            )

        counts = report.counts()
        summary = ", ".join(f"{counts[c.value]} {c.value}" for c in TrustClass)
        if report.passed:
            self.console.print(f"[bold green]PASSED[/bold green]  {summary}")
        else:
            failing = ", ".join(c.value for c in report.policy.fail_on)
            self.console.print(
                f"[bold red]FAILED[/bold red]  {summary}  "
                f"[dim](policy fails on: {failing})[/dim]"
            )

    # -- sync ---------------------------------------------------------------

    def sync_summary(self, summary: SyncSummary) -> None:
        if summary.peers:
            table = Table(title="Peer sync")
            table.add_column("Peer", style="cyan")
            table.add_column("Status")
            table.add_column("New", justify="right")
            table.add_column("Dup", justify="right")
            table.add_column("Rejected", justify="right")
            table.add_column("Head")
            for result in summary.peers:
                status = "[green]ok[/green]" if result.ok else f"[red]failed[/red] {result.error}"
                table.add_row(
                    result.peer_url,
                    status,
                    str(result.inserted),
                    str(result.duplicates),
                    str(len(result.rejected)),
                    result.watermark_after[:12],
                )
            self.console.print(table)
        else:
            self.console.print("[dim]No peers configured.[/dim]")

        publish = summary.publish
        if publish is None:
            self.console.print("[dim]Publish skipped.[/dim]")
        elif publish.ok:
            self.console.print(
                f"[green]Published {publish.published} record(s)[/green]"
                + (f" in {publish.commit[:12]}" if publish.commit else "")
            )
        else:
            self.console.print(f"[red]Publish failed:[/red] {publish.error}")

    # -- listings -----------------------------------------------------------

    def extensions(self, entries: list[ExtensionEntry]) -> None:
        if not entries:
            self.console.print("[dim]No extensions installed.[/dim]")
            return
        table = Table(title="Installed extensions")
        table.add_column("Ecosystem", style="cyan")
        table.add_column("Source")
        table.add_column("Pinned", justify="center")
        table.add_column("Enabled", justify="center")
        for e in entries:
            pinned = e.executable_sha256[:12] if e.executable_sha256 else "[dim]-[/dim]"
            enabled = "[green]Yes[/green]" if e.enabled else "[red]No[/red]"
            table.add_row(e.ecosystem_id, e.source, pinned, enabled)
        self.console.print(table)

    def peers(self, peers: list[PeerDescriptor]) -> None:
        if not peers:
            self.console.print("[dim]No peers configured.[/dim]")
            return
        table = Table(title="Peers")
        table.add_column("URL", style="cyan")
        table.add_column("Name")
        table.add_column("Weight", justify="right")
        table.add_column("Watermark")
        table.add_column("Last sync")
        for p in peers:
            table.add_row(
                p.url,
                p.name,
                f"{p.trust_weight:.2f}",
                p.watermark[:12] or "[dim]never[/dim]",
                p.last_synced_at.strftime("%Y-%m-%d %H:%M") if p.last_synced_at else "",
            )
        self.console.print(table)

    def review(self, record: ReviewRecord) -> None:
        lines = [
            f"[bold]Record:[/bold]   {record.id}",
            f"[bold]Package:[/bold]  {record.package}",
            f"[bold]Rating:[/bold]   {_score(record.rating)}",
            f"[bold]Author:[/bold]   {key_fingerprint(record.author_key)}",
        ]
        if record.supersedes:
            lines.append(f"[bold]Replaces:[/bold] {record.supersedes}")
        self.console.print(Panel("\n".join(lines), title="Review stored", border_style="green"))

    def config(self, config: UserConfig) -> None:
        table = Table(title="Configuration")
        table.add_column("Name", style="cyan")
        table.add_column("Value")
        for name in (
            "outgoing_repo_url",
            "check.trusted_min",
            "check.caution_below",
            "check.low_confidence_max_authors",
            "check.fail_on",
        ):
            value = config.get(name)
            shown = ",".join(value) if isinstance(value, list) else str(value)
            table.add_row(name, shown)
        self.console.print(table)
