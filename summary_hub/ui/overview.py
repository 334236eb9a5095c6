"""A Rich-powered console overview of the shared summaries."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from rich import box
from rich.columns import Columns
from rich.console import Console, Group
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from ..services.notifications import describe_size
from ..services.records import KIND_ARCHIVE, KIND_DOCUMENT, KIND_VIDEO, Record, RecordStore


KIND_LABELS: Dict[str, str] = {
    KIND_DOCUMENT: "📄 PDF",
    KIND_ARCHIVE: "🗜️ Archive",
    KIND_VIDEO: "🎬 Video",
}


@dataclass
class CourseOverview:
    name: str
    records: List[Record] = field(default_factory=list)


@dataclass
class OverviewSnapshot:
    courses: List[CourseOverview]
    record_count: int
    kind_totals: Dict[str, int]
    total_bytes: int
    likes: int
    dislikes: int


class OverviewUI:
    """Render the record store grouped by course."""

    def __init__(
        self,
        store: RecordStore,
        *,
        year: Optional[int] = None,
        console: Optional[Console] = None,
    ) -> None:
        self._store = store
        self._year = year
        self._console = console or Console()

    def run(self) -> None:
        snapshot = self._collect_snapshot()
        console = self._console

        title = "Summary Hub Overview"
        if self._year is not None:
            title = f"{title} ({self._year})"
        console.rule(f"[bold magenta]{title}")

        if snapshot.record_count == 0:
            console.print(
                Panel(
                    "No summaries have been shared yet.\n"
                    "Start the server with [bold]python run.py serve[/bold] and upload one.",
                    border_style="yellow",
                    box=box.ROUNDED,
                )
            )
            return

        tree_panel = Panel(
            self._build_tree(snapshot.courses),
            title="Courses",
            border_style="cyan",
            box=box.ROUNDED,
        )
        console.print(Columns([tree_panel, self._build_stats_panel(snapshot)], expand=True, equal=True))

    def _build_tree(self, courses: List[CourseOverview]) -> Tree:
        tree = Tree("[bold cyan]Courses", guide_style="cyan")
        for course in courses:
            node = tree.add(Text(course.name, style="bold"))
            for record in course.records:
                node.add(self._build_record_label(record))
        return tree

    @staticmethod
    def _build_record_label(record: Record) -> Text:
        label = Text(f"#{record.id} {record.title}", style="white")
        label.append("  ")
        label.append(KIND_LABELS.get(record.kind, record.kind), style="green")
        label.append(f"  by {record.author_handle}", style="dim")
        label.append(f"  👍 {record.likes} 👎 {record.dislikes}", style="dim")
        if record.description:
            label.append("\n")
            label.append(record.description, style="dim")
        return label

    @staticmethod
    def _build_stats_panel(snapshot: OverviewSnapshot) -> Panel:
        metrics = Table.grid(expand=True, padding=(0, 1))
        metrics.add_column(style="dim")
        metrics.add_column(justify="right", style="bold")
        metrics.add_row("Courses", str(len(snapshot.courses)))
        metrics.add_row("Records", str(snapshot.record_count))
        metrics.add_row("Stored", describe_size(snapshot.total_bytes))

        kinds = Table.grid(expand=True, padding=(0, 1))
        kinds.add_column(style="dim")
        kinds.add_column(justify="right", style="bold")
        for kind, label in KIND_LABELS.items():
            kinds.add_row(label, str(snapshot.kind_totals.get(kind, 0)))
        kinds.add_row("Likes", str(snapshot.likes))
        kinds.add_row("Dislikes", str(snapshot.dislikes))

        body = Group(metrics, Rule(style="magenta"), kinds)
        return Panel(body, title="At a glance", border_style="magenta", box=box.ROUNDED)

    def _collect_snapshot(self) -> OverviewSnapshot:
        records = self._store.load_all()
        if self._year is not None:
            records = [record for record in records if record.year_filter == self._year]

        courses: Dict[str, CourseOverview] = {}
        kind_totals = {kind: 0 for kind in KIND_LABELS}
        for record in records:
            courses.setdefault(record.course_name, CourseOverview(record.course_name)).records.append(record)
            kind_totals[record.kind] = kind_totals.get(record.kind, 0) + 1

        return OverviewSnapshot(
            courses=sorted(courses.values(), key=lambda course: course.name.lower()),
            record_count=len(records),
            kind_totals=kind_totals,
            total_bytes=sum(record.size_bytes for record in records),
            likes=sum(record.likes for record in records),
            dislikes=sum(record.dislikes for record in records),
        )


__all__ = ["OverviewUI"]
