"""
reporting
=========

Terminal and Markdown rendering of diff results.

Every diff is first turned into a :class:`Section` (a title, headers, styled
cells and the summary line). Sections are printed as borderless ``rich``
tables and, with ``--report``, collected into one Markdown file.

Primary API
-----------
- :func:`columns_section`, :func:`indexes_section`, :func:`tables_section`,
  :func:`rows_section`
- :func:`print_section`
- :func:`generate_summary_md`

"""

from __future__ import annotations

import datetime as dt
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence

from rich import box
from rich.console import Console
from rich.table import Table
from rich.text import Text

from .models import DiffEntry, DiffResult, DiffStatus
from .streams import display_value, value_or_diff
from .utils import pretty_bytes, write_text

STATUS_STYLES = {
    DiffStatus.CREATED: "green",
    DiffStatus.DELETED: "red",
}

HIDDEN_HINT = "Some entries are hidden, use --all to show them."


@dataclass(frozen=True)
class Cell:
    text: str
    style: Optional[str] = None


@dataclass(frozen=True)
class Section:
    """One rendered diff: a table plus its ``<title>: <summary>`` line."""
    title: str
    headers: List[str]
    rows: List[List[Cell]] = field(default_factory=list)
    summary: str = "none"
    caption: str = ""

    @property
    def has_hidden(self) -> bool:
        return "(hidden)" in self.summary


def md_anchor(title: str) -> str:
    """Convert a title into a GitHub-style Markdown anchor."""
    return re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")


def _entry_cell(entry: DiffEntry, getter: Callable[[Any], Any]) -> Cell:
    style = STATUS_STYLES.get(entry.status)
    if entry.before is not None and entry.after is not None:
        return Cell(value_or_diff(getter(entry.before), getter(entry.after)), style)
    return Cell(str(display_value(getter(entry.current))), style)


def _entry_row(entry: DiffEntry, getters: Sequence[Callable[[Any], Any]]) -> List[Cell]:
    return [Cell(entry.key, STATUS_STYLES.get(entry.status))] + [_entry_cell(entry, g) for g in getters]


def columns_section(result: DiffResult, title: str = "Columns") -> Section:
    getters = [
        lambda c: c.full_type,
        lambda c: c.nullable,
        lambda c: c.default,
        lambda c: str(c.foreign_key) if c.foreign_key else None,
    ]
    return Section(
        title=title,
        headers=["column", "type", "nullable", "default", "foreign key"],
        rows=[_entry_row(e, getters) for e in result.entries],
        summary=result.summary,
    )


def indexes_section(result: DiffResult, title: str = "Indexes") -> Section:
    getters = [
        lambda i: i.unique,
        lambda i: i.algorithm,
        lambda i: ", ".join(i.columns),
    ]
    return Section(
        title=title,
        headers=["index", "unique", "algorithm", "columns"],
        rows=[_entry_row(e, getters) for e in result.entries],
        summary=result.summary,
    )


def tables_section(result: DiffResult, title: str = "Tables") -> Section:
    """Schema level view: one row per table with its nested diff summaries."""
    getters = [
        lambda t: t.row_count,
        lambda t: pretty_bytes(t.byte_size),
    ]
    rows = []
    for entry in result.entries:
        row = _entry_row(entry, getters)
        style = STATUS_STYLES.get(entry.status)
        for name in ("columns", "indexes"):
            nested = entry.nested.get(name)
            row.append(Cell(nested.summary if nested else "none", style))
        rows.append(row)
    return Section(
        title=title,
        headers=["table", "rows", "bytes", "columns", "indexes"],
        rows=rows,
        summary=result.summary,
    )


def rows_section(result: DiffResult, id_key: str, caption: str = "", title: str = "Rows") -> Section:
    """Data diff view; the key column comes first."""
    headers: List[str] = [id_key]
    for row in result.entries:
        headers.extend(k for k in row if k not in headers)
    rows = [[Cell(str(row.get(h, display_value(None)))) for h in headers] for row in result.entries]
    return Section(title=title, headers=headers, rows=rows, summary=result.summary, caption=caption)


def to_rich_table(section: Section) -> Table:
    table = Table(box=box.SIMPLE_HEAD, show_edge=False, pad_edge=False)
    for header in section.headers:
        table.add_column(header, overflow="fold")
    for row in section.rows:
        table.add_row(*(Text(cell.text, style=cell.style or "") for cell in row))
    return table


def print_section(console: Console, section: Section) -> None:
    """Print the caption, the table (when it has rows) and the summary line."""
    if section.caption:
        console.print(section.caption, markup=False, highlight=False)
    if section.rows:
        console.print(to_rich_table(section))
    console.print(f"{section.title}: {section.summary}", markup=False, highlight=False)


def _md_escape(text: str) -> str:
    return text.replace("|", "\\|").replace("\n", " ")


def section_markdown(section: Section) -> str:
    lines = [f"{section.caption}\n\n"] if section.caption else []
    lines.append(f"_{section.title}: {_md_escape(section.summary)}_\n\n")
    if not section.rows:
        lines.append("- No differences\n\n")
        return "".join(lines)
    lines.append("| " + " | ".join(_md_escape(h) for h in section.headers) + " |\n")
    lines.append("|" + "---|" * len(section.headers) + "\n")
    for row in section.rows:
        lines.append("| " + " | ".join(_md_escape(c.text) for c in row) + " |\n")
    lines.append("\n")
    return "".join(lines)


def generate_summary_md(path: Path, header_lines: List[str], sections: List[Section]) -> Path:
    """Write a Markdown report of *sections*.

    Parameters
    ----------
    path:
        Report file to write (parent directories are created).
    header_lines:
        Bullet-style lines to include near the top (targets/options).
    sections:
        Rendered diffs, one Markdown section each.

    Returns
    -------
    pathlib.Path
        The path of the written report.
    """
    now = dt.datetime.now().strftime("%Y-%m-%d %H:%M:%S")

    lines: List[str] = []
    lines.append("# sqldelta diff report\n\n")
    lines.append(f"_Generated: {now}_\n\n")

    if header_lines:
        for h in header_lines:
            lines.append(h + "\n")
        lines.append("\n")

    lines.append("## Contents\n")
    for section in sections:
        lines.append(f"- [{section.title}](#{md_anchor(section.title)})\n")
    lines.append("\n")

    for section in sections:
        lines.append(f"## {section.title}\n\n")
        lines.append(section_markdown(section))

    write_text(path, "".join(lines))
    return path
