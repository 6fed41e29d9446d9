from __future__ import annotations

import io
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any, ClassVar, Iterable

from openpyxl import load_workbook
from openpyxl.utils.cell import range_boundaries
from openpyxl.worksheet.worksheet import Worksheet

from .errors import DecodeFailure
from .markup import esc, escape_text, link
from .styles import cell_styles, style_attribute


logger = logging.getLogger(__name__)

Coordinate = tuple[int, int]

_FORMAT_NOISE_RE = re.compile(r'\[[^\]]*\]|"[^"]*"|_.|\*.|\\.')
_NUMBER_FORMAT_RE = re.compile(r"^(?P<int>[#,0]*0)(?:\.(?P<dec>0+))?(?P<pct>%)?$")


def column_label(index: int) -> str:
    """Zero-based column index to its letter label: 0 -> A, 25 -> Z, 26 -> AA."""
    if index < 0:
        raise ValueError("column index must be non-negative")
    letters: list[str] = []
    n = index + 1
    while n:
        n, rem = divmod(n - 1, 26)
        letters.append(chr(ord("A") + rem))
    return "".join(reversed(letters))


def column_index(label: str) -> int:
    text = str(label or "").strip().upper()
    if not text or not all("A" <= ch <= "Z" for ch in text):
        raise ValueError(f"invalid column label: {label!r}")
    n = 0
    for ch in text:
        n = n * 26 + (ord(ch) - ord("A") + 1)
    return n - 1


@dataclass(frozen=True)
class MergeRegion:
    row: int
    col: int
    rows: int
    cols: int

    @classmethod
    def from_bounds(cls, min_row: int, min_col: int, max_row: int, max_col: int) -> "MergeRegion":
        return cls(row=min_row, col=min_col, rows=max_row - min_row + 1, cols=max_col - min_col + 1)

    @property
    def anchor(self) -> Coordinate:
        return (self.row, self.col)

    @property
    def last_row(self) -> int:
        return self.row + self.rows - 1

    @property
    def last_col(self) -> int:
        return self.col + self.cols - 1

    def covered(self) -> Iterable[Coordinate]:
        for r in range(self.row, self.row + self.rows):
            for c in range(self.col, self.col + self.cols):
                if (r, c) != self.anchor:
                    yield (r, c)


@dataclass(frozen=True)
class Cell:
    display_text: str
    styles: tuple[str, ...] = ()
    hyperlink: str | None = None
    span_rows: int = 1
    span_cols: int = 1

    def to_html(self) -> str:
        attrs = []
        if self.span_rows > 1:
            attrs.append(f' rowspan="{self.span_rows}"')
        if self.span_cols > 1:
            attrs.append(f' colspan="{self.span_cols}"')
        if self.styles:
            attrs.append(f' style="{esc(style_attribute(self.styles))}"')
        body = escape_text(self.display_text)
        if self.hyperlink:
            body = link(body, self.hyperlink)
        return f"<td{''.join(attrs)}>{body}</td>"

    def to_dict(self) -> dict:
        return {
            "text": self.display_text,
            "styles": list(self.styles),
            "hyperlink": self.hyperlink,
            "span_rows": self.span_rows,
            "span_cols": self.span_cols,
        }


@dataclass(frozen=True)
class RenderedGrid:
    sheet_name: str
    max_row: int
    max_col: int
    cells: dict[Coordinate, Cell] = field(default_factory=dict)

    def get(self, row: int, col: int) -> Cell | None:
        return self.cells.get((row, col))

    def column_labels(self) -> list[str]:
        return [column_label(i) for i in range(self.max_col)]

    def to_html(self) -> str:
        parts = ['<table class="sheet-grid">', '<thead><tr><th class="corner"></th>']
        parts.extend(f'<th class="col-label">{label}</th>' for label in self.column_labels())
        parts.append("</tr></thead><tbody>")
        for r in range(1, self.max_row + 1):
            parts.append(f'<tr><th class="row-label">{r}</th>')
            for c in range(1, self.max_col + 1):
                cell = self.cells.get((r, c))
                if cell is not None:
                    parts.append(cell.to_html())
            parts.append("</tr>")
        parts.append("</tbody></table>")
        return "".join(parts)

    def to_dict(self) -> dict:
        return {
            "sheet_name": self.sheet_name,
            "max_row": self.max_row,
            "max_col": self.max_col,
            "column_labels": self.column_labels(),
            "cells": [
                {"row": r, "col": c, **cell.to_dict()}
                for (r, c), cell in sorted(self.cells.items())
            ],
        }


@dataclass(frozen=True)
class TabularDocument:
    kind: ClassVar[str] = "tabular-document"

    sheet_names: tuple[str, ...]
    active_sheet: str
    grid: RenderedGrid

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "sheet_names": list(self.sheet_names),
            "active_sheet": self.active_sheet,
            "html": self.grid.to_html(),
            "grid": self.grid.to_dict(),
        }


def build_merge_index(regions: Iterable[MergeRegion]) -> tuple[dict[Coordinate, MergeRegion], set[Coordinate]]:
    anchors: dict[Coordinate, MergeRegion] = {}
    skip: set[Coordinate] = set()
    for region in regions:
        anchors[region.anchor] = region
        skip.update(region.covered())
    return anchors, skip


def build_hyperlink_index(entries: Iterable[tuple[str, str]]) -> dict[Coordinate, str]:
    """Index ``(ref, target)`` entries by coordinate.

    ``ref`` is a cell reference (``B1``) or a range (``A1:C3``). A link bound to a
    single cell wins over a range entry covering the same cell.
    """
    index: dict[Coordinate, str] = {}
    direct: set[Coordinate] = set()
    for ref, target in entries:
        if not ref or not target:
            continue
        try:
            min_col, min_row, max_col, max_row = range_boundaries(ref.upper())
        except (TypeError, ValueError):
            continue
        single = min_row == max_row and min_col == max_col and ":" not in ref
        for r in range(min_row, max_row + 1):
            for c in range(min_col, max_col + 1):
                key = (r, c)
                if single:
                    index[key] = target
                    direct.add(key)
                elif key not in direct:
                    index[key] = target
    return index


def _link_target(hyperlink: Any) -> str | None:
    if hyperlink is None:
        return None
    target = str(getattr(hyperlink, "target", None) or "").strip()
    if target:
        return target
    location = str(getattr(hyperlink, "location", None) or "").strip()
    return f"#{location}" if location else None


def _worksheet_links(ws: Worksheet) -> list[tuple[str, str]]:
    entries: list[tuple[str, str]] = []
    for row in ws.iter_rows():
        for cell in row:
            target = _link_target(getattr(cell, "hyperlink", None))
            if target:
                ref = str(getattr(cell.hyperlink, "ref", None) or cell.coordinate)
                entries.append((ref, target))
    return entries


def _format_number(value: float, number_format: str | None) -> str | None:
    fmt = str(number_format or "General").split(";", 1)[0]
    fmt = _FORMAT_NOISE_RE.sub("", fmt).replace("$", "").strip()
    if not fmt or fmt.lower() == "general" or fmt == "@":
        return None
    m = _NUMBER_FORMAT_RE.match(fmt)
    if not m:
        return None
    decimals = len(m.group("dec") or "")
    if m.group("pct"):
        return f"{value * 100:.{decimals}f}%"
    if "," in m.group("int"):
        return f"{value:,.{decimals}f}"
    return f"{value:.{decimals}f}"


def _format_temporal(value: Any, number_format: str | None) -> str | None:
    fmt = str(number_format or "").lower()
    time_fmt = "%H:%M:%S" if "s" in fmt else "%H:%M"
    if isinstance(value, datetime):
        if "h" in fmt:
            return value.strftime(f"%Y-%m-%d {time_fmt}")
        return value.strftime("%Y-%m-%d")
    if isinstance(value, date):
        return value.strftime("%Y-%m-%d")
    if isinstance(value, time):
        return value.strftime(time_fmt)
    if isinstance(value, timedelta):
        total = int(value.total_seconds())
        sign = "-" if total < 0 else ""
        hours, rest = divmod(abs(total), 3600)
        minutes, seconds = divmod(rest, 60)
        return f"{sign}{hours}:{minutes:02d}:{seconds:02d}"
    return None


def _formatted_value(value: Any, number_format: str | None) -> str | None:
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (datetime, date, time, timedelta)):
        return _format_temporal(value, number_format)
    if isinstance(value, (int, float)):
        return _format_number(float(value), number_format)
    return None


def _raw_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return f"{value:.15g}"
    return str(value)


def display_text(cell: Any) -> str:
    value = getattr(cell, "value", None)
    if value is None:
        return ""
    formatted = _formatted_value(value, getattr(cell, "number_format", None))
    return formatted if formatted is not None else _raw_text(value)


def render_worksheet(ws: Worksheet) -> RenderedGrid:
    regions = [
        MergeRegion.from_bounds(rng.min_row, rng.min_col, rng.max_row, rng.max_col)
        for rng in ws.merged_cells.ranges
    ]
    anchors, skip = build_merge_index(regions)
    links = build_hyperlink_index(_worksheet_links(ws))

    # Rendering always starts at A1 so labels line up with the workbook's addressing.
    max_row = max([ws.max_row or 1, *(region.last_row for region in regions)])
    max_col = max([ws.max_column or 1, *(region.last_col for region in regions)])

    cells: dict[Coordinate, Cell] = {}
    for row in ws.iter_rows(min_row=1, max_row=max_row, min_col=1, max_col=max_col):
        for cell in row:
            key = (cell.row, cell.column)
            if key in skip:
                continue
            region = anchors.get(key)
            cells[key] = Cell(
                display_text=display_text(cell),
                styles=cell_styles(cell),
                hyperlink=links.get(key),
                span_rows=region.rows if region else 1,
                span_cols=region.cols if region else 1,
            )
    return RenderedGrid(sheet_name=ws.title, max_row=max_row, max_col=max_col, cells=cells)


class DecodedWorkbook:
    """An openpyxl workbook held in memory so sheet switches never refetch bytes."""

    def __init__(self, workbook: Any) -> None:
        self._workbook = workbook
        self.sheet_names: tuple[str, ...] = tuple(workbook.sheetnames)

    @property
    def first_sheet(self) -> str:
        return self.sheet_names[0]

    @property
    def released(self) -> bool:
        return self._workbook is None

    def render(self, sheet_name: str) -> RenderedGrid:
        if self._workbook is None:
            raise RuntimeError("workbook has been released")
        if sheet_name not in self.sheet_names:
            raise KeyError(sheet_name)
        sheet = self._workbook[sheet_name]
        if not isinstance(sheet, Worksheet):
            return RenderedGrid(sheet_name=sheet_name, max_row=1, max_col=1, cells={(1, 1): Cell("")})
        return render_worksheet(sheet)

    def document(self, sheet_name: str | None = None) -> TabularDocument:
        active = sheet_name or self.first_sheet
        return TabularDocument(sheet_names=self.sheet_names, active_sheet=active, grid=self.render(active))

    def release(self) -> None:
        workbook, self._workbook = self._workbook, None
        if workbook is not None:
            workbook.close()


class TabularReconstructor:
    def decode(self, data: bytes) -> DecodedWorkbook:
        try:
            workbook = load_workbook(filename=io.BytesIO(data), data_only=True)
        except Exception as e:
            logger.warning("workbook decode failed: %s", e)
            raise DecodeFailure(detail=str(e)) from e
        if not workbook.sheetnames:
            workbook.close()
            raise DecodeFailure(detail="workbook has no sheets")
        return DecodedWorkbook(workbook)
