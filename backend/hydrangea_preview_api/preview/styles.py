from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Literal


ColorKind = Literal["rgb", "argb", "theme", "indexed", "auto"]

# Office default theme, indexed the way SpreadsheetML addresses it:
# bg1, tx1, bg2, tx2, accent1..accent6. Tints are not applied.
THEME_COLORS: dict[int, str] = {
    0: "#FFFFFF",
    1: "#000000",
    2: "#E7E6E6",
    3: "#44546A",
    4: "#4472C4",
    5: "#ED7D31",
    6: "#A5A5A5",
    7: "#FFC000",
    8: "#5B9BD5",
    9: "#70AD47",
}

# Legacy BIFF palette entries 0-15, plus 64 (system foreground).
LEGACY_PALETTE: dict[int, str] = {
    0: "#000000",
    1: "#FFFFFF",
    2: "#FF0000",
    3: "#00FF00",
    4: "#0000FF",
    5: "#FFFF00",
    6: "#FF00FF",
    7: "#00FFFF",
    8: "#000000",
    9: "#FFFFFF",
    10: "#FF0000",
    11: "#00FF00",
    12: "#0000FF",
    13: "#FFFF00",
    14: "#FF00FF",
    15: "#00FFFF",
    64: "#000000",
}

BORDER_DECLARATION = "1px solid #000000"

_HEX_RE = re.compile(r"^[0-9A-Fa-f]{6}$")
_FONT_NAME_UNSAFE_RE = re.compile(r"[^\w \-]", re.UNICODE)

_HORIZONTAL = {
    "left": "left",
    "center": "center",
    "centerContinuous": "center",
    "right": "right",
    "justify": "justify",
    "distributed": "justify",
}
_VERTICAL = {
    "top": "top",
    "center": "middle",
    "bottom": "bottom",
    "justify": "middle",
    "distributed": "middle",
}


@dataclass(frozen=True)
class ColorSpec:
    kind: ColorKind
    value: str | int | None = None

    @classmethod
    def explicit(cls, rgb: str) -> "ColorSpec":
        raw = str(rgb or "").strip().lstrip("#")
        return cls(kind="argb" if len(raw) == 8 else "rgb", value=raw)

    @classmethod
    def theme(cls, index: int) -> "ColorSpec":
        return cls(kind="theme", value=int(index))

    @classmethod
    def indexed(cls, index: int) -> "ColorSpec":
        return cls(kind="indexed", value=int(index))

    @classmethod
    def from_openpyxl(cls, color: Any) -> "ColorSpec | None":
        if color is None:
            return None
        color_type = getattr(color, "type", None)
        if color_type == "rgb":
            return cls.explicit(str(getattr(color, "rgb", "") or ""))
        if color_type == "theme":
            return cls.theme(getattr(color, "theme", -1))
        if color_type == "indexed":
            return cls.indexed(getattr(color, "indexed", -1))
        return cls(kind="auto")


def resolve_color(spec: ColorSpec | None) -> str | None:
    """Map a color reference to ``#RRGGBB``, or ``None`` when it has no concrete color."""
    if spec is None:
        return None
    if spec.kind in {"rgb", "argb"}:
        raw = str(spec.value or "").strip().lstrip("#")
        if len(raw) == 8:
            raw = raw[2:]
        if not _HEX_RE.match(raw):
            return None
        return f"#{raw.upper()}"
    if spec.kind == "theme" and isinstance(spec.value, int):
        return THEME_COLORS.get(spec.value)
    if spec.kind == "indexed" and isinstance(spec.value, int):
        return LEGACY_PALETTE.get(spec.value)
    return None


def resolve_openpyxl_color(color: Any) -> str | None:
    return resolve_color(ColorSpec.from_openpyxl(color))


def safe_font_family(name: str | None) -> str | None:
    cleaned = _FONT_NAME_UNSAFE_RE.sub("", str(name or "")).strip()
    return cleaned or None


def _font_declarations(font: Any) -> list[str]:
    if font is None:
        return []
    out: list[str] = []
    if getattr(font, "bold", False):
        out.append("font-weight: bold")
    if getattr(font, "italic", False):
        out.append("font-style: italic")

    decorations = []
    underline = getattr(font, "underline", None)
    if underline and underline != "none":
        decorations.append("underline")
    if getattr(font, "strike", False):
        decorations.append("line-through")
    if decorations:
        out.append(f"text-decoration: {' '.join(decorations)}")

    size = getattr(font, "size", None)
    if size:
        try:
            out.append(f"font-size: {float(size):g}pt")
        except (TypeError, ValueError):
            pass

    family = safe_font_family(getattr(font, "name", None))
    if family:
        out.append(f"font-family: '{family}'")

    color = resolve_openpyxl_color(getattr(font, "color", None))
    if color:
        out.append(f"color: {color}")
    return out


_UNSET_RGB = "00000000"


def _is_unset_color(color: Any) -> bool:
    return getattr(color, "type", None) == "rgb" and str(getattr(color, "rgb", "") or "").upper() == _UNSET_RGB


def _fill_declarations(fill: Any) -> list[str]:
    # Unpatterned fills still carry default fgColor/bgColor values; ignore them.
    if fill is None or not getattr(fill, "fill_type", None):
        return []
    for attr in ("fgColor", "bgColor"):
        spec = getattr(fill, attr, None)
        if spec is None or _is_unset_color(spec):
            continue
        color = resolve_openpyxl_color(spec)
        if color:
            return [f"background-color: {color}"]
    return []


def _alignment_declarations(alignment: Any) -> list[str]:
    if alignment is None:
        return []
    out: list[str] = []
    horizontal = _HORIZONTAL.get(str(getattr(alignment, "horizontal", None) or ""))
    if horizontal:
        out.append(f"text-align: {horizontal}")
    vertical = _VERTICAL.get(str(getattr(alignment, "vertical", None) or ""))
    if vertical:
        out.append(f"vertical-align: {vertical}")
    if getattr(alignment, "wrap_text", False):
        out.append("white-space: normal")
        out.append("overflow-wrap: anywhere")
    return out


def _border_declarations(border: Any) -> list[str]:
    if border is None:
        return []
    out: list[str] = []
    for edge in ("top", "bottom", "left", "right"):
        side = getattr(border, edge, None)
        if side is not None and getattr(side, "style", None):
            out.append(f"border-{edge}: {BORDER_DECLARATION}")
    return out


def cell_styles(cell: Any) -> tuple[str, ...]:
    """Fold a cell's font, fill, alignment and border into CSS declarations."""
    if not getattr(cell, "has_style", True):
        return ()
    return tuple(
        [
            *_font_declarations(getattr(cell, "font", None)),
            *_fill_declarations(getattr(cell, "fill", None)),
            *_alignment_declarations(getattr(cell, "alignment", None)),
            *_border_declarations(getattr(cell, "border", None)),
        ]
    )


def style_attribute(declarations: tuple[str, ...] | list[str]) -> str:
    return "; ".join(declarations)
