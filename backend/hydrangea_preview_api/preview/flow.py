from __future__ import annotations

import base64
import io
import logging
import re
from dataclasses import dataclass, field
from typing import Any, ClassVar, Iterator

from docx import Document
from docx.enum.section import WD_SECTION
from docx.enum.style import WD_STYLE_TYPE
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.opc.constants import RELATIONSHIP_TYPE as RT
from docx.oxml import parse_xml
from docx.oxml.ns import qn

from .classifier import FLOW
from .errors import DecodeFailure
from .markup import esc, link
from .styles import ColorSpec, resolve_color, safe_font_family


logger = logging.getLogger(__name__)

EMU_PER_PX = 9525
TWIPS_PER_PT = 20.0

# Letter portrait with 1in margins, used when a section omits its geometry.
DEFAULT_PAGE_PT = (612.0, 792.0)
DEFAULT_MARGIN_PT = 72.0

CSP_POLICY = "default-src 'none'; img-src data:; style-src 'unsafe-inline'; font-src data:"
IFRAME_SANDBOX = "allow-popups allow-popups-to-escape-sandbox"

NEUTRAL_PAGE_RULES = (
    "html, body { margin: 0; padding: 0; background: #808080; }\n"
    "body { padding: 24px 0; }"
)

BASE_RULES = """
p { margin: 0; min-height: 1em; }
.docx-page { background: #FFFFFF; color: #000000; box-sizing: border-box; margin: 0 auto 24px; box-shadow: 0 0 8px rgba(0, 0, 0, 0.4); display: flex; flex-direction: column; overflow: hidden; }
.docx-body { flex: 1 1 auto; }
.docx-tab { display: inline-block; width: 36pt; }
.docx-table { border-collapse: collapse; }
.docx-table td { vertical-align: top; padding: 0 5.4pt; }
.docx-table-bordered td { border: 1px solid #000000; }
.docx-image { max-width: 100%; }
.docx-list-marker { display: inline-block; min-width: 18pt; }
.docx-footnotes, .docx-endnotes { border-top: 1px solid #000000; margin-top: 12pt; padding-top: 6pt; font-size: 9pt; }
""".strip()

_W_P = qn("w:p")
_W_R = qn("w:r")
_W_T = qn("w:t")
_W_TBL = qn("w:tbl")
_W_TR = qn("w:tr")
_W_TC = qn("w:tc")
_W_SDT = qn("w:sdt")
_W_SDT_CONTENT = qn("w:sdtContent")
_W_PPR = qn("w:pPr")
_W_RPR = qn("w:rPr")
_W_VAL = qn("w:val")
_W_ID = qn("w:id")
_W_TYPE = qn("w:type")

_PASSTHROUGH_INLINE = {qn("w:ins"), qn("w:smartTag"), qn("w:fldSimple"), qn("w:customXml"), _W_SDT_CONTENT}
_PASSTHROUGH_BLOCK = {qn("w:customXml"), _W_SDT_CONTENT}
_NOTE_SEPARATORS = {"separator", "continuationSeparator", "continuationNotice"}

_JUSTIFICATION = {
    "left": "left",
    "start": "left",
    "center": "center",
    "right": "right",
    "end": "right",
    "both": "justify",
    "distribute": "justify",
}
_ALIGNMENT = {
    WD_ALIGN_PARAGRAPH.LEFT: "left",
    WD_ALIGN_PARAGRAPH.CENTER: "center",
    WD_ALIGN_PARAGRAPH.RIGHT: "right",
    WD_ALIGN_PARAGRAPH.JUSTIFY: "justify",
    WD_ALIGN_PARAGRAPH.DISTRIBUTE: "justify",
}
_HIGHLIGHT = {
    "yellow": "#FFFF00",
    "green": "#00FF00",
    "cyan": "#00FFFF",
    "magenta": "#FF00FF",
    "blue": "#0000FF",
    "red": "#FF0000",
    "darkBlue": "#000080",
    "darkCyan": "#008080",
    "darkGreen": "#008000",
    "darkMagenta": "#800080",
    "darkRed": "#800000",
    "darkYellow": "#808000",
    "darkGray": "#808080",
    "lightGray": "#C0C0C0",
    "black": "#000000",
    "white": "#FFFFFF",
}

_CLASS_UNSAFE_RE = re.compile(r"[^A-Za-z0-9_\-]")
_ANCHOR_UNSAFE_RE = re.compile(r"[^\w\-]", re.UNICODE)
_LEVEL_PLACEHOLDER_RE = re.compile(r"%([1-9])")
_ROMAN = [(1000, "m"), (900, "cm"), (500, "d"), (400, "cd"), (100, "c"), (90, "xc"), (50, "l"), (40, "xl"), (10, "x"), (9, "ix"), (5, "v"), (4, "iv"), (1, "i")]

_PAGE_BREAK = object()


@dataclass(frozen=True)
class _FootnoteBlock:
    """A footnote body travelling with the paragraph fragment that references it."""

    markup: str


@dataclass(frozen=True)
class FlowDocument:
    kind: ClassVar[str] = FLOW

    body_markup: str
    style_rules: str
    page_count: int = 1
    isolation_boundary: bool = True

    def standalone(self) -> str:
        """One self-contained HTML document: neutral page background, CSP, styles, body."""
        return (
            "<!doctype html>"
            '<html><head><meta charset="utf-8">'
            f'<meta http-equiv="Content-Security-Policy" content="{esc(CSP_POLICY)}">'
            f"<style>\n{NEUTRAL_PAGE_RULES}\n{self.style_rules}\n</style>"
            f'</head><body class="docx-wrapper">{self.body_markup}</body></html>'
        )

    def embed(self) -> str:
        return (
            f'<iframe class="docx-frame" sandbox="{IFRAME_SANDBOX}" referrerpolicy="no-referrer" '
            f'srcdoc="{esc(self.standalone())}"></iframe>'
        )

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "page_count": self.page_count,
            "isolation_boundary": self.isolation_boundary,
            "html": self.embed(),
        }


def _style_class(style_id: str | None) -> str | None:
    cleaned = _CLASS_UNSAFE_RE.sub("", str(style_id or ""))
    return f"docx-style-{cleaned}" if cleaned else None


def _anchor_id(name: str | None) -> str:
    return _ANCHOR_UNSAFE_RE.sub("_", str(name or ""))


def _is_on(el: Any) -> bool | None:
    if el is None:
        return None
    return str(el.get(_W_VAL) or "true").lower() not in {"0", "false", "off"}


def _int_attr(el: Any, name: str, default: int = 0) -> int:
    if el is None:
        return default
    try:
        return int(str(el.get(qn(name) if ":" in name else name)))
    except (TypeError, ValueError):
        return default


def _pt(length: Any, default: float) -> float:
    if length is None:
        return default
    return float(length.pt)


def _hex_color(value: str | None) -> str | None:
    raw = str(value or "").strip()
    if not raw or raw.lower() == "auto":
        return None
    return resolve_color(ColorSpec.explicit(raw))


def _roman(n: int) -> str:
    out = []
    for value, numeral in _ROMAN:
        while n >= value:
            out.append(numeral)
            n -= value
    return "".join(out)


def format_counter(n: int, fmt: str) -> str:
    if fmt == "lowerLetter":
        return chr(ord("a") + (n - 1) % 26) * ((n - 1) // 26 + 1)
    if fmt == "upperLetter":
        return chr(ord("A") + (n - 1) % 26) * ((n - 1) // 26 + 1)
    if fmt == "lowerRoman":
        return _roman(n)
    if fmt == "upperRoman":
        return _roman(n).upper()
    if fmt == "none":
        return ""
    return str(n)


@dataclass
class _Level:
    fmt: str = "decimal"
    text: str = "%1."
    start: int = 1


class _Numbering:
    """List numbering from ``numbering.xml`` with running counters per list."""

    def __init__(self, root: Any | None) -> None:
        self._levels: dict[str, dict[int, _Level]] = {}
        self._counters: dict[str, dict[int, int]] = {}
        if root is None:
            return
        abstract: dict[str, dict[int, _Level]] = {}
        for an in root.iterchildren(qn("w:abstractNum")):
            levels: dict[int, _Level] = {}
            for lvl in an.iterchildren(qn("w:lvl")):
                fmt = lvl.find(qn("w:numFmt"))
                text = lvl.find(qn("w:lvlText"))
                start = lvl.find(qn("w:start"))
                levels[_int_attr(lvl, "w:ilvl")] = _Level(
                    fmt=str(fmt.get(_W_VAL)) if fmt is not None else "decimal",
                    text=str(text.get(_W_VAL) or "") if text is not None else "",
                    start=_int_attr(start, "w:val", 1),
                )
            abstract[str(an.get(qn("w:abstractNumId")))] = levels
        for num in root.iterchildren(qn("w:num")):
            ref = num.find(qn("w:abstractNumId"))
            if ref is not None:
                self._levels[str(num.get(qn("w:numId")))] = abstract.get(str(ref.get(_W_VAL)), {})

    def marker(self, num_id: str, ilvl: int) -> str:
        levels = self._levels.get(num_id)
        if not levels:
            return "•"
        level = levels.get(ilvl, _Level())
        counters = self._counters.setdefault(num_id, {})
        counters[ilvl] = counters.get(ilvl, level.start - 1) + 1
        for deeper in [k for k in counters if k > ilvl]:
            del counters[deeper]
        if level.fmt == "bullet":
            glyph = level.text.strip()
            # Symbol/Wingdings glyphs live in the private use area.
            if not glyph or any(0xE000 <= ord(ch) <= 0xF8FF for ch in glyph):
                return "•"
            return glyph

        def _sub(m: re.Match[str]) -> str:
            idx = int(m.group(1)) - 1
            lvl = levels.get(idx, _Level())
            return format_counter(counters.get(idx, lvl.start), lvl.fmt)

        return _LEVEL_PLACEHOLDER_RE.sub(_sub, level.text)


@dataclass
class _Page:
    section: int
    blocks: list[str] = field(default_factory=list)
    footnotes: list[str] = field(default_factory=list)


class _FlowWriter:
    def __init__(self, document: Any) -> None:
        self._doc = document
        self._part = document.part
        self._sections = list(document.sections)

        default_style = document.styles.default(WD_STYLE_TYPE.PARAGRAPH)
        self._default_style_id = default_style.style_id if default_style is not None else None
        self._style_num_pr = self._collect_style_numbering()

        self._numbering = _Numbering(self._related_root(RT.NUMBERING)[1])
        self._footnote_part, self._footnotes = self._load_notes(RT.FOOTNOTES, qn("w:footnote"))
        self._endnote_part, self._endnotes = self._load_notes(RT.ENDNOTES, qn("w:endnote"))
        self._footnote_seq = 0
        self._endnote_seq = 0
        self._note_label: str | None = None

        self._pages: list[_Page] = []
        self._page = _Page(section=0)
        self._endnote_blocks: list[str] = []

    # -- package helpers -------------------------------------------------

    def _related_root(self, reltype: str) -> tuple[Any | None, Any | None]:
        for rel in self._part.rels.values():
            if rel.reltype == reltype and not rel.is_external:
                target = rel.target_part
                return target, parse_xml(target.blob)
        return None, None

    def _load_notes(self, reltype: str, tag: str) -> tuple[Any | None, dict[str, Any]]:
        part, root = self._related_root(reltype)
        if root is None:
            return None, {}
        notes = {}
        for note in root.iterchildren(tag):
            if note.get(_W_TYPE) in _NOTE_SEPARATORS:
                continue
            notes[str(note.get(_W_ID))] = note
        return part, notes

    def _collect_style_numbering(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for style in self._doc.styles:
            if style.type != WD_STYLE_TYPE.PARAGRAPH:
                continue
            current = style
            while current is not None:
                p_pr = current.element.find(_W_PPR)
                num_pr = p_pr.find(qn("w:numPr")) if p_pr is not None else None
                if num_pr is not None:
                    out[style.style_id] = num_pr
                    break
                current = current.base_style
        return out

    # -- stylesheet ------------------------------------------------------

    def style_rules(self) -> str:
        rules = [BASE_RULES]
        for i, section in enumerate(self._sections):
            width = _pt(section.page_width, DEFAULT_PAGE_PT[0])
            height = _pt(section.page_height, DEFAULT_PAGE_PT[1])
            top = _pt(section.top_margin, DEFAULT_MARGIN_PT)
            right = _pt(section.right_margin, DEFAULT_MARGIN_PT)
            bottom = _pt(section.bottom_margin, DEFAULT_MARGIN_PT)
            left = _pt(section.left_margin, DEFAULT_MARGIN_PT)
            rules.append(
                f".docx-section-{i} {{ width: {width:g}pt; min-height: {height:g}pt; "
                f"padding: {top:g}pt {right:g}pt {bottom:g}pt {left:g}pt; }}"
            )
        for style in self._doc.styles:
            if style.type not in (WD_STYLE_TYPE.PARAGRAPH, WD_STYLE_TYPE.CHARACTER):
                continue
            cls = _style_class(style.style_id)
            if not cls:
                continue
            chain = []
            current = style
            while current is not None:
                chain.append(current)
                current = current.base_style
            decls: dict[str, str] = {}
            for s in reversed(chain):
                decls.update(_font_rules(s.font))
                if s.type == WD_STYLE_TYPE.PARAGRAPH:
                    decls.update(_paragraph_rules(s.paragraph_format))
            if decls:
                body = "; ".join(f"{k}: {v}" for k, v in decls.items())
                rules.append(f".{cls} {{ {body}; }}")
        return "\n".join(rules)

    # -- body ------------------------------------------------------------

    def render_body(self) -> tuple[str, int]:
        chrome = self._section_chrome()
        section = 0
        self._page = _Page(section=0)
        for child in self._block_children(self._doc.element.body):
            if child.tag == _W_P:
                p_pr = child.find(_W_PPR)
                if p_pr is not None and _is_on(p_pr.find(qn("w:pageBreakBefore"))) and self._page.blocks:
                    self._break_page(section)
                for i, (fragment, notes) in enumerate(self._paragraph(child, self._part, paginate=True)):
                    if i:
                        self._break_page(section)
                    if fragment:
                        self._page.blocks.append(fragment)
                    self._page.footnotes.extend(notes)
                sect_pr = p_pr.find(qn("w:sectPr")) if p_pr is not None else None
                if sect_pr is not None and section + 1 < len(self._sections):
                    section += 1
                    if self._sections[section].start_type != WD_SECTION.CONTINUOUS:
                        self._break_page(section)
            elif child.tag == _W_TBL:
                self._page.blocks.append(self._table(child, self._part))
        self._pages.append(self._page)

        parts = []
        last = len(self._pages) - 1
        for n, page in enumerate(self._pages):
            header, footer = chrome[page.section] if page.section < len(chrome) else ("", "")
            html = [f'<section class="docx-page docx-section-{page.section}">']
            if header:
                html.append(f'<header class="docx-header">{header}</header>')
            html.append(f'<article class="docx-body">{"".join(page.blocks)}</article>')
            if page.footnotes:
                html.append(f'<aside class="docx-footnotes">{"".join(page.footnotes)}</aside>')
            if n == last and self._endnote_blocks:
                html.append(f'<aside class="docx-endnotes">{"".join(self._endnote_blocks)}</aside>')
            if footer:
                html.append(f'<footer class="docx-footer">{footer}</footer>')
            html.append("</section>")
            parts.append("".join(html))
        return "".join(parts), len(self._pages)

    def _break_page(self, section: int) -> None:
        self._pages.append(self._page)
        self._page = _Page(section=section)

    def _section_chrome(self) -> list[tuple[str, str]]:
        out = []
        header_html = footer_html = ""
        for section in self._sections:
            header = section.header
            if not header.is_linked_to_previous:
                header_html = "".join(self._blocks(header._element, header.part))
            footer = section.footer
            if not footer.is_linked_to_previous:
                footer_html = "".join(self._blocks(footer._element, footer.part))
            out.append((header_html, footer_html))
        return out

    def _block_children(self, container: Any) -> Iterator[Any]:
        for child in container.iterchildren():
            if child.tag == _W_SDT:
                content = child.find(_W_SDT_CONTENT)
                if content is not None:
                    yield from self._block_children(content)
            elif child.tag in _PASSTHROUGH_BLOCK:
                yield from self._block_children(child)
            elif child.tag in (_W_P, _W_TBL):
                yield child

    def _blocks(self, container: Any, part: Any) -> Iterator[str]:
        for child in self._block_children(container):
            if child.tag == _W_P:
                yield "".join(fragment for fragment, _ in self._paragraph(child, part, paginate=False))
            else:
                yield self._table(child, part)

    # -- paragraphs and runs --------------------------------------------

    def _paragraph(self, p: Any, part: Any, *, paginate: bool) -> list[tuple[str, list[str]]]:
        p_pr = p.find(_W_PPR)
        classes, decls, num_pr = self._paragraph_format(p_pr)

        fragments: list[list[str]] = [[]]
        notes: list[list[str]] = [[]]
        marker = self._list_marker(num_pr)
        if marker:
            fragments[0].append(f'<span class="docx-list-marker">{esc(marker)}</span>')
        for piece in self._inline(p, part, paginate):
            if piece is _PAGE_BREAK:
                fragments.append([])
                notes.append([])
            elif isinstance(piece, _FootnoteBlock):
                notes[-1].append(piece.markup)
            else:
                fragments[-1].append(piece)

        attrs = f' class="{" ".join(classes)}"' if classes else ""
        if decls:
            attrs += f' style="{esc("; ".join(decls))}"'
        out = []
        for pieces, fragment_notes in zip(fragments, notes):
            if not pieces and len(fragments) > 1:
                out.append(("", fragment_notes))
                continue
            out.append((f"<p{attrs}>{''.join(pieces)}</p>", fragment_notes))
        return out

    def _paragraph_format(self, p_pr: Any) -> tuple[list[str], list[str], Any]:
        style_id = self._default_style_id
        decls: list[str] = []
        num_pr = None
        if p_pr is not None:
            p_style = p_pr.find(qn("w:pStyle"))
            if p_style is not None and p_style.get(_W_VAL):
                style_id = str(p_style.get(_W_VAL))
            jc = p_pr.find(qn("w:jc"))
            if jc is not None and _JUSTIFICATION.get(str(jc.get(_W_VAL))):
                decls.append(f"text-align: {_JUSTIFICATION[str(jc.get(_W_VAL))]}")
            ind = p_pr.find(qn("w:ind"))
            if ind is not None:
                left = _int_attr(ind, "w:left", _int_attr(ind, "w:start"))
                right = _int_attr(ind, "w:right", _int_attr(ind, "w:end"))
                first = _int_attr(ind, "w:firstLine") - _int_attr(ind, "w:hanging")
                if left:
                    decls.append(f"margin-left: {left / TWIPS_PER_PT:g}pt")
                if right:
                    decls.append(f"margin-right: {right / TWIPS_PER_PT:g}pt")
                if first:
                    decls.append(f"text-indent: {first / TWIPS_PER_PT:g}pt")
            spacing = p_pr.find(qn("w:spacing"))
            if spacing is not None:
                if spacing.get(qn("w:before")) is not None:
                    decls.append(f"margin-top: {_int_attr(spacing, 'w:before') / TWIPS_PER_PT:g}pt")
                if spacing.get(qn("w:after")) is not None:
                    decls.append(f"margin-bottom: {_int_attr(spacing, 'w:after') / TWIPS_PER_PT:g}pt")
                line = _int_attr(spacing, "w:line")
                if line and spacing.get(qn("w:lineRule")) in (None, "auto"):
                    decls.append(f"line-height: {line / 240:g}")
            shd = p_pr.find(qn("w:shd"))
            fill = _hex_color(shd.get(qn("w:fill"))) if shd is not None else None
            if fill:
                decls.append(f"background-color: {fill}")
            num_pr = p_pr.find(qn("w:numPr"))
        if num_pr is None and style_id:
            num_pr = self._style_num_pr.get(style_id)
        classes = [cls for cls in (_style_class(style_id),) if cls]
        return classes, decls, num_pr

    def _list_marker(self, num_pr: Any) -> str | None:
        if num_pr is None:
            return None
        num_id = num_pr.find(qn("w:numId"))
        if num_id is None or str(num_id.get(_W_VAL)) in {"", "0", "None"}:
            return None
        ilvl = _int_attr(num_pr.find(qn("w:ilvl")), "w:val", 0)
        return self._numbering.marker(str(num_id.get(_W_VAL)), ilvl)

    def _inline(self, parent: Any, part: Any, paginate: bool) -> Iterator[Any]:
        for child in parent.iterchildren():
            tag = child.tag
            if tag == _W_R:
                yield from self._run(child, part, paginate)
            elif tag == qn("w:hyperlink"):
                inner: list[str] = []
                for piece in self._inline(child, part, paginate):
                    if isinstance(piece, _FootnoteBlock):
                        yield piece
                    elif piece is not _PAGE_BREAK:
                        inner.append(piece)
                yield link("".join(inner), self._hyperlink_target(child, part))
            elif tag == qn("w:bookmarkStart"):
                name = str(child.get(qn("w:name")) or "")
                if name and name != "_GoBack":
                    yield f'<a id="{esc(_anchor_id(name))}"></a>'
            elif tag == _W_SDT:
                content = child.find(_W_SDT_CONTENT)
                if content is not None:
                    yield from self._inline(content, part, paginate)
            elif tag in _PASSTHROUGH_INLINE:
                yield from self._inline(child, part, paginate)

    def _hyperlink_target(self, hyperlink: Any, part: Any) -> str | None:
        rid = hyperlink.get(qn("r:id"))
        if rid:
            rel = part.rels.get(rid)
            if rel is not None and rel.is_external:
                return str(rel.target_ref)
            return None
        anchor = hyperlink.get(qn("w:anchor"))
        return f"#{_anchor_id(anchor)}" if anchor else None

    def _run(self, r: Any, part: Any, paginate: bool) -> list[Any]:
        classes, decls, vert = _run_format(r.find(_W_RPR))
        pieces: list[Any] = []
        current: list[str] = []

        def flush() -> None:
            if not current:
                return
            html = "".join(current)
            current.clear()
            if vert:
                html = f"<{vert}>{html}</{vert}>"
            if classes or decls:
                attrs = f' class="{" ".join(classes)}"' if classes else ""
                if decls:
                    attrs += f' style="{esc("; ".join(decls))}"'
                html = f"<span{attrs}>{html}</span>"
            pieces.append(html)

        for child in r.iterchildren():
            tag = child.tag
            if tag == _W_T:
                current.append(esc(child.text or ""))
            elif tag == qn("w:tab"):
                current.append('<span class="docx-tab"></span>')
            elif tag == qn("w:br") and child.get(_W_TYPE) == "page":
                if paginate:
                    flush()
                    pieces.append(_PAGE_BREAK)
            elif tag in (qn("w:br"), qn("w:cr")):
                current.append("<br>")
            elif tag == qn("w:noBreakHyphen"):
                current.append("&#8209;")
            elif tag == qn("w:drawing"):
                current.append(self._drawing(child, part))
            elif tag == qn("w:footnoteReference"):
                ref, block = self._note_reference("footnote", child)
                current.append(ref)
                if paginate:
                    pieces.append(_FootnoteBlock(block))
                else:
                    self._page.footnotes.append(block)
            elif tag == qn("w:endnoteReference"):
                ref, block = self._note_reference("endnote", child)
                current.append(ref)
                self._endnote_blocks.append(block)
            elif tag in (qn("w:footnoteRef"), qn("w:endnoteRef")):
                current.append(esc(self._note_label or ""))
        flush()
        return pieces

    # -- notes, media, tables -------------------------------------------

    def _note_reference(self, kind: str, ref: Any) -> tuple[str, str]:
        note_id = str(ref.get(_W_ID))
        if kind == "footnote":
            self._footnote_seq += 1
            label = str(self._footnote_seq)
            body = self._note_body(self._footnote_part, self._footnotes.get(note_id), label)
        else:
            self._endnote_seq += 1
            label = format_counter(self._endnote_seq, "lowerRoman")
            body = self._note_body(self._endnote_part, self._endnotes.get(note_id), label)
        anchor = f"{kind}-{label}"
        block = f'<div class="docx-note" id="{anchor}">{body}</div>'
        return f'<sup class="docx-note-ref"><a href="#{anchor}">{label}</a></sup>', block

    def _note_body(self, part: Any, note: Any, label: str) -> str:
        if part is None or note is None:
            return ""
        previous, self._note_label = self._note_label, label
        try:
            return "".join(self._blocks(note, part))
        finally:
            self._note_label = previous

    def _drawing(self, drawing: Any, part: Any) -> str:
        blip = next(drawing.iter(qn("a:blip")), None)
        rid = blip.get(qn("r:embed")) if blip is not None else None
        if not rid:
            return ""
        image_part = part.related_parts.get(rid)
        content_type = str(getattr(image_part, "content_type", "") or "")
        if image_part is None or not content_type.startswith("image/"):
            return ""
        data = base64.b64encode(image_part.blob).decode("ascii")

        decls = []
        extent = next(drawing.iter(qn("wp:extent")), None)
        if extent is not None:
            cx = _int_attr(extent, "cx")
            cy = _int_attr(extent, "cy")
            if cx > 0 and cy > 0:
                decls.append(f"width: {cx / EMU_PER_PX:.0f}px; height: {cy / EMU_PER_PX:.0f}px")
        doc_pr = next(drawing.iter(qn("wp:docPr")), None)
        alt = ""
        if doc_pr is not None:
            alt = str(doc_pr.get("descr") or doc_pr.get("name") or "")
        style = f' style="{"; ".join(decls)}"' if decls else ""
        return f'<img class="docx-image" src="data:{esc(content_type)};base64,{data}" alt="{esc(alt)}"{style}>'

    def _table(self, tbl: Any, part: Any) -> str:
        layout: list[list[tuple[int, Any, int, str | None]]] = []
        for tr in tbl.iterchildren(_W_TR):
            col = 0
            row = []
            for tc in tr.iterchildren(_W_TC):
                tc_pr = tc.find(qn("w:tcPr"))
                span = max(1, _int_attr(tc_pr.find(qn("w:gridSpan")) if tc_pr is not None else None, "w:val", 1))
                vm = tc_pr.find(qn("w:vMerge")) if tc_pr is not None else None
                vmerge = None
                if vm is not None:
                    vmerge = "restart" if vm.get(_W_VAL) == "restart" else "continue"
                row.append((col, tc, span, vmerge))
                col += span
            layout.append(row)

        tbl_pr = tbl.find(qn("w:tblPr"))
        classes = ["docx-table"]
        if tbl_pr is not None:
            tbl_style = tbl_pr.find(qn("w:tblStyle"))
            if tbl_pr.find(qn("w:tblBorders")) is not None or tbl_style is not None:
                classes.append("docx-table-bordered")
            if tbl_style is not None and _style_class(tbl_style.get(_W_VAL)):
                classes.append(_style_class(tbl_style.get(_W_VAL)))

        html = [f'<table class="{" ".join(classes)}"><tbody>']
        for ri, row in enumerate(layout):
            html.append("<tr>")
            for col, tc, span, vmerge in row:
                if vmerge == "continue":
                    continue
                rowspan = 1
                if vmerge == "restart":
                    for later in layout[ri + 1 :]:
                        below = next((c for c in later if c[0] == col), None)
                        if below is None or below[3] != "continue":
                            break
                        rowspan += 1
                attrs = ""
                if span > 1:
                    attrs += f' colspan="{span}"'
                if rowspan > 1:
                    attrs += f' rowspan="{rowspan}"'
                decls = _cell_decls(tc.find(qn("w:tcPr")))
                if decls:
                    attrs += f' style="{"; ".join(decls)}"'
                html.append(f"<td{attrs}>{''.join(self._blocks(tc, part))}</td>")
            html.append("</tr>")
        html.append("</tbody></table>")
        return "".join(html)


def _cell_decls(tc_pr: Any) -> list[str]:
    if tc_pr is None:
        return []
    decls = []
    width = tc_pr.find(qn("w:tcW"))
    if width is not None and width.get(_W_TYPE) == "dxa":
        decls.append(f"width: {_int_attr(width, 'w:w') / TWIPS_PER_PT:g}pt")
    shd = tc_pr.find(qn("w:shd"))
    fill = _hex_color(shd.get(qn("w:fill"))) if shd is not None else None
    if fill:
        decls.append(f"background-color: {fill}")
    v_align = tc_pr.find(qn("w:vAlign"))
    if v_align is not None:
        value = {"center": "middle", "bottom": "bottom", "top": "top"}.get(str(v_align.get(_W_VAL)))
        if value:
            decls.append(f"vertical-align: {value}")
    return decls


def _run_format(r_pr: Any) -> tuple[list[str], list[str], str | None]:
    if r_pr is None:
        return [], [], None
    classes: list[str] = []
    decls: list[str] = []
    vert = None

    r_style = r_pr.find(qn("w:rStyle"))
    if r_style is not None and _style_class(r_style.get(_W_VAL)):
        classes.append(_style_class(r_style.get(_W_VAL)))

    bold = _is_on(r_pr.find(qn("w:b")))
    if bold is not None:
        decls.append("font-weight: bold" if bold else "font-weight: normal")
    italic = _is_on(r_pr.find(qn("w:i")))
    if italic is not None:
        decls.append("font-style: italic" if italic else "font-style: normal")

    decorations = []
    underline = r_pr.find(qn("w:u"))
    if underline is not None and str(underline.get(_W_VAL) or "single") != "none":
        decorations.append("underline")
    if _is_on(r_pr.find(qn("w:strike"))) or _is_on(r_pr.find(qn("w:dstrike"))):
        decorations.append("line-through")
    if decorations:
        decls.append(f"text-decoration: {' '.join(decorations)}")

    size = _int_attr(r_pr.find(qn("w:sz")), "w:val")
    if size > 0:
        decls.append(f"font-size: {size / 2:g}pt")

    fonts = r_pr.find(qn("w:rFonts"))
    if fonts is not None:
        family = safe_font_family(fonts.get(qn("w:ascii")) or fonts.get(qn("w:hAnsi")))
        if family:
            decls.append(f"font-family: '{family}'")

    color_el = r_pr.find(qn("w:color"))
    color = _hex_color(color_el.get(_W_VAL)) if color_el is not None else None
    if color:
        decls.append(f"color: {color}")

    highlight = r_pr.find(qn("w:highlight"))
    background = _HIGHLIGHT.get(str(highlight.get(_W_VAL))) if highlight is not None else None
    if background is None:
        shd = r_pr.find(qn("w:shd"))
        background = _hex_color(shd.get(qn("w:fill"))) if shd is not None else None
    if background:
        decls.append(f"background-color: {background}")

    if _is_on(r_pr.find(qn("w:caps"))):
        decls.append("text-transform: uppercase")
    if _is_on(r_pr.find(qn("w:smallCaps"))):
        decls.append("font-variant: small-caps")
    if _is_on(r_pr.find(qn("w:vanish"))):
        decls.append("display: none")

    vert_align = r_pr.find(qn("w:vertAlign"))
    if vert_align is not None:
        vert = {"superscript": "sup", "subscript": "sub"}.get(str(vert_align.get(_W_VAL)))
    return classes, decls, vert


def _font_rules(font: Any) -> dict[str, str]:
    out: dict[str, str] = {}
    if font.bold is not None:
        out["font-weight"] = "bold" if font.bold else "normal"
    if font.italic is not None:
        out["font-style"] = "italic" if font.italic else "normal"
    decorations = []
    if font.underline:
        decorations.append("underline")
    if font.strike:
        decorations.append("line-through")
    if decorations:
        out["text-decoration"] = " ".join(decorations)
    if font.size is not None:
        out["font-size"] = f"{font.size.pt:g}pt"
    family = safe_font_family(font.name)
    if family:
        out["font-family"] = f"'{family}'"
    rgb = font.color.rgb if font.color.type is not None else None
    color = _hex_color(str(rgb)) if rgb is not None else None
    if color:
        out["color"] = color
    if font.superscript:
        out["vertical-align"] = "super"
    elif font.subscript:
        out["vertical-align"] = "sub"
    return out


def _paragraph_rules(fmt: Any) -> dict[str, str]:
    out: dict[str, str] = {}
    align = _ALIGNMENT.get(fmt.alignment) if fmt.alignment is not None else None
    if align:
        out["text-align"] = align
    if fmt.space_before is not None:
        out["margin-top"] = f"{fmt.space_before.pt:g}pt"
    if fmt.space_after is not None:
        out["margin-bottom"] = f"{fmt.space_after.pt:g}pt"
    if fmt.left_indent is not None:
        out["margin-left"] = f"{fmt.left_indent.pt:g}pt"
    if fmt.first_line_indent is not None:
        out["text-indent"] = f"{fmt.first_line_indent.pt:g}pt"
    return out


class FlowRenderer:
    def render(self, data: bytes) -> FlowDocument:
        try:
            document = Document(io.BytesIO(data))
            writer = _FlowWriter(document)
            body, pages = writer.render_body()
            rules = writer.style_rules()
        except Exception as e:
            logger.warning("document decode failed: %s", e)
            raise DecodeFailure(detail=str(e)) from e
        return FlowDocument(body_markup=body, style_rules=rules, page_count=pages)
