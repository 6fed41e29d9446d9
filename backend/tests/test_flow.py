from __future__ import annotations

import html
import io
import re

import pytest
from conftest import FOOTNOTES_XML
from docx import Document
from docx.enum.text import WD_BREAK
from docx.opc.constants import CONTENT_TYPE as CT
from docx.opc.constants import RELATIONSHIP_TYPE as RT
from docx.opc.packuri import PackURI
from docx.opc.part import Part
from docx.oxml import OxmlElement, parse_xml
from docx.oxml.ns import qn

from hydrangea_preview_api.preview.errors import DecodeFailure
from hydrangea_preview_api.preview.flow import FlowRenderer, _Numbering, format_counter


NUMBERING_XML = (
    '<w:numbering xmlns:w="http://schemas.openxmlformats.org/wordprocessingml/2006/main">'
    '<w:abstractNum w:abstractNumId="0">'
    '<w:lvl w:ilvl="0"><w:start w:val="1"/><w:numFmt w:val="decimal"/><w:lvlText w:val="%1."/></w:lvl>'
    '<w:lvl w:ilvl="1"><w:start w:val="1"/><w:numFmt w:val="lowerLetter"/><w:lvlText w:val="%1.%2)"/></w:lvl>'
    "</w:abstractNum>"
    '<w:abstractNum w:abstractNumId="1">'
    '<w:lvl w:ilvl="0"><w:numFmt w:val="bullet"/><w:lvlText w:val="&#xF0B7;"/></w:lvl>'
    "</w:abstractNum>"
    '<w:num w:numId="1"><w:abstractNumId w:val="0"/></w:num>'
    '<w:num w:numId="2"><w:abstractNumId w:val="1"/></w:num>'
    "</w:numbering>"
)


@pytest.fixture(scope="module")
def rendered(docx_bytes: bytes):  # noqa: ANN201
    return FlowRenderer().render(docx_bytes)


def _pages(markup: str) -> list[str]:
    return re.findall(r'<section class="docx-page docx-section-\d+">.*?</section>', markup, re.S)


def test_pages_split_at_page_and_section_breaks(rendered) -> None:  # noqa: ANN001
    pages = _pages(rendered.body_markup)
    assert rendered.page_count == 3
    assert len(pages) == 3
    assert "Bold intro" in pages[0]
    assert "Second page text" in pages[1]
    assert "Landscape page" in pages[2]
    assert pages[2].startswith('<section class="docx-page docx-section-1">')


def test_section_geometry_is_preserved(rendered) -> None:  # noqa: ANN001
    assert ".docx-section-0 { width: 500pt; min-height: 700pt;" in rendered.style_rules
    assert ".docx-section-1 { width: 800pt; min-height: 600pt;" in rendered.style_rules


def test_header_and_footer_repeat_on_every_page(rendered) -> None:  # noqa: ANN001
    for page in _pages(rendered.body_markup):
        assert "Quarterly header" in page
        assert "Confidential footer" in page


def test_footnote_lands_on_referencing_page(rendered) -> None:  # noqa: ANN001
    pages = _pages(rendered.body_markup)
    assert '<sup class="docx-note-ref"><a href="#footnote-1">1</a></sup>' in pages[0]
    assert 'class="docx-footnotes"' in pages[0]
    assert "Source: annual report." in pages[0]
    assert "Source: annual report." not in pages[1]


def _docx_with_break_before_footnote(*, same_run: bool) -> bytes:
    doc = Document()
    notes = Part(PackURI("/word/footnotes.xml"), CT.WML_FOOTNOTES, FOOTNOTES_XML.encode("utf-8"), doc.part.package)
    doc.part.relate_to(notes, RT.FOOTNOTES)

    p = doc.add_paragraph()
    if same_run:
        run = p.add_run("page one")
        run.add_break(WD_BREAK.PAGE)
        run.add_text("page two")
    else:
        p.add_run("page one")
        p.add_run().add_break(WD_BREAK.PAGE)
        run = p.add_run("page two")
    ref = OxmlElement("w:footnoteReference")
    ref.set(qn("w:id"), "1")
    run._r.append(ref)

    buf = io.BytesIO()
    doc.save(buf)
    return buf.getvalue()


@pytest.mark.parametrize("same_run", [False, True])
def test_footnote_follows_page_break_inside_paragraph(same_run: bool) -> None:
    doc = FlowRenderer().render(_docx_with_break_before_footnote(same_run=same_run))
    pages = _pages(doc.body_markup)
    assert doc.page_count == 2
    assert "page one" in pages[0]
    assert "page two" in pages[1]
    assert ["Source: annual report." in page for page in pages] == [False, True]
    assert 'href="#footnote-1"' in pages[1]


def test_runs_tables_and_images(rendered) -> None:  # noqa: ANN001
    body = rendered.body_markup
    assert "font-weight: bold" in body
    assert 'colspan="2"' in body
    assert 'rowspan="2"' in body
    assert 'class="docx-table docx-table-bordered' in body
    assert 'src="data:image/png;base64,' in body
    assert "width: 96px; height: 96px" in body


def test_links_are_filtered(rendered) -> None:  # noqa: ANN001
    body = rendered.body_markup
    assert '<a href="https://example.com/report" target="_blank" rel="noopener noreferrer">Full report</a>' in body
    assert "javascript:" not in body
    assert "Bad link" in body


def test_author_markup_is_escaped(rendered) -> None:  # noqa: ANN001
    assert "<script>" not in rendered.body_markup
    assert "&lt;script&gt;alert(1)&lt;/script&gt;" in rendered.body_markup


def test_style_classes_are_emitted(rendered) -> None:  # noqa: ANN001
    assert re.search(r"\.docx-style-[A-Za-z0-9_-]+ \{", rendered.style_rules)


def test_standalone_document_is_isolated(rendered) -> None:  # noqa: ANN001
    doc = rendered.standalone()
    assert doc.startswith("<!doctype html>")
    assert 'http-equiv="Content-Security-Policy"' in doc
    assert "default-src &#x27;none&#x27;" in doc
    assert "background: #808080" in doc
    assert "<script>" not in doc


def test_embed_wraps_in_sandboxed_frame(rendered) -> None:  # noqa: ANN001
    frame = rendered.embed()
    assert frame.startswith('<iframe class="docx-frame" sandbox="')
    assert "allow-scripts" not in frame
    assert "allow-same-origin" not in frame
    srcdoc = re.search(r'srcdoc="([^"]*)"', frame).group(1)
    assert html.unescape(srcdoc) == rendered.standalone()
    assert rendered.to_dict()["isolation_boundary"] is True


def test_malformed_document_is_a_decode_failure() -> None:
    with pytest.raises(DecodeFailure):
        FlowRenderer().render(b"PK\x03\x04 not really a docx")


def test_numbering_markers() -> None:
    numbering = _Numbering(parse_xml(NUMBERING_XML))
    assert numbering.marker("1", 0) == "1."
    assert numbering.marker("1", 1) == "1.a)"
    assert numbering.marker("1", 1) == "1.b)"
    assert numbering.marker("1", 0) == "2."
    assert numbering.marker("1", 1) == "2.a)"
    assert numbering.marker("2", 0) == "•"
    assert numbering.marker("99", 0) == "•"


def test_format_counter() -> None:
    assert format_counter(3, "decimal") == "3"
    assert format_counter(28, "lowerLetter") == "bb"
    assert format_counter(4, "upperRoman") == "IV"
    assert format_counter(14, "lowerRoman") == "xiv"
