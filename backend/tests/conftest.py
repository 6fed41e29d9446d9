from __future__ import annotations

import asyncio
import base64
import io
import struct
import zlib
from pathlib import Path

import pytest
from docx import Document
from docx.enum.section import WD_SECTION
from docx.opc.constants import CONTENT_TYPE as CT
from docx.opc.constants import RELATIONSHIP_TYPE as RT
from docx.opc.packuri import PackURI
from docx.opc.part import Part
from docx.oxml import OxmlElement
from docx.oxml.ns import qn
from docx.shared import Inches, Pt
from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side

from hydrangea_preview_api.config import Settings
from hydrangea_preview_api.preview.acquisition import AcquiredPayload, DownloadedFile
from hydrangea_preview_api.preview.errors import AcquisitionFailure


FOOTNOTES_XML = (
    '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
    '<w:footnotes xmlns:w="http://schemas.openxmlformats.org/wordprocessingml/2006/main">'
    '<w:footnote w:type="separator" w:id="-1"><w:p><w:r><w:separator/></w:r></w:p></w:footnote>'
    '<w:footnote w:type="continuationSeparator" w:id="0"><w:p><w:r><w:continuationSeparator/></w:r></w:p></w:footnote>'
    '<w:footnote w:id="1"><w:p>'
    '<w:r><w:rPr><w:vertAlign w:val="superscript"/></w:rPr><w:footnoteRef/></w:r>'
    '<w:r><w:t xml:space="preserve"> Source: annual report.</w:t></w:r>'
    "</w:p></w:footnote>"
    "</w:footnotes>"
)


def tiny_png() -> bytes:
    def chunk(tag: bytes, data: bytes) -> bytes:
        crc = zlib.crc32(tag + data) & 0xFFFFFFFF
        return struct.pack(">I", len(data)) + tag + data + struct.pack(">I", crc)

    header = struct.pack(">IIBBBBB", 1, 1, 8, 2, 0, 0, 0)
    pixels = zlib.compress(b"\x00\xff\x00\x00")
    return b"\x89PNG\r\n\x1a\n" + chunk(b"IHDR", header) + chunk(b"IDAT", pixels) + chunk(b"IEND", b"")


def build_workbook_bytes() -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Sheet1"
    ws["A1"] = "Merged"
    ws["A1"].font = Font(bold=True, italic=True, color="FFFF0000", name="Arial", size=12)
    ws["A1"].fill = PatternFill(fill_type="solid", fgColor="FF00FF00")
    ws["A1"].alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
    ws["A1"].border = Border(top=Side(style="thin"), left=Side(style="medium"))
    ws.merge_cells("A1:A2")

    ws["B1"] = "Docs"
    ws["B1"].hyperlink = "https://example.com/docs"
    ws["C1"] = 1234.5
    ws["C1"].number_format = "#,##0.00"
    ws["B2"] = "<b>&\"'"
    ws["C2"] = "line1\nline2"
    ws["D2"] = 0.125
    ws["D2"].number_format = "0.0%"

    ws2 = wb.create_sheet("Sheet2")
    ws2["B3"] = "second"
    ws2["A1"] = True

    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def add_hyperlink(paragraph, url: str, text: str) -> None:  # noqa: ANN001
    r_id = paragraph.part.relate_to(url, RT.HYPERLINK, is_external=True)
    hyperlink = OxmlElement("w:hyperlink")
    hyperlink.set(qn("r:id"), r_id)
    run = OxmlElement("w:r")
    t = OxmlElement("w:t")
    t.text = text
    run.append(t)
    hyperlink.append(run)
    paragraph._p.append(hyperlink)


def build_docx_bytes() -> bytes:
    doc = Document()
    section = doc.sections[0]
    section.page_width = Pt(500)
    section.page_height = Pt(700)
    section.header.paragraphs[0].text = "Quarterly header"
    section.footer.paragraphs[0].text = "Confidential footer"

    notes = Part(PackURI("/word/footnotes.xml"), CT.WML_FOOTNOTES, FOOTNOTES_XML.encode("utf-8"), doc.part.package)
    doc.part.relate_to(notes, RT.FOOTNOTES)

    intro = doc.add_paragraph()
    run = intro.add_run("Bold intro")
    run.bold = True
    ref_run = intro.add_run()
    ref = OxmlElement("w:footnoteReference")
    ref.set(qn("w:id"), "1")
    ref_run._r.append(ref)

    doc.add_paragraph("<script>alert(1)</script>")
    links = doc.add_paragraph()
    add_hyperlink(links, "https://example.com/report", "Full report")
    add_hyperlink(links, "javascript:alert(1)", "Bad link")

    doc.add_page_break()
    doc.add_paragraph("Second page text")
    table = doc.add_table(rows=3, cols=2)
    table.style = "Table Grid"
    wide = table.cell(0, 0).merge(table.cell(0, 1))
    wide.text = "wide"
    tall = table.cell(1, 0).merge(table.cell(2, 0))
    tall.text = "tall"
    table.cell(1, 1).text = "x"
    table.cell(2, 1).text = "y"
    doc.add_picture(io.BytesIO(tiny_png()), width=Inches(1))

    landscape = doc.add_section(WD_SECTION.NEW_PAGE)
    landscape.page_width = Pt(800)
    landscape.page_height = Pt(600)
    doc.add_paragraph("Landscape page")

    buf = io.BytesIO()
    doc.save(buf)
    return buf.getvalue()


class FakePort:
    """In-memory acquisition/download port; gated ids block until released."""

    def __init__(self, files: dict[str, tuple[bytes, str]] | None = None) -> None:
        self.files = dict(files or {})
        self.calls: list[str] = []
        self.downloads: list[str] = []
        self.gates: dict[str, asyncio.Event] = {}

    def gate(self, file_id: str) -> asyncio.Event:
        event = asyncio.Event()
        self.gates[file_id] = event
        return event

    async def fetch_bytes(self, file_id: str) -> AcquiredPayload:
        self.calls.append(file_id)
        gate = self.gates.get(file_id)
        if gate is not None:
            await gate.wait()
        if file_id not in self.files:
            raise AcquisitionFailure(detail=f"{file_id} not found")
        data, media_type = self.files[file_id]
        return AcquiredPayload(
            encoded_payload=base64.b64encode(data).decode("ascii"),
            media_type=media_type,
            encoding="base64",
        )

    async def download(self, file_id: str) -> DownloadedFile:
        self.downloads.append(file_id)
        if file_id not in self.files:
            raise AcquisitionFailure(detail=f"{file_id} not found")
        data, media_type = self.files[file_id]
        return DownloadedFile(content=data, media_type=media_type, filename=file_id)


@pytest.fixture(scope="session")
def workbook_bytes() -> bytes:
    return build_workbook_bytes()


@pytest.fixture(scope="session")
def docx_bytes() -> bytes:
    return build_docx_bytes()


@pytest.fixture(scope="session")
def png_bytes() -> bytes:
    return tiny_png()


@pytest.fixture
def make_settings(tmp_path: Path):
    def _make(**overrides) -> Settings:  # noqa: ANN003
        values = {
            "app_root": tmp_path,
            "storage_base_url": "http://storage.test/api",
            "acquisition_transport": "base64",
            "acquisition_timeout_seconds": 5,
            "local_files_dir": None,
            "public_base_url": "",
            "cors_origins": ["http://localhost:5173"],
            "session_ttl_minutes": 30,
            "max_sessions": 50,
            "log_level": "INFO",
        }
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def files_dir(tmp_path: Path, workbook_bytes: bytes, docx_bytes: bytes, png_bytes: bytes) -> Path:
    root = tmp_path / "files"
    root.mkdir()
    (root / "report.xlsx").write_bytes(workbook_bytes)
    (root / "memo.docx").write_bytes(docx_bytes)
    (root / "pixel.png").write_bytes(png_bytes)
    (root / "notes.txt").write_text("a < b & c\nsecond line", encoding="utf-8")
    (root / "broken.xlsx").write_bytes(b"not a zip archive")
    return root


@pytest.fixture
def app(make_settings, files_dir: Path):  # noqa: ANN001
    from hydrangea_preview_api.app_factory import create_app

    return create_app(make_settings(local_files_dir=files_dir))


@pytest.fixture
async def client(app):  # noqa: ANN001
    import httpx

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
