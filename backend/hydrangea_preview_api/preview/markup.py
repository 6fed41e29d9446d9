from __future__ import annotations

import html
from urllib.parse import urlsplit


_SAFE_SCHEMES = {"http", "https", "mailto", "ftp"}


def esc(value: object) -> str:
    return html.escape("" if value is None else str(value), quote=True)


def escape_text(value: object) -> str:
    """Escape text for element content; newlines become ``<br>``."""
    text = "" if value is None else str(value)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return "<br>".join(esc(line) for line in text.split("\n"))


def safe_href(target: str | None) -> str | None:
    value = str(target or "").strip()
    if not value:
        return None
    if value.startswith("#"):
        return value
    try:
        scheme = urlsplit(value).scheme.lower()
    except ValueError:
        return None
    return value if scheme in _SAFE_SCHEMES else None


def link(inner_html: str, target: str | None) -> str:
    href = safe_href(target)
    if not href:
        return inner_html
    if href.startswith("#"):
        return f'<a href="{esc(href)}">{inner_html}</a>'
    return f'<a href="{esc(href)}" target="_blank" rel="noopener noreferrer">{inner_html}</a>'
