from __future__ import annotations


async def _new_session(client, token: str | None = None) -> str:  # noqa: ANN001
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    res = await client.post("/api/preview/sessions", headers=headers)
    assert res.status_code == 200
    data = res.json()
    assert data["status"] == "idle"
    return data["session_id"]


async def _open(client, sid: str, file_id: str, media_type: str = "") -> dict:  # noqa: ANN001
    res = await client.post(
        f"/api/preview/sessions/{sid}/open",
        json={"id": file_id, "name": file_id, "media_type": media_type, "size": 0},
    )
    assert res.status_code == 200
    return res.json()


async def test_health(client) -> None:  # noqa: ANN001
    res = await client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"ok": True, "sessions": 0, "handles": 0}


async def test_spreadsheet_preview_and_sheet_switch(client) -> None:  # noqa: ANN001
    sid = await _new_session(client)
    data = await _open(client, sid, "report.xlsx", "application/octet-stream")
    assert data["status"] == "ready"
    artifact = data["artifact"]
    assert artifact["kind"] == "tabular-document"
    assert artifact["sheet_names"] == ["Sheet1", "Sheet2"]
    assert artifact["active_sheet"] == "Sheet1"
    assert 'rowspan="2"' in artifact["html"]
    assert data["stats"]["acquisitions"] == 1

    res = await client.post(f"/api/preview/sessions/{sid}/sheet", json={"sheet_name": "Sheet2"})
    assert res.status_code == 200
    switched = res.json()
    assert switched["artifact"]["active_sheet"] == "Sheet2"
    assert "second" in switched["artifact"]["html"]
    assert switched["stats"]["acquisitions"] == 1

    res = await client.post(f"/api/preview/sessions/{sid}/sheet", json={"sheet_name": "Nope"})
    assert res.status_code == 404


async def test_sheet_switch_without_spreadsheet(client) -> None:  # noqa: ANN001
    sid = await _new_session(client)
    res = await client.post(f"/api/preview/sessions/{sid}/sheet", json={"sheet_name": "Sheet1"})
    assert res.status_code == 400


async def test_flow_document_is_served_sandboxed(client) -> None:  # noqa: ANN001
    sid = await _new_session(client)
    data = await _open(client, sid, "memo.docx")
    assert data["artifact"]["kind"] == "flow-document"
    assert data["artifact"]["isolation_boundary"] is True
    assert data["artifact"]["html"].startswith("<iframe")

    res = await client.get(f"/api/preview/sessions/{sid}/document")
    assert res.status_code == 200
    assert res.headers["content-type"].startswith("text/html")
    csp = res.headers["content-security-policy"]
    assert csp.startswith("sandbox ")
    assert "allow-scripts" not in csp
    assert "Quarterly header" in res.text
    assert "<script>" not in res.text


async def test_document_endpoint_requires_flow_document(client) -> None:  # noqa: ANN001
    sid = await _new_session(client)
    await _open(client, sid, "notes.txt", "text/plain")
    res = await client.get(f"/api/preview/sessions/{sid}/document")
    assert res.status_code == 404


async def test_image_object_is_revoked_on_close(client, png_bytes: bytes) -> None:  # noqa: ANN001
    sid = await _new_session(client)
    data = await _open(client, sid, "pixel.png", "image/png")
    artifact = data["artifact"]
    assert artifact["kind"] == "image"
    assert artifact["url"] == f"/api/preview/objects/{artifact['handle']}"

    res = await client.get(artifact["url"])
    assert res.status_code == 200
    assert res.content == png_bytes
    assert res.headers["content-type"] == "image/png"
    assert res.headers["cache-control"] == "no-store"

    res = await client.post(f"/api/preview/sessions/{sid}/close")
    assert res.json()["status"] == "idle"
    assert res.json()["stats"]["live_resources"] == 0

    res = await client.get(artifact["url"])
    assert res.status_code == 404


async def test_opening_next_file_revokes_previous_object(client) -> None:  # noqa: ANN001
    sid = await _new_session(client)
    first = await _open(client, sid, "pixel.png", "image/png")
    await _open(client, sid, "notes.txt", "text/plain")
    res = await client.get(first["artifact"]["url"])
    assert res.status_code == 404


async def test_text_preview_is_escaped(client) -> None:  # noqa: ANN001
    sid = await _new_session(client)
    data = await _open(client, sid, "notes.txt", "text/plain")
    assert data["artifact"]["kind"] == "plain-text"
    assert data["artifact"]["html"] == "a &lt; b &amp; c<br>second line"


async def test_missing_file_fails_with_download_offer(client) -> None:  # noqa: ANN001
    sid = await _new_session(client)
    data = await _open(client, sid, "absent.png", "image/png")
    assert data["status"] == "failed"
    assert data["reason"] == "Failed to load file"
    assert data["error_kind"] == "acquisition"
    assert data["download_available"] is True


async def test_corrupt_workbook_fails_to_decode(client) -> None:  # noqa: ANN001
    sid = await _new_session(client)
    data = await _open(client, sid, "broken.xlsx")
    assert data["status"] == "failed"
    assert data["reason"] == "Failed to decode file"


async def test_unsupported_offers_download(client) -> None:  # noqa: ANN001
    sid = await _new_session(client)
    data = await _open(client, sid, "archive.zip", "application/zip")
    assert data["status"] == "ready"
    assert data["artifact"]["kind"] == "unsupported"
    assert data["download_available"] is True
    assert data["stats"]["acquisitions"] == 0


async def test_display_error_moves_to_failed(client) -> None:  # noqa: ANN001
    sid = await _new_session(client)
    await _open(client, sid, "pixel.png", "image/png")
    res = await client.post(f"/api/preview/sessions/{sid}/display-error", json={})
    data = res.json()
    assert data["status"] == "failed"
    assert data["reason"] == "Failed to load image"
    assert data["error_kind"] == "display"


async def test_display_error_for_other_file_is_ignored(client) -> None:  # noqa: ANN001
    sid = await _new_session(client)
    await _open(client, sid, "pixel.png", "image/png")
    await _open(client, sid, "notes.txt", "text/plain")
    res = await client.post(
        f"/api/preview/sessions/{sid}/display-error",
        json={"reason": "Failed to load image", "file_id": "pixel.png"},
    )
    data = res.json()
    assert data["status"] == "ready"
    assert data["file"]["id"] == "notes.txt"


async def test_zoom(client) -> None:  # noqa: ANN001
    sid = await _new_session(client)
    res = await client.post(f"/api/preview/sessions/{sid}/zoom", json={"action": "in"})
    assert res.json() == {"zoom": 125}
    res = await client.post(f"/api/preview/sessions/{sid}/zoom", json={"action": "reset"})
    assert res.json() == {"zoom": 100}
    res = await client.post(f"/api/preview/sessions/{sid}/zoom", json={"action": "sideways"})
    assert res.status_code == 422


async def test_downloads(client, workbook_bytes: bytes) -> None:  # noqa: ANN001
    sid = await _new_session(client)
    res = await client.get(f"/api/preview/sessions/{sid}/download")
    assert res.status_code == 400

    await _open(client, sid, "report.xlsx")
    res = await client.get(f"/api/preview/sessions/{sid}/download")
    assert res.status_code == 200
    assert res.content == workbook_bytes
    assert res.headers["content-disposition"].startswith("attachment;")

    res = await client.get("/api/preview/files/notes.txt/download")
    assert res.status_code == 200
    assert 'filename="notes.txt"' in res.headers["content-disposition"]

    res = await client.get("/api/preview/files/absent.bin/download")
    assert res.status_code == 502


async def test_session_ownership(client) -> None:  # noqa: ANN001
    res = await client.get("/api/preview/sessions/unknown")
    assert res.status_code == 404

    sid = await _new_session(client, token="alice")
    res = await client.get(f"/api/preview/sessions/{sid}", headers={"Authorization": "Bearer alice"})
    assert res.status_code == 200
    res = await client.get(f"/api/preview/sessions/{sid}", headers={"Authorization": "Bearer mallory"})
    assert res.status_code == 403
    res = await client.delete(f"/api/preview/sessions/{sid}", headers={"Authorization": "Bearer mallory"})
    assert res.status_code == 403

    res = await client.delete(f"/api/preview/sessions/{sid}", headers={"Authorization": "Bearer alice"})
    assert res.json() == {"ok": True}
    res = await client.get(f"/api/preview/sessions/{sid}", headers={"Authorization": "Bearer alice"})
    assert res.status_code == 404
