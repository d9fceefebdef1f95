import asyncio

import pytest

from hub_offload.core.exceptions import ExportTimeoutError, NavigationError
from hub_offload.scraper.export_capture import (
    DOWNLOAD_BUTTON,
    ExportCaptureEngine,
    ResponseSlot,
    filename_from_disposition,
    is_export_response,
)
from tests.fakes import FakeFrame, FakePage, FakeResponse, export_response

CSV = ",Transaction Date,NAS-ID,Total Sessions,Count of Users,Rejects,Total GBs\n0,2025-10-25,x,1,1,0,1.0\n"


def make_engine(page: FakePage, **overrides) -> ExportCaptureEngine:
    options = dict(timeout_ms=300, poll_interval_ms=5, pre_click_delay_ms=0, download_dir="")
    options.update(overrides)
    return ExportCaptureEngine(page, **options)


def test_matching_response_is_captured_after_the_scripted_click() -> None:
    page = FakePage()
    frame = FakeFrame(page)
    noise = FakeResponse(headers={"content-type": "application/json"})
    match = export_response("nasid_daily.csv", ("\ufeff" + CSV).encode("utf-8"))

    def click(expression, selector):
        assert selector == DOWNLOAD_BUTTON
        page.emit_response(noise)
        page.emit_response(match)
        return True

    frame.on_evaluate = click

    export = asyncio.run(make_engine(page).capture(frame))

    assert export.filename == "nasid_daily.csv"
    assert export.content == CSV
    assert export.url == match.url
    assert export.captured_at.tzinfo is not None
    assert page.listeners["response"] == []


def test_no_matching_response_times_out_and_unregisters_the_observer() -> None:
    page = FakePage()
    frame = FakeFrame(page)

    with pytest.raises(ExportTimeoutError) as excinfo:
        asyncio.run(make_engine(page, timeout_ms=40).capture(frame))

    assert excinfo.value.timeout_ms == 40
    assert page.listeners["response"] == []


def test_missing_button_falls_back_to_scroll_and_click() -> None:
    page = FakePage()
    frame = FakeFrame(page)
    frame.on_evaluate = lambda expression, selector: False
    button = frame.add(DOWNLOAD_BUTTON)

    async def run():
        engine = make_engine(page)
        task = asyncio.ensure_future(engine.capture(frame))
        while not button.clicks:
            await asyncio.sleep(0.001)
        page.emit_response(export_response("x.csv", b"2025-01-01 1\n"))
        return await task

    export = asyncio.run(run())

    assert button.clicks == 1
    assert export.content == "2025-01-01 1\n"


def test_every_trigger_failing_is_a_navigation_error() -> None:
    page = FakePage()
    frame = FakeFrame(page)
    frame.on_evaluate = lambda expression, selector: False

    with pytest.raises(NavigationError) as excinfo:
        asyncio.run(make_engine(page).capture(frame))

    assert excinfo.value.step == "Download click"
    assert [a.name for a in excinfo.value.attempts] == ["javascript click", "scroll and click", "keyboard"]
    assert page.listeners["response"] == []


def test_unreadable_body_is_refetched_through_the_page_request_context() -> None:
    page = FakePage()
    frame = FakeFrame(page)
    response = export_response("t.csv", b"")
    response.body_error = "Response body is unavailable for redirect responses"
    page.request.bodies[response.url] = b"2025-01-01   5\n"
    frame.on_evaluate = lambda expression, selector: page.emit_response(response) or True

    export = asyncio.run(make_engine(page).capture(frame))

    assert export.content == "2025-01-01   5\n"
    assert page.request.calls == [response.url]


def test_export_dialog_selects_csv_when_asked() -> None:
    page = FakePage()
    frame = FakeFrame(page)
    tile = frame.add("role=button[Inbound Daily NASID Summary]")
    menu = frame.add("role=menuitem[Download data]")
    combobox = frame.add("role=combobox[Format combobox] div>>nth=1")
    csv = frame.add("role=option[CSV]")

    asyncio.run(make_engine(page).open_export_dialog(frame, "Inbound Daily NASID Summary", select_csv=True))

    assert [tile.clicks, menu.clicks, combobox.clicks, csv.clicks] == [1, 1, 1, 1]


def test_capture_saves_a_copy_when_download_dir_is_set(tmp_path) -> None:
    page = FakePage()
    frame = FakeFrame(page)
    frame.on_evaluate = lambda e, s: page.emit_response(export_response("copy.csv", b"abc")) or True

    asyncio.run(make_engine(page, download_dir=str(tmp_path)).capture(frame))

    assert (tmp_path / "copy.csv").read_text(encoding="utf-8") == "abc"


@pytest.mark.parametrize(
    "disposition, expected",
    [
        ('attachment; filename="report.csv"', "report.csv"),
        ("attachment; filename=report.txt", "report.txt"),
        ("attachment; filename*=UTF-8''Data%20Usage.csv", "Data Usage.csv"),
        ("attachment", "download.csv"),
        (None, "download.csv"),
    ],
)
def test_filename_from_disposition(disposition, expected) -> None:
    assert filename_from_disposition(disposition) == expected


@pytest.mark.parametrize(
    "status, headers, expected",
    [
        (200, {"content-disposition": "attachment", "content-type": "text/csv"}, True),
        (200, {"content-disposition": "attachment", "content-type": "text/plain"}, True),
        (302, {"content-disposition": "attachment", "content-type": "text/csv"}, False),
        (200, {"content-disposition": "inline", "content-type": "text/csv"}, False),
        (200, {"content-disposition": "attachment", "content-type": "application/pdf"}, False),
    ],
)
def test_is_export_response(status, headers, expected) -> None:
    assert is_export_response(FakeResponse(status=status, headers=headers)) is expected


def test_slot_keeps_the_first_match_only() -> None:
    slot = ResponseSlot()
    first = export_response("first.csv", b"1")
    slot.observe(first)
    slot.observe(export_response("second.csv", b"2"))

    assert slot.response is first
    assert slot.filename == "first.csv"


def test_missing_export_tile_is_a_navigation_error() -> None:
    page = FakePage()
    frame = FakeFrame(page)
    frame.add("role=menuitem[Download data]")

    with pytest.raises(NavigationError) as excinfo:
        asyncio.run(make_engine(page).export(frame, "Inbound Daily NASID Summary", select_csv=True))

    assert excinfo.value.step == "Open 'Inbound Daily NASID Summary' menu"
    assert [a.name for a in excinfo.value.attempts] == ["role", "dispatch"]
    assert page.listeners.get("response", []) == []


def test_export_dialog_falls_back_to_dispatch_when_click_is_blocked() -> None:
    page = FakePage()
    frame = FakeFrame(page)
    tile = frame.add("role=button[Data Usage Timeline - Tile]", click_error="Element is outside of the viewport")
    menu = frame.add("role=menuitem[Download data]")

    asyncio.run(make_engine(page).open_export_dialog(frame, "Data Usage Timeline - Tile"))

    assert tile.dispatched == ["click"]
    assert menu.clicks == 1


def test_header_matching_ignores_case() -> None:
    response = FakeResponse(headers={
        "content-disposition": 'Attachment; filename="x.csv"',
        "content-type": "Text/CSV",
    })

    assert is_export_response(response) is True
