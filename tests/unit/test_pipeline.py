import asyncio
import json
from datetime import date

import pytest

from hub_offload.core.exceptions import (
    EmptyExportError,
    ExportTimeoutError,
    PipelineInputError,
    SchemaError,
)
from hub_offload.models.offload import DeviceOffloadDaily, OffloadDaily, ScrapeLog
from hub_offload.scraper.export_capture import RawExportFile
from hub_offload.services import pipeline
from hub_offload.services.device_registry import DeviceRegistry
from hub_offload.services.pipeline import (
    PipelineConfig,
    PipelineRunner,
    validate_date_range,
)
from hub_offload.services.reconciliation import ReconciliationEngine

HEADER = ",Transaction Date,NAS-ID,Total Sessions,Count of Users,Rejects,Total GBs"


def device_export(nas_id: str, *rows: str) -> RawExportFile:
    return RawExportFile(filename=f"{nas_id}.csv", content="\n".join((HEADER,) + rows))


class FakeScraper:
    """Stands in for HubOffloadScraper; replies come from dicts keyed by NAS ID"""

    def __init__(self, exports=None, failures=None, aggregate=None):
        self.exports = exports or {}
        self.failures = failures or {}
        self.aggregate = aggregate
        self.calls = []
        self.entered = 0

    async def __aenter__(self):
        self.entered += 1
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def fetch_device_export(self, nas_id, start_date=None, end_date=None):
        self.calls.append((nas_id, start_date, end_date))
        if nas_id in self.failures:
            raise self.failures[nas_id]
        return self.exports[nas_id]

    async def fetch_aggregate_export(self):
        self.calls.append(("aggregate",))
        if isinstance(self.aggregate, Exception):
            raise self.aggregate
        return self.aggregate


def make_runner(engine, scraper, registry=None) -> PipelineRunner:
    config = PipelineConfig(registry=registry or DeviceRegistry(), inter_device_delay_seconds=0)
    return PipelineRunner(engine, scraper_factory=lambda: scraper, config=config)


def test_device_run_inserts_rows_and_logs_one_success(db, sql_engine) -> None:
    scraper = FakeScraper(exports={
        "bcb92300ae0c": device_export(
            "bcb92300ae0c",
            "0,2025-10-25,bcb92300ae0c,10,3,0,1.5",
            "1,2025-10-26,bcb92300ae0c,12,4,1,2.25",
        ),
    })

    summary = asyncio.run(
        make_runner(sql_engine, scraper).run_device("bcb92300ae0c", "2025-10-25", "2025-10-26")
    )

    assert summary.success is True
    assert summary.total_processed == 2
    assert summary.total_upserted == 2
    assert summary.errors == []
    assert summary.filename == "bcb92300ae0c.csv"
    assert scraper.calls == [("bcb92300ae0c", "2025-10-25", "2025-10-26")]

    rows = db.query(DeviceOffloadDaily).order_by(DeviceOffloadDaily.transaction_date).all()
    assert [(r.transaction_date, r.total_sessions) for r in rows] == [
        (date(2025, 10, 25), 10),
        (date(2025, 10, 26), 12),
    ]
    logs = db.query(ScrapeLog).all()
    assert len(logs) == 1
    assert logs[0].success is True
    assert logs[0].nas_id == "bcb92300ae0c"
    assert logs[0].rows_upserted == 2


def test_export_timeout_is_audited_and_nothing_is_parsed(db, sql_engine, monkeypatch) -> None:
    parsed = []
    monkeypatch.setattr(pipeline, "parse_device_csv", lambda text: parsed.append(text))
    scraper = FakeScraper(failures={"bcb92300ae0c": ExportTimeoutError(10000)})

    with pytest.raises(ExportTimeoutError):
        asyncio.run(make_runner(sql_engine, scraper).run_device("bcb92300ae0c"))

    assert parsed == []
    assert db.query(DeviceOffloadDaily).count() == 0
    logs = db.query(ScrapeLog).all()
    assert len(logs) == 1
    assert logs[0].success is False
    assert logs[0].report == "device"
    assert "No valid file detected" in logs[0].error_text


def test_rejected_rows_travel_in_the_summary(memory_store) -> None:
    scraper = FakeScraper(exports={
        "ap1": device_export("ap1", "0,2025-10-25,ap1,10,3,0,1.5", "1,2025-10-26,,10,3,0,1.5"),
    })

    summary = asyncio.run(make_runner(ReconciliationEngine(memory_store), scraper).run_device("ap1"))

    assert summary.total_processed == 1
    assert [e["error"] for e in summary.errors] == ["Missing NAS-ID"]
    assert memory_store.audit[-1].success is True


def test_export_with_no_valid_rows_is_an_empty_export(memory_store) -> None:
    scraper = FakeScraper(exports={"ap1": device_export("ap1", "0,not-a-date,ap1,10,3,0,1.5")})

    with pytest.raises(EmptyExportError):
        asyncio.run(make_runner(ReconciliationEngine(memory_store), scraper).run_device("ap1"))

    assert [entry.success for entry in memory_store.audit] == [False]
    assert memory_store.audit[0].source_filename == "ap1.csv"


@pytest.mark.parametrize(
    "nas_id, start, end",
    [
        ("", None, None),
        ("ap1", "2025-10-01", None),
        ("ap1", "2025-10-31", "2025-10-01"),
        ("ap1", "10/01/2025", "2025-10-31"),
    ],
)
def test_invalid_invocation_launches_nothing_and_is_not_audited(memory_store, nas_id, start, end) -> None:
    scraper = FakeScraper()

    with pytest.raises(PipelineInputError):
        asyncio.run(make_runner(ReconciliationEngine(memory_store), scraper).run_device(nas_id, start, end))

    assert scraper.entered == 0
    assert memory_store.audit == []


def test_validate_date_range_accepts_both_or_neither() -> None:
    assert validate_date_range(None, None) == (None, None)
    assert validate_date_range(date(2025, 1, 1), "2025-01-31") == ("2025-01-01", "2025-01-31")
    assert validate_date_range("2025-01-05", "2025-01-05") == ("2025-01-05", "2025-01-05")


def test_tracked_devices_continue_after_a_failing_device(memory_store) -> None:
    scraper = FakeScraper(
        exports={
            "ap1": device_export("ap1", "0,2025-10-25,ap1,1,1,0,0.5"),
            "ap3": device_export("ap3", "0,2025-10-25,ap3,2,1,0,0.75"),
        },
        failures={"ap2": ExportTimeoutError(10000)},
    )
    registry = DeviceRegistry.from_ids(["ap1", "ap2", "ap3"])

    fleet = asyncio.run(
        make_runner(ReconciliationEngine(memory_store), scraper, registry).run_tracked_devices()
    )

    assert [r.nas_id for r in fleet.results] == ["ap1", "ap3"]
    assert [f["nas_id"] for f in fleet.failures] == ["ap2"]
    assert fleet.to_dict()["total_devices"] == 3
    assert [c[0] for c in scraper.calls] == ["ap1", "ap2", "ap3"]
    assert [entry.success for entry in memory_store.audit] == [True, False, True]
    assert registry.get("ap1").last_scraped is not None
    assert registry.get("ap2").last_scraped is None


def test_aggregate_run_writes_daily_rows(db, sql_engine) -> None:
    scraper = FakeScraper(aggregate=RawExportFile(
        filename="timeline.csv",
        content="Day  Gigabytes\n2025-01-01   1,234.5\n2025-01-02   88\n",
    ))

    summary = asyncio.run(make_runner(sql_engine, scraper).run_aggregate())

    assert (summary.total_parsed, summary.inserted, summary.updated, summary.upserted) == (2, 2, 0, 2)
    assert db.query(OffloadDaily).count() == 2
    assert db.query(ScrapeLog).one().report == "aggregate"


def test_aggregate_export_without_data_is_audited(memory_store) -> None:
    scraper = FakeScraper(aggregate=RawExportFile(filename="timeline.csv", content="Day  Gigabytes\n"))

    with pytest.raises(EmptyExportError):
        asyncio.run(make_runner(ReconciliationEngine(memory_store), scraper).run_aggregate())

    assert memory_store.audit[0].report == "aggregate"
    assert memory_store.audit[0].success is False


def test_export_file_upload_csv_and_json(tmp_path, memory_store) -> None:
    runner = make_runner(ReconciliationEngine(memory_store), FakeScraper())
    csv_file = tmp_path / "timeline.csv"
    csv_file.write_text("2025-01-01   10\n2025-01-02   20\n", encoding="utf-8")
    json_file = tmp_path / "timeline.json"
    json_file.write_text(json.dumps([{"day": "2025-01-02", "gigabytes": 25}]), encoding="utf-8")

    first = runner.run_export_file(str(csv_file))
    second = runner.run_export_file(str(json_file))

    assert first.inserted == 2
    assert (second.inserted, second.updated) == (0, 1)
    assert memory_store.daily[date(2025, 1, 2)] == 25.0


def test_export_file_upload_for_devices(tmp_path, memory_store) -> None:
    runner = make_runner(ReconciliationEngine(memory_store), FakeScraper())
    path = tmp_path / "nasid.csv"
    path.write_text("\n".join([
        HEADER,
        "0,2025-10-25,ap2,1,1,0,0.5",
        "1,2025-10-25,ap1,1,1,0,0.5",
    ]), encoding="utf-8")

    summary = runner.run_export_file(str(path), report="device")

    assert summary.nas_id == "ap1,ap2"
    assert summary.total_upserted == 2


def test_export_file_rejects_unsupported_types(tmp_path, memory_store) -> None:
    runner = make_runner(ReconciliationEngine(memory_store), FakeScraper())
    json_file = tmp_path / "nasid.json"
    json_file.write_text("[]", encoding="utf-8")

    with pytest.raises(PipelineInputError):
        runner.run_export_file(str(tmp_path / "timeline.xlsx"))
    with pytest.raises(PipelineInputError):
        runner.run_export_file(str(json_file), report="device")

    assert memory_store.audit == []


def test_malformed_json_upload_is_a_schema_error(tmp_path, memory_store) -> None:
    runner = make_runner(ReconciliationEngine(memory_store), FakeScraper())
    path = tmp_path / "timeline.json"
    path.write_text('{"day": "2025-01-01"}', encoding="utf-8")

    with pytest.raises(SchemaError):
        runner.run_export_file(str(path))

    assert memory_store.audit[0].success is False


@pytest.mark.parametrize("literal", ["NaN", "Infinity", "-1"])
def test_json_upload_rejects_non_finite_or_negative_gigabytes(tmp_path, memory_store, literal) -> None:
    runner = make_runner(ReconciliationEngine(memory_store), FakeScraper())
    path = tmp_path / "timeline.json"
    path.write_text('[{"day": "2025-01-01", "gigabytes": %s}]' % literal, encoding="utf-8")

    with pytest.raises(SchemaError):
        runner.run_export_file(str(path))

    assert memory_store.daily == {}
    assert [entry.success for entry in memory_store.audit] == [False]
