import json
from decimal import Decimal

import pytest

from coinwise.adapters.telemetry.jsonl import JsonlTelemetry
from coinwise.core.clock import SimClock


def _read_records(path):
    content = path.read_text(encoding="utf-8").strip()
    assert content, "expected telemetry sink to contain at least one record"
    return [json.loads(line) for line in content.splitlines()]


def test_record_is_stamped_with_instance_and_clock(tmp_path):
    sink = tmp_path / "nested" / "events.jsonl"
    telemetry = JsonlTelemetry(instance_id="app-1", sink_path=sink, clock=SimClock(start_ms=42))

    telemetry.log("trade_executed", symbol="BTC", amount=Decimal("0.1"))

    [record] = _read_records(sink)
    assert record == {
        "event": "trade_executed",
        "ts_utc": 42,
        "instance_id": "app-1",
        "symbol": "BTC",
        "amount": "0.1",
    }


def test_records_are_appended(tmp_path):
    sink = tmp_path / "events.jsonl"
    telemetry = JsonlTelemetry(instance_id="app-1", sink_path=sink)

    telemetry.log("a")
    telemetry.log("b")

    records = _read_records(sink)
    assert [r["event"] for r in records] == ["a", "b"]
    assert records[0]["ts_utc"] is None


def test_secret_fields_are_redacted(tmp_path):
    sink = tmp_path / "events.jsonl"
    telemetry = JsonlTelemetry(instance_id="app-1", sink_path=sink)

    telemetry.log("signed_in", email="a@x.io", password="hunter22", id_token="abc")

    [record] = _read_records(sink)
    assert record["password"] == "***REDACTED***"
    assert record["id_token"] == "***REDACTED***"
    assert record["email"] == "a@x.io"
    assert record["redacted_fields"] == ["id_token", "password"]


def test_single_string_secret_key(tmp_path):
    sink = tmp_path / "events.jsonl"
    telemetry = JsonlTelemetry(instance_id="app-1", sink_path=sink, secret_keys="email")

    telemetry.log("signed_in", email="a@x.io", password="visible")

    [record] = _read_records(sink)
    assert record["email"] == "***REDACTED***"
    assert record["password"] == "visible"


def test_empty_event_rejected(tmp_path):
    telemetry = JsonlTelemetry(instance_id="app-1", sink_path=tmp_path / "events.jsonl")
    with pytest.raises(ValueError):
        telemetry.log("")
