"""JSON Lines Telemetry adapter.

Implements the Telemetry port by appending one orjson-encoded object per line.
Every record is stamped with the session clock and the app instance id; fields
whose key looks like a credential are redacted before they reach disk.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

import orjson

from coinwise.core.clock import Clock
from coinwise.utils.utility import make_serializable


class JsonlTelemetry:
    _REDACTION_TOKEN = "***REDACTED***"
    _DEFAULT_SECRET_KEYS = frozenset(
        {
            "api_key",
            "password",
            "token",
            "id_token",
            "refresh_token",
            "auth",
        }
    )

    def __init__(
        self,
        instance_id: str,
        sink_path: Path,
        clock: Optional[Clock] = None,
        secret_keys: Iterable[str] = _DEFAULT_SECRET_KEYS,
    ) -> None:
        self._instance_id = str(instance_id)
        self._sink_path = sink_path if isinstance(sink_path, Path) else Path(sink_path)
        self._clock = clock
        self._secret_keys = frozenset([secret_keys] if isinstance(secret_keys, str) else secret_keys)

    def log(self, event: str, **fields: Any) -> None:
        if not event:
            raise ValueError("telemetry event name must be non-empty")

        sanitized_fields, redacted = self._sanitize_fields(fields)
        record: dict[str, Any] = {
            "event": event,
            "ts_utc": self._clock.now() if self._clock is not None else None,
            "instance_id": self._instance_id,
            **sanitized_fields,
        }
        if redacted:
            record["redacted_fields"] = sorted(redacted)

        self._write_record(record)

    def _sanitize_fields(self, fields: Mapping[str, Any]) -> tuple[dict[str, Any], set[str]]:
        sanitized: dict[str, Any] = {}
        redacted: set[str] = set()
        for key, value in fields.items():
            if key in self._secret_keys:
                sanitized[key] = self._REDACTION_TOKEN
                redacted.add(key)
            else:
                sanitized[key] = make_serializable(value)
        return sanitized, redacted

    def _write_record(self, record: Mapping[str, Any]) -> None:
        self._sink_path.parent.mkdir(parents=True, exist_ok=True)
        payload = orjson.dumps(record, option=orjson.OPT_SORT_KEYS)
        with self._sink_path.open("ab") as handle:
            handle.write(payload + b"\n")
