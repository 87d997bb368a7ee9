"""Versioned codec for persisted snapshot history.

Every persisted field is tagged with a type in SNAPSHOT_SCHEMA. ``bigint``
fields are written as decimal strings and parsed back with ``int()``, so
balances far beyond 2**53 round-trip exactly. Decoding is driven by the
schema, never by guessing from a field's name or value.

Document layout (version 1):

    {
      "version": 1,
      "schema": {"shares": "bigint", "timestamp": "int", ...},
      "histories": [
        {"agent_address": "0x..", "vault_address": "0x..", "snapshots": [{...}, ...]}
      ]
    }
"""
from __future__ import annotations

import json
import re
from typing import Any, Mapping, Sequence

from .constants import SnapshotDefaults, StrEnum
from .exceptions import SerializationError
from .models import WalletSnapshot


class FieldType(StrEnum):
    ADDRESS = "address"
    BIGINT = "bigint"
    INT = "int"


SCHEMA_VERSION = SnapshotDefaults.SCHEMA_VERSION

SNAPSHOT_SCHEMA: Mapping[str, FieldType] = {
    "agent_address": FieldType.ADDRESS,
    "vault_address": FieldType.ADDRESS,
    "shares": FieldType.BIGINT,
    "underlying_value": FieldType.BIGINT,
    "timestamp": FieldType.INT,
    "native_balance": FieldType.BIGINT,
    "stable_balance": FieldType.BIGINT,
    "exchange_rate": FieldType.BIGINT,
}

# Added after the first release; older documents may omit them.
OPTIONAL_FIELDS = frozenset({"native_balance", "stable_balance", "exchange_rate"})

_DECIMAL_RE = re.compile(r"^-?[0-9]+$")


def encode_value(field_type: FieldType, value: Any) -> Any:
    if field_type == FieldType.BIGINT:
        return str(int(value))
    if field_type == FieldType.INT:
        return int(value)
    return str(value)


def decode_value(field_type: FieldType, raw: Any, field_name: str) -> Any:
    if field_type == FieldType.BIGINT:
        if not isinstance(raw, str) or not _DECIMAL_RE.match(raw):
            raise SerializationError(
                f"field {field_name!r} must be a decimal string, got {raw!r}"
            )
        return int(raw)
    if field_type == FieldType.INT:
        if isinstance(raw, bool) or not isinstance(raw, int):
            raise SerializationError(f"field {field_name!r} must be an integer, got {raw!r}")
        return raw
    if not isinstance(raw, str) or not raw:
        raise SerializationError(f"field {field_name!r} must be a non-empty string")
    return raw


def encode_snapshot(snapshot: WalletSnapshot) -> dict[str, Any]:
    return {
        name: encode_value(field_type, getattr(snapshot, name))
        for name, field_type in SNAPSHOT_SCHEMA.items()
    }


def decode_snapshot(data: Mapping[str, Any]) -> WalletSnapshot:
    if not isinstance(data, Mapping):
        raise SerializationError(f"snapshot must be an object, got {type(data).__name__}")
    values: dict[str, Any] = {}
    for name, field_type in SNAPSHOT_SCHEMA.items():
        if name not in data:
            if name in OPTIONAL_FIELDS:
                continue
            raise SerializationError(f"snapshot is missing required field {name!r}")
        values[name] = decode_value(field_type, data[name], name)
    return WalletSnapshot(**values)


def dumps_histories(histories: Mapping[tuple[str, str], Sequence[WalletSnapshot]]) -> str:
    document = {
        "version": SCHEMA_VERSION,
        "schema": {name: field_type.value for name, field_type in SNAPSHOT_SCHEMA.items()},
        "histories": [
            {
                "agent_address": snapshots[0].agent_address,
                "vault_address": snapshots[0].vault_address,
                "snapshots": [encode_snapshot(s) for s in snapshots],
            }
            for snapshots in histories.values()
            if snapshots
        ],
    }
    return json.dumps(document, indent=2)


def _check_schema(declared: Any) -> None:
    if not isinstance(declared, Mapping):
        raise SerializationError("document schema must be an object")
    for name, type_name in declared.items():
        expected = SNAPSHOT_SCHEMA.get(name)
        if expected is not None and type_name != expected.value:
            raise SerializationError(
                f"schema declares {name!r} as {type_name!r}, expected {expected.value!r}"
            )


def loads_histories(
    text: str | bytes,
    *,
    limit: int = SnapshotDefaults.HISTORY_LIMIT,
) -> dict[tuple[str, str], list[WalletSnapshot]]:
    """Parse a history document.

    Histories longer than ``limit`` keep only their newest entries.

    Raises:
        SerializationError: the document is not valid UTF-8 JSON, has an
            unknown version, any snapshot violates the schema, or a
            history's timestamps are not strictly increasing.
    """
    try:
        if isinstance(text, bytes):
            text = text.decode("utf-8")
        document = json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError, RecursionError, TypeError) as e:
        raise SerializationError(f"snapshot history is not valid JSON: {e}") from e

    if not isinstance(document, dict):
        raise SerializationError("snapshot history must be a JSON object")
    if document.get("version") != SCHEMA_VERSION:
        raise SerializationError(
            f"unsupported snapshot history version {document.get('version')!r}"
        )
    _check_schema(document.get("schema", {}))

    entries = document.get("histories", [])
    if not isinstance(entries, list):
        raise SerializationError("'histories' must be a list")

    histories: dict[tuple[str, str], list[WalletSnapshot]] = {}
    for entry in entries:
        if not isinstance(entry, dict) or not isinstance(entry.get("snapshots"), list):
            raise SerializationError("history entry must contain a 'snapshots' list")
        for raw in entry["snapshots"]:
            snapshot = decode_snapshot(raw)
            history = histories.setdefault(snapshot.key, [])
            if history and snapshot.timestamp <= history[-1].timestamp:
                raise SerializationError(
                    f"history for {snapshot.key} is not strictly increasing at "
                    f"timestamp {snapshot.timestamp}"
                )
            history.append(snapshot)

    for key, history in histories.items():
        if len(history) > limit:
            histories[key] = history[-limit:]
    return histories

