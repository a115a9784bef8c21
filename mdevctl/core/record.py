"""Loading, validation, and serialization of device config records."""

from __future__ import annotations

import json
from dataclasses import replace
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any

from jsonschema import ValidationError, validators

from mdevctl.core.errors import ConfigLoadError, ConfigValidationError
from mdevctl.core.model import ConfigRecord, StartMode


@lru_cache(maxsize=None)
def load_schema_validator(name: str) -> Any:
    schema_text = resources.files("mdevctl.schemas").joinpath(f"{name}.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def validate(name: str, doc: Any, *, source: object) -> None:
    try:
        load_schema_validator(name).validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ConfigValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc


def attributes_from_json(doc: Any, *, source: object) -> tuple[tuple[str, str], ...]:
    validate("attributes", doc, source=source)
    return tuple(next(iter(item.items())) for item in doc)


def attributes_to_json(attrs: tuple[tuple[str, str], ...]) -> list[dict[str, str]]:
    return [{name: value} for name, value in attrs]


def record_from_json(doc: Any, *, source: object) -> ConfigRecord:
    validate("config", doc, source=source)
    return ConfigRecord(
        mdev_type=doc["mdev_type"],
        start_mode=StartMode(doc["start"]),
        attrs=tuple(next(iter(item.items())) for item in doc.get("attrs", [])),
    )


def record_to_json(record: ConfigRecord) -> dict[str, Any]:
    """Serialize with the fixed field order `mdev_type`, `start`, `attrs`.

    `attrs` is omitted when empty.
    """
    doc: dict[str, Any] = {
        "mdev_type": record.mdev_type,
        "start": record.start_mode.value,
    }
    if record.attrs:
        doc["attrs"] = attributes_to_json(record.attrs)
    return doc


def dumps(doc: Any) -> str:
    return json.dumps(doc, indent=2)


def parse_record(text: str, *, source: object) -> ConfigRecord:
    try:
        doc = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigValidationError(f"Invalid JSON in {source}: {exc}") from exc
    return record_from_json(doc, source=source)


def read_record_file(path: Path) -> ConfigRecord:
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigLoadError(f"Unable to read file {path}: {exc}") from exc
    return parse_record(content, source=path)


def add_attribute(record: ConfigRecord, name: str, value: str, index: int | None = None) -> ConfigRecord:
    """Insert an attribute at `index`, or append when no index is given."""
    attrs = list(record.attrs)
    if index is None:
        attrs.append((name, value))
    elif 0 <= index <= len(attrs):
        attrs.insert(index, (name, value))
    else:
        raise ConfigValidationError(f"Attribute index {index} is invalid")
    return replace(record, attrs=tuple(attrs))


def delete_attribute(record: ConfigRecord, index: int | None = None) -> ConfigRecord:
    """Remove the attribute at `index`, or the last one when no index is given."""
    attrs = list(record.attrs)
    if index is None:
        if attrs:
            attrs.pop()
    elif 0 <= index < len(attrs):
        del attrs[index]
    else:
        raise ConfigValidationError(f"Attribute index {index} is invalid")
    return replace(record, attrs=tuple(attrs))
