"""Field type registry: schema decoding and per-kind value codecs.

The registry is built once per load from the raw schema a data service returns.
Select-like fields (status, dropdown) carry their options decoded from the
field's settings encoding. Two historical settings shapes exist and are both
accepted:

- list of objects::

    {"labels": [{"id": 1, "name": "Done", "color": "#00c875"}]}

- map keyed by option id, with a parallel color map::

    {"labels": {"1": "Done"}, "labels_colors": {"1": {"color": "#00c875"}}}

Settings that cannot be decoded leave the field with no options; the rest of
the schema still loads.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Iterator, Mapping
from typing import Any

from boardcal.errors import DecodeError, SchemaResolutionError
from boardcal.models import (
    SELECT_KINDS,
    DecodedDate,
    FieldDefinition,
    FieldKind,
    FieldOption,
    FieldValue,
    RawFieldSchema,
)
from boardcal.temporal import TemporalNormalizer

logger = logging.getLogger(__name__)

# Legacy and alias kind names as reported by the board API.
KIND_ALIASES: dict[str, FieldKind] = {
    "text": FieldKind.text,
    "name": FieldKind.text,
    "long_text": FieldKind.long_text,
    "long-text": FieldKind.long_text,
    "numbers": FieldKind.numbers,
    "numeric": FieldKind.numbers,
    "date": FieldKind.date,
    "status": FieldKind.status,
    "color": FieldKind.status,
    "single-select": FieldKind.status,
    "dropdown": FieldKind.dropdown,
    "multiple-options": FieldKind.dropdown,
    "people": FieldKind.people,
    "multiple-person": FieldKind.people,
    "checkbox": FieldKind.checkbox,
    "boolean": FieldKind.checkbox,
}


def resolve_kind(raw_kind: str | None) -> FieldKind:
    """Map a raw kind string from the source schema onto a ``FieldKind``."""
    if not isinstance(raw_kind, str):
        return FieldKind.unknown
    return KIND_ALIASES.get(raw_kind.strip().lower(), FieldKind.unknown)


def _normalize_option_id(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _extract_color(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    if isinstance(value, Mapping):
        color = value.get("color")
        if isinstance(color, str) and color.strip():
            return color.strip()
    return None


def _option_sort_key(option_id: str) -> tuple[int, int | str]:
    return (0, int(option_id)) if option_id.isdigit() else (1, option_id)


def decode_settings_options(settings_encoding: str | None) -> tuple[FieldOption, ...]:
    """Decode the option list of a select-like field from its settings encoding.

    Raises ``ValueError`` when the settings are present but malformed.
    """
    if settings_encoding is None or not settings_encoding.strip():
        return ()

    settings = json.loads(settings_encoding)
    if not isinstance(settings, Mapping):
        raise ValueError("settings must decode to a JSON object")

    labels = settings.get("labels")
    if labels is None:
        return ()

    if isinstance(labels, list):
        options: list[FieldOption] = []
        for entry in labels:
            if not isinstance(entry, Mapping):
                continue
            option_id = _normalize_option_id(entry.get("id"))
            label = entry.get("name", entry.get("label"))
            if option_id is None or not isinstance(label, str):
                continue
            options.append(
                FieldOption(option_id=option_id, label=label, color=_extract_color(entry.get("color")))
            )
        return tuple(options)

    if isinstance(labels, Mapping):
        colors = settings.get("labels_colors")
        if not isinstance(colors, Mapping):
            colors = {}
        options = []
        for raw_id in sorted((str(key) for key in labels), key=_option_sort_key):
            label = labels.get(raw_id)
            if not isinstance(label, str):
                continue
            options.append(
                FieldOption(option_id=raw_id, label=label, color=_extract_color(colors.get(raw_id)))
            )
        return tuple(options)

    raise ValueError(f"unsupported labels shape: {type(labels).__name__}")


def build_field_definition(raw: RawFieldSchema) -> FieldDefinition:
    """Build a ``FieldDefinition``, degrading to no options on malformed settings."""
    kind = resolve_kind(raw.kind)
    options: tuple[FieldOption, ...] = ()
    if kind in SELECT_KINDS:
        try:
            options = decode_settings_options(raw.settings_encoding)
        except ValueError as exc:
            logger.warning(
                "Malformed settings for field %s (%s); loading with no options: %s",
                raw.field_id,
                raw.kind,
                exc,
            )
    return FieldDefinition(field_id=raw.field_id, title=raw.title, kind=kind, options=options)


class FieldRegistry(Mapping[str, FieldDefinition]):
    """Read-only, ordered view of a board schema keyed by field id."""

    def __init__(
        self,
        definitions: Iterable[FieldDefinition],
        *,
        normalizer: TemporalNormalizer | None = None,
    ) -> None:
        self._definitions: dict[str, FieldDefinition] = {}
        for definition in definitions:
            if definition.field_id in self._definitions:
                logger.warning("Duplicate field id %s in schema; keeping first", definition.field_id)
                continue
            self._definitions[definition.field_id] = definition
        self.normalizer = normalizer or TemporalNormalizer()

    @classmethod
    def from_schema(
        cls,
        raw_fields: Iterable[RawFieldSchema],
        *,
        normalizer: TemporalNormalizer | None = None,
    ) -> FieldRegistry:
        return cls((build_field_definition(raw) for raw in raw_fields), normalizer=normalizer)

    def __getitem__(self, field_id: str) -> FieldDefinition:
        return self._definitions[field_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._definitions)

    def __len__(self) -> int:
        return len(self._definitions)

    def options(self, field_id: str) -> dict[str, FieldOption]:
        """Ordered option id → option mapping; empty for unknown or non-select fields."""
        definition = self._definitions.get(field_id)
        if definition is None:
            return {}
        return {option.option_id: option for option in definition.options}

    def resolve_option(self, field_id: str, option_id: str | None) -> FieldOption | None:
        if option_id is None:
            return None
        return self.options(field_id).get(option_id)

    # ------------------------------------------------------------------
    # Decoding (raw value → edit input value)
    # ------------------------------------------------------------------

    def decode_value(self, field_value: FieldValue) -> Any:
        """Decode a field value into the input value an edit surface works with.

        Raises ``DecodeError`` on malformed encodings.
        """
        definition = self._definitions.get(field_value.field_id)
        kind = definition.kind if definition is not None else FieldKind.unknown

        if kind is FieldKind.date:
            return self._decode_date(field_value)
        if kind is FieldKind.status:
            return self.selected_option_id(field_value)
        if kind is FieldKind.unknown:
            return field_value.raw_encoded

        payload = _load_json(field_value)
        if kind is FieldKind.text:
            if field_value.display_text is not None:
                return field_value.display_text
            return payload if isinstance(payload, str) else None
        if kind is FieldKind.long_text:
            if isinstance(payload, Mapping) and isinstance(payload.get("text"), str):
                return payload["text"]
            return field_value.display_text
        if kind is FieldKind.numbers:
            return _decode_number(field_value.field_id, payload)
        if kind is FieldKind.dropdown:
            return _decode_id_list(field_value.field_id, payload, "ids")
        if kind is FieldKind.people:
            return _decode_people(field_value.field_id, payload)
        if kind is FieldKind.checkbox:
            if not isinstance(payload, Mapping):
                return False
            checked = payload.get("checked")
            return checked is True or (isinstance(checked, str) and checked.lower() == "true")
        return field_value.raw_encoded

    def _decode_date(self, field_value: FieldValue) -> DecodedDate | None:
        return self.normalizer.decode_value(field_value)

    def selected_option_id(self, field_value: FieldValue | None) -> str | None:
        """Return the option id chosen in a status value, or None when unset.

        Accepts ``{"index": n}``, ``{"selectedOptionId": ...}``, ``{"id": ...}``
        and ``{"label": ...}`` (matched against the schema options).
        """
        if field_value is None:
            return None
        payload = _load_json(field_value)
        if not isinstance(payload, Mapping):
            return None
        for key in ("selectedOptionId", "index", "id"):
            option_id = _normalize_option_id(payload.get(key))
            if option_id is not None:
                return option_id
        label = payload.get("label")
        if isinstance(label, str):
            for option in self.options(field_value.field_id).values():
                if option.label == label:
                    return option.option_id
        return None

    # ------------------------------------------------------------------
    # Encoding (edit input value → wire value)
    # ------------------------------------------------------------------

    def encode_value(self, field_id: str, value: Any) -> Any:
        """Encode a user input value for ``field_id`` into its wire representation.

        Raises ``SchemaResolutionError`` for unknown fields and option ids.
        """
        definition = self._definitions.get(field_id)
        if definition is None:
            raise SchemaResolutionError(f"Field '{field_id}' is not part of the board schema")

        kind = definition.kind
        if kind in (FieldKind.text, FieldKind.numbers):
            return "" if value is None else str(value)
        if kind is FieldKind.long_text:
            return {"text": "" if value is None else str(value)}
        if kind is FieldKind.date:
            if value is None or value == "":
                return {}
            if isinstance(value, DecodedDate):
                return self.normalizer.encode(value.instant, all_day=value.all_day)
            instant, date_only = self.normalizer.parse_edit_value(value)
            return self.normalizer.encode(instant, all_day=date_only)
        if kind is FieldKind.status:
            return self._encode_status(definition, value)
        if kind is FieldKind.dropdown:
            ids = [self._require_option(definition, option_id).option_id for option_id in _as_list(value)]
            return {"ids": [int(option_id) if option_id.isdigit() else option_id for option_id in ids]}
        if kind is FieldKind.people:
            return {
                "personsAndTeams": [
                    {"id": int(person) if str(person).isdigit() else str(person), "kind": "person"}
                    for person in _as_list(value)
                ]
            }
        if kind is FieldKind.checkbox:
            return {"checked": "true"} if value else None
        return value

    def _encode_status(self, definition: FieldDefinition, value: Any) -> dict[str, Any]:
        option_id = _normalize_option_id(value)
        if option_id is None:
            return {}
        option = self._require_option(definition, option_id)
        if option.option_id.isdigit():
            return {"index": int(option.option_id)}
        return {"label": option.label}

    @staticmethod
    def _require_option(definition: FieldDefinition, option_id: Any) -> FieldOption:
        normalized = _normalize_option_id(option_id)
        option = definition.option(normalized) if normalized is not None else None
        if option is None:
            raise SchemaResolutionError(
                f"Option {option_id!r} is not defined for field '{definition.field_id}'"
            )
        return option


def _load_json(field_value: FieldValue) -> Any:
    raw = field_value.raw_encoded
    if raw is None or not raw.strip():
        return None
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise DecodeError(field_value.field_id, f"invalid JSON ({exc})") from exc


def _decode_number(field_id: str, payload: Any) -> int | float | None:
    if payload is None or payload == "":
        return None
    if isinstance(payload, bool):
        raise DecodeError(field_id, "boolean is not a number")
    if isinstance(payload, int | float):
        return payload
    if isinstance(payload, str):
        try:
            number = float(payload)
        except ValueError as exc:
            raise DecodeError(field_id, f"not a number: {payload!r}") from exc
        return int(number) if number.is_integer() and "." not in payload else number
    raise DecodeError(field_id, f"unexpected number payload: {type(payload).__name__}")


def _decode_id_list(field_id: str, payload: Any, key: str) -> list[str]:
    if payload is None:
        return []
    if not isinstance(payload, Mapping):
        raise DecodeError(field_id, f"expected an object with '{key}'")
    ids = payload.get(key) or []
    if not isinstance(ids, list):
        raise DecodeError(field_id, f"'{key}' must be a list")
    return [option_id for option_id in (_normalize_option_id(item) for item in ids) if option_id]


def _decode_people(field_id: str, payload: Any) -> list[str]:
    if payload is None:
        return []
    if not isinstance(payload, Mapping):
        raise DecodeError(field_id, "expected an object with 'personsAndTeams'")
    entries = payload.get("personsAndTeams") or []
    if not isinstance(entries, list):
        raise DecodeError(field_id, "'personsAndTeams' must be a list")
    people: list[str] = []
    for entry in entries:
        if isinstance(entry, Mapping) and entry.get("kind", "person") == "person":
            person_id = _normalize_option_id(entry.get("id"))
            if person_id is not None:
                people.append(person_id)
    return people


def _as_list(value: Any) -> list[Any]:
    if value is None or value == "":
        return []
    if isinstance(value, list | tuple | set | frozenset):
        return list(value)
    return [value]
