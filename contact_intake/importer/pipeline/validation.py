"""
Validation engine for tenant-defined contact group fields.

Field definitions are interpreted into one frozen rule dataclass per field
type. Interpreting a corrupt definition raises ``FieldSchemaError`` instead of
silently letting values through; everything else here is pure and returns
structured ``FieldError`` outcomes that callers can surface to users, store
alongside values, or join into a single row message.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Iterable, Mapping, Union

from contact_intake.models.contact import FieldType

from .phone import is_e164, phone_token

_EMAIL_REGEX = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_TRUE_TOKENS = frozenset({"true", "yes", "y", "1"})
_FALSE_TOKENS = frozenset({"false", "no", "n", "0"})


class FieldSchemaError(ValueError):
    """Raised when a stored field definition or rule set cannot be interpreted."""


@dataclass(frozen=True)
class FieldError:
    """
    A single rule violation.

    Attributes:
        field: Name of the field that failed.
        rule: Stable rule identifier (``required``, ``min_length``, ``options``...).
        message: Human-friendly message, e.g. ``"age must be a valid number"``.
        value: The offending input value.
    """

    field: str
    rule: str
    message: str
    value: Any = None

    def to_dict(self) -> dict[str, Any]:
        value = self.value
        if isinstance(value, (date, datetime)):
            value = value.isoformat()
        elif isinstance(value, Decimal):
            value = float(value)
        return {"field": self.field, "rule": self.rule, "message": self.message, "value": value}


@dataclass(frozen=True)
class ValidationResult:
    errors: tuple[FieldError, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def messages(self) -> list[str]:
        return [error.message for error in self.errors]

    def to_dict(self) -> dict[str, Any]:
        return {"is_valid": self.is_valid, "errors": [error.to_dict() for error in self.errors]}


def is_missing(value: Any) -> bool:
    """None, blank strings and empty lists all count as "not provided"."""

    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return False


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return str(int(value))
    return str(value)


def _display_number(value: float | int) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _coerce_number(value: Any) -> float | int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        number = value
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(float(number)):
        return None
    return number


def _coerce_date(value: Any, fmt: str | None = None) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    if fmt:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            return None
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        return None


# --- rule value converters --------------------------------------------------


def _rule_int(key: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise FieldSchemaError(f"Rule '{key}' must be a non-negative integer.")
    return value


def _rule_number(key: str, value: Any) -> float | int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise FieldSchemaError(f"Rule '{key}' must be a finite number.")
    return value


def _rule_bool(key: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise FieldSchemaError(f"Rule '{key}' must be true or false.")
    return value


def _rule_text(key: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise FieldSchemaError(f"Rule '{key}' must be a non-empty string.")
    return value.strip()


def _rule_text_list(key: str, value: Any) -> tuple[str, ...]:
    if isinstance(value, (str, bytes)) or not isinstance(value, (list, tuple)):
        raise FieldSchemaError(f"Rule '{key}' must be a list.")
    items = []
    for item in value:
        if item is None or isinstance(item, (dict, list, tuple)):
            raise FieldSchemaError(f"Rule '{key}' may only contain plain values.")
        items.append(_as_text(item))
    return tuple(items)


def _rule_domains(key: str, value: Any) -> tuple[str, ...]:
    return tuple(domain.lower().lstrip("@") for domain in _rule_text_list(key, value))


def _rule_country_codes(key: str, value: Any) -> tuple[str, ...]:
    codes = tuple(re.sub(r"\D", "", code) for code in _rule_text_list(key, value))
    if any(not code for code in codes):
        raise FieldSchemaError(f"Rule '{key}' must contain numeric country codes.")
    return codes


def _rule_pattern(key: str, value: Any) -> re.Pattern:
    if not isinstance(value, str):
        raise FieldSchemaError(f"Rule '{key}' must be a regular expression string.")
    try:
        return re.compile(value)
    except re.error as exc:
        raise FieldSchemaError(f"Rule '{key}' is not a valid regular expression: {exc}") from exc


def _rule_date(key: str, value: Any) -> date:
    parsed = _coerce_date(value)
    if parsed is None:
        raise FieldSchemaError(f"Rule '{key}' must be an ISO date (YYYY-MM-DD).")
    return parsed


# --- rule sets --------------------------------------------------------------


@dataclass(frozen=True)
class TextRules:
    min_length: int | None = None
    max_length: int | None = None
    pattern: re.Pattern | None = None
    allowed_values: tuple[str, ...] | None = None

    def check(self, name: str, value: Any) -> list[FieldError]:
        text = _as_text(value)
        errors = []
        if self.min_length is not None and len(text) < self.min_length:
            errors.append(
                FieldError(name, "min_length", f"{name} must be at least {self.min_length} characters", value)
            )
        if self.max_length is not None and len(text) > self.max_length:
            errors.append(
                FieldError(name, "max_length", f"{name} must be at most {self.max_length} characters", value)
            )
        if self.pattern is not None and not self.pattern.search(text):
            errors.append(FieldError(name, "pattern", f"{name} does not match the required pattern", value))
        if self.allowed_values is not None and text not in self.allowed_values:
            errors.append(
                FieldError(
                    name,
                    "allowed_values",
                    f"{name} must be one of: {', '.join(self.allowed_values)}",
                    value,
                )
            )
        return errors


@dataclass(frozen=True)
class NumberRules:
    min: float | int | None = None
    max: float | int | None = None
    integer_only: bool = False

    def check(self, name: str, value: Any) -> list[FieldError]:
        number = _coerce_number(value)
        if number is None:
            return [FieldError(name, "number", f"{name} must be a valid number", value)]
        errors = []
        if self.min is not None and number < self.min:
            errors.append(
                FieldError(name, "min", f"{name} must be greater than or equal to {_display_number(self.min)}", value)
            )
        if self.max is not None and number > self.max:
            errors.append(
                FieldError(name, "max", f"{name} must be less than or equal to {_display_number(self.max)}", value)
            )
        if self.integer_only and not float(number).is_integer():
            errors.append(FieldError(name, "integer_only", f"{name} must be an integer", value))
        return errors


@dataclass(frozen=True)
class DateRules:
    min_date: date | None = None
    max_date: date | None = None
    format: str | None = None

    def check(self, name: str, value: Any) -> list[FieldError]:
        parsed = _coerce_date(value, self.format)
        if parsed is None:
            return [FieldError(name, "date", f"{name} must be a valid date", value)]
        errors = []
        if self.min_date is not None and parsed < self.min_date:
            errors.append(
                FieldError(name, "min_date", f"{name} must be on or after {self.min_date.isoformat()}", value)
            )
        if self.max_date is not None and parsed > self.max_date:
            errors.append(
                FieldError(name, "max_date", f"{name} must be on or before {self.max_date.isoformat()}", value)
            )
        return errors


@dataclass(frozen=True)
class BooleanRules:
    true_label: str | None = None
    false_label: str | None = None

    def coerce(self, value: Any) -> bool | None:
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)) and value in (0, 1):
            return bool(value)
        if not isinstance(value, str):
            return None
        token = value.strip().lower()
        if token in _TRUE_TOKENS or (self.true_label and token == self.true_label.lower()):
            return True
        if token in _FALSE_TOKENS or (self.false_label and token == self.false_label.lower()):
            return False
        return None

    def check(self, name: str, value: Any) -> list[FieldError]:
        if self.coerce(value) is None:
            return [FieldError(name, "boolean", f"{name} must be a boolean", value)]
        return []


@dataclass(frozen=True)
class SelectRules:
    options: tuple[str, ...]
    multiple: bool = False

    def check(self, name: str, value: Any) -> list[FieldError]:
        if self.multiple:
            if isinstance(value, (list, tuple)):
                items = [_as_text(item) for item in value]
            else:
                items = [part.strip() for part in _as_text(value).split(",") if part.strip()]
        else:
            items = [_as_text(value)]
        if any(item not in self.options for item in items):
            return [FieldError(name, "options", f"{name} must be one of: {', '.join(self.options)}", value)]
        return []


@dataclass(frozen=True)
class EmailRules:
    allowed_domains: tuple[str, ...] | None = None

    def check(self, name: str, value: Any) -> list[FieldError]:
        text = _as_text(value)
        errors: list[FieldError] = []
        if not _EMAIL_REGEX.match(text):
            errors.append(FieldError(name, "email", f"{name} must be a valid email address", value))
        domain = text.rsplit("@", 1)[1].strip().lower() if "@" in text else ""
        if self.allowed_domains is not None and domain and domain not in self.allowed_domains:
            errors.append(
                FieldError(
                    name,
                    "allowed_domains",
                    f"{name} must be from one of these domains: {', '.join(self.allowed_domains)}",
                    value,
                )
            )
        return errors


@dataclass(frozen=True)
class PhoneRules:
    allowed_country_codes: tuple[str, ...] | None = None

    def check(self, name: str, value: Any) -> list[FieldError]:
        text = phone_token(value)
        errors: list[FieldError] = []
        if not is_e164(text):
            errors.append(FieldError(name, "phone", f"{name} must be a valid phone number in E.164 format", value))
        digits = text[1:] if text.startswith("+") and text[1:].isdigit() else ""
        if (
            self.allowed_country_codes is not None
            and digits
            and not any(digits.startswith(code) for code in self.allowed_country_codes)
        ):
            codes = ", ".join(f"+{code}" for code in self.allowed_country_codes)
            errors.append(
                FieldError(
                    name,
                    "allowed_country_codes",
                    f"{name} must have one of these country codes: {codes}",
                    value,
                )
            )
        return errors


FieldRules = Union[TextRules, NumberRules, DateRules, BooleanRules, SelectRules, EmailRules, PhoneRules]

_Converter = Callable[[str, Any], Any]

RULE_SCHEMAS: dict[FieldType, tuple[type, dict[str, _Converter]]] = {
    FieldType.TEXT: (
        TextRules,
        {
            "min_length": _rule_int,
            "max_length": _rule_int,
            "pattern": _rule_pattern,
            "allowed_values": _rule_text_list,
        },
    ),
    FieldType.NUMBER: (
        NumberRules,
        {"min": _rule_number, "max": _rule_number, "integer_only": _rule_bool},
    ),
    FieldType.DATE: (
        DateRules,
        {"min_date": _rule_date, "max_date": _rule_date, "format": _rule_text},
    ),
    FieldType.BOOLEAN: (BooleanRules, {"true_label": _rule_text, "false_label": _rule_text}),
    FieldType.SELECT: (SelectRules, {"options": _rule_text_list, "multiple": _rule_bool}),
    FieldType.EMAIL: (EmailRules, {"allowed_domains": _rule_domains}),
    FieldType.PHONE: (PhoneRules, {"allowed_country_codes": _rule_country_codes}),
}


def parse_rules(field_type: FieldType, raw: Mapping[str, Any] | None, *, field_name: str = "field") -> FieldRules:
    """
    Interpret a stored rule mapping for ``field_type``.

    ``None`` values are treated as unset. Unknown keys, mistyped values and a
    select without options raise ``FieldSchemaError``.
    """

    rules_cls, converters = RULE_SCHEMAS[field_type]
    if raw is None:
        raw = {}
    if not isinstance(raw, Mapping):
        raise FieldSchemaError(f"Validation rules for '{field_name}' must be an object.")

    unknown = sorted(str(key) for key in raw if key not in converters)
    if unknown:
        raise FieldSchemaError(
            f"Unsupported validation rule(s) for {field_type.value} field '{field_name}': {', '.join(unknown)}"
        )

    kwargs = {key: converters[key](key, value) for key, value in raw.items() if value is not None}
    if field_type is FieldType.SELECT and not kwargs.get("options"):
        raise FieldSchemaError(f"Select field '{field_name}' requires a non-empty 'options' list.")
    return rules_cls(**kwargs)


@dataclass(frozen=True)
class FieldDefinition:
    """Interpreted, ready-to-evaluate form of a group field."""

    name: str
    field_type: FieldType
    rules: FieldRules
    is_required: bool = False
    default_value: Any = None

    def check(self, value: Any) -> list[FieldError]:
        if is_missing(value):
            if self.is_required:
                return [FieldError(self.name, "required", f"{self.name} is required", value)]
            return []
        return self.rules.check(self.name, value)


def parse_field_definition(source: Any) -> FieldDefinition:
    """
    Build a ``FieldDefinition`` from a ``ContactGroupField`` row or a mapping
    with the same keys (``name``, ``field_type``, ``is_required``,
    ``default_value``, ``validation_rules``).
    """

    if isinstance(source, FieldDefinition):
        return source
    if isinstance(source, Mapping):
        read = source.get
    else:
        def read(key: str, default: Any = None) -> Any:
            return getattr(source, key, default)

    name = read("name")
    if not isinstance(name, str) or not name.strip():
        raise FieldSchemaError("Field definitions require a non-empty name.")

    raw_type = read("field_type")
    try:
        field_type = FieldType(raw_type)
    except ValueError:
        raise FieldSchemaError(f"Unsupported field type '{raw_type}' for field '{name}'.") from None

    return FieldDefinition(
        name=name,
        field_type=field_type,
        rules=parse_rules(field_type, read("validation_rules"), field_name=name),
        is_required=bool(read("is_required", False)),
        default_value=read("default_value"),
    )


def parse_field_definitions(sources: Iterable[Any]) -> list[FieldDefinition]:
    return [parse_field_definition(source) for source in sources or ()]


def validate(field_defs: Iterable[Any], values: Mapping[str, Any] | None) -> ValidationResult:
    """
    Validate ``values`` against ``field_defs``.

    Errors are reported in definition order. Values for names that have no
    definition are ignored.
    """

    values = values or {}
    errors: list[FieldError] = []
    for definition in parse_field_definitions(field_defs):
        errors.extend(definition.check(values.get(definition.name)))
    return ValidationResult(errors=tuple(errors))


def apply_defaults(field_defs: Iterable[Any], values: Mapping[str, Any] | None) -> dict[str, Any]:
    """Return a copy of ``values`` with ``default_value`` filled in for missing fields."""

    merged = dict(values or {})
    for definition in parse_field_definitions(field_defs):
        if definition.default_value is not None and is_missing(merged.get(definition.name)):
            merged[definition.name] = definition.default_value
    return merged
