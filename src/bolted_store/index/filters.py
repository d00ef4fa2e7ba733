"""
Metadata predicates for hybrid (vector + metadata) search.

Stored metadata is ``str -> str``; filter values are parsed into scalars and
compared against the stored strings with numeric/boolean coercion.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal, Mapping, Sequence, TypeAlias


FilterOperator: TypeAlias = Literal["eq", "ne", "gt", "gte", "lt", "lte", "in", "contains"]
Scalar: TypeAlias = str | bool | int | float


class MetadataFilterParseError(ValueError):
    """Raised when metadata filter syntax is invalid."""


_FIELD_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_.\-]*$")
_NUMBER_RE = re.compile(r"^-?\d+(?:\.\d+)?$")
_IN_RE = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_.\-]*)\s+in\s+(.+?)\s*$", flags=re.IGNORECASE)
_OP_RE = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_.\-]*)\s*(<=|>=|!=|=|<|>|~|:)\s*(.+?)\s*$")

_OPERATORS: dict[str, FilterOperator] = {
    "=": "eq",
    ":": "eq",
    "!=": "ne",
    ">": "gt",
    ">=": "gte",
    "<": "lt",
    "<=": "lte",
    "~": "contains",
}
_TRUE = {"true", "1", "yes", "y", "on"}
_FALSE = {"false", "0", "no", "n", "off"}


@dataclass(frozen=True)
class MetadataFilter:
    """One normalized metadata condition."""

    field: str
    operator: FilterOperator
    value: Scalar | tuple[Scalar, ...]

    def matches(self, metadata: Mapping[str, str]) -> bool:
        # A missing field never satisfies a condition, including `!=`.
        if self.field not in metadata:
            return False
        stored = metadata[self.field]
        if isinstance(self.value, tuple):
            return self.operator == "in" and any(_equals(stored, item) for item in self.value)
        if self.operator in ("eq", "in"):
            return _equals(stored, self.value)
        if self.operator == "ne":
            return not _equals(stored, self.value)
        if self.operator == "contains":
            return str(self.value).casefold() in stored.casefold()
        number = _as_number(stored)
        if number is None or isinstance(self.value, (bool, str)):
            return False
        if self.operator == "gt":
            return number > self.value
        if self.operator == "gte":
            return number >= self.value
        if self.operator == "lt":
            return number < self.value
        return number <= self.value


def matches_all(filters: Sequence[MetadataFilter], metadata: Mapping[str, str]) -> bool:
    return all(flt.matches(metadata) for flt in filters)


def supported_filter_syntax() -> str:
    """Return a short help text for filter syntax."""
    return (
        "Supported filter syntax: "
        "`field=value`, `field!=value`, `field>=number`, `field<=number`, "
        "`field>number`, `field<number`, `field in (a, b, c)`, `field~substring`; "
        "combine with comma or `and`."
    )


def parse_metadata_filters(raw_filters: str | None) -> list[MetadataFilter]:
    """Parse a raw filter string into normalized metadata conditions."""
    if raw_filters is None or not raw_filters.strip():
        return []
    return [_parse_condition(condition) for condition in _split_conditions(raw_filters)]


def coerce_filters(
    filters: str | Sequence[MetadataFilter] | None,
) -> tuple[MetadataFilter, ...]:
    """Accept either filter text or already-parsed conditions."""
    if filters is None:
        return ()
    if isinstance(filters, str):
        return tuple(parse_metadata_filters(filters))
    return tuple(filters)


def _parse_condition(condition: str) -> MetadataFilter:
    text = condition.strip()
    if not text:
        raise MetadataFilterParseError("Empty filter condition.")

    in_match = _IN_RE.match(text)
    if in_match:
        values = _parse_list_value(in_match.group(2))
        if not values:
            raise MetadataFilterParseError(f"`in` filter has no values: {text!r}")
        return MetadataFilter(field=in_match.group(1), operator="in", value=tuple(values))

    op_match = _OP_RE.match(text)
    if not op_match:
        raise MetadataFilterParseError(f"Invalid filter syntax: {text!r}")

    field_name, symbol, raw_value = op_match.groups()
    if not _FIELD_RE.match(field_name):
        raise MetadataFilterParseError(f"Invalid field name: {field_name!r}")
    value = _parse_scalar_value(raw_value)
    operator = _OPERATORS[symbol]
    if operator in {"gt", "gte", "lt", "lte"} and (
        isinstance(value, bool) or not isinstance(value, (int, float))
    ):
        raise MetadataFilterParseError(
            f"Operator `{symbol}` requires a numeric value: {text!r}"
        )
    return MetadataFilter(field=field_name, operator=operator, value=value)


def _split_conditions(raw: str) -> list[str]:
    """Split on top-level commas and ` and `, respecting quotes and brackets."""
    parts: list[str] = []
    current: list[str] = []
    quote: str | None = None
    depth = 0
    i = 0
    while i < len(raw):
        ch = raw[i]
        if quote is not None:
            current.append(ch)
            if ch == quote:
                quote = None
            i += 1
            continue
        if ch in {"'", '"'}:
            quote = ch
        elif ch in "([":
            depth += 1
        elif ch in ")]":
            depth = max(depth - 1, 0)
        elif depth == 0 and ch == ",":
            _flush_part(parts, current)
            i += 1
            continue
        elif (
            depth == 0
            and raw[i : i + 3].lower() == "and"
            and (i == 0 or raw[i - 1].isspace())
            and (i + 3 == len(raw) or raw[i + 3].isspace())
        ):
            _flush_part(parts, current)
            i += 3
            continue
        current.append(ch)
        i += 1
    _flush_part(parts, current)
    return parts


def _flush_part(parts: list[str], current: list[str]) -> None:
    text = "".join(current).strip()
    if text:
        parts.append(text)
    current.clear()


def _parse_list_value(raw_value: str) -> list[Scalar]:
    text = raw_value.strip()
    if (text.startswith("(") and text.endswith(")")) or (
        text.startswith("[") and text.endswith("]")
    ):
        text = text[1:-1]
    if not text.strip():
        return []
    return [_parse_scalar_value(item) for item in _split_conditions(text)]


def _parse_scalar_value(raw_value: str) -> Scalar:
    text = raw_value.strip()
    if not text:
        raise MetadataFilterParseError("Missing filter value.")
    if len(text) >= 2 and text[0] == text[-1] and text[0] in {"'", '"'}:
        return text[1:-1]
    lower = text.lower()
    if lower == "true":
        return True
    if lower == "false":
        return False
    if _NUMBER_RE.match(text):
        return float(text) if "." in text else int(text)
    return text


def _as_number(stored: str) -> float | None:
    try:
        return float(stored)
    except ValueError:
        return None


def _equals(stored: str, expected: Scalar) -> bool:
    if isinstance(expected, bool):
        lowered = stored.strip().lower()
        return lowered in _TRUE if expected else lowered in _FALSE
    if isinstance(expected, (int, float)):
        number = _as_number(stored)
        return number is not None and number == expected
    return stored.casefold() == expected.casefold()
