"""Typed row representation for configuration-driven table shapes."""

import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Mapping


class ScalarKind(str, Enum):
    """Tag describing the type of a column value."""

    NULL = "null"
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"
    DATE = "date"
    TIME = "time"
    BINARY = "binary"


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _numbers_equal(left: Any, right: Any) -> bool:
    if isinstance(left, float) or isinstance(right, float):
        return float(left) == float(right)
    return left == right


@dataclass(frozen=True, eq=False)
class Scalar:
    """A column value together with its kind.

    Values of kind NUMBER compare numerically across int, Decimal and float,
    so a value read back from the destination matches the one extracted from
    the source even when the drivers return different numeric types.
    """

    kind: ScalarKind
    value: Any = None

    @classmethod
    def of(cls, value: Any) -> "Scalar":
        """Tag a Python value with its kind.

        Raises:
            TypeError: If the value has no supported scalar representation
        """
        if value is None:
            return cls(ScalarKind.NULL)
        # bool is a subclass of int, so it has to be checked first
        if isinstance(value, bool):
            return cls(ScalarKind.BOOLEAN, value)
        if isinstance(value, (int, float, Decimal)):
            return cls(ScalarKind.NUMBER, value)
        if isinstance(value, str):
            return cls(ScalarKind.STRING, value)
        if isinstance(value, datetime):
            return cls(ScalarKind.TIMESTAMP, _to_naive_utc(value))
        if isinstance(value, date):
            return cls(ScalarKind.DATE, value)
        if isinstance(value, time):
            return cls(ScalarKind.TIME, value)
        if isinstance(value, (bytes, bytearray, memoryview)):
            return cls(ScalarKind.BINARY, bytes(value))
        if isinstance(value, uuid.UUID):
            return cls(ScalarKind.STRING, str(value))
        raise TypeError(f"Unsupported column value type: {type(value).__name__}")

    @property
    def is_null(self) -> bool:
        return self.kind is ScalarKind.NULL

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Scalar):
            return NotImplemented
        if self.kind is not other.kind:
            return False
        if self.kind is ScalarKind.NUMBER:
            return _numbers_equal(self.value, other.value)
        return self.value == other.value

    def __hash__(self) -> int:
        if self.kind is ScalarKind.NUMBER:
            return hash((self.kind, float(self.value)))
        return hash((self.kind, self.value))


@dataclass(frozen=True)
class ChangeRow:
    """One extracted source record as an ordered column-to-value association."""

    items: tuple[tuple[str, Scalar], ...]

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "ChangeRow":
        """Build a row from a column-name mapping, preserving column order."""
        return cls(tuple((str(column), Scalar.of(value)) for column, value in mapping.items()))

    @classmethod
    def from_pairs(cls, pairs: Iterable[tuple[str, Any]]) -> "ChangeRow":
        return cls(tuple((column, Scalar.of(value)) for column, value in pairs))

    @property
    def columns(self) -> tuple[str, ...]:
        return tuple(column for column, _ in self.items)

    def get(self, column: str) -> Scalar | None:
        """Return the value of a column, matching names case-insensitively as a fallback."""
        for name, scalar in self.items:
            if name == column:
                return scalar
        folded = column.casefold()
        for name, scalar in self.items:
            if name.casefold() == folded:
                return scalar
        return None

    def key(self, primary_key: str) -> Any:
        """Return the raw primary key value.

        Raises:
            KeyError: If the row has no such column
        """
        scalar = self.get(primary_key)
        if scalar is None:
            raise KeyError(primary_key)
        return scalar.value

    def to_params(self) -> dict[str, Any]:
        """Return plain Python values keyed by column, suitable as bind parameters."""
        return {column: scalar.value for column, scalar in self.items}

    def differs_from(self, other: "ChangeRow", ignore: Iterable[str] = ()) -> list[str]:
        """Return the columns of this row whose values differ in `other`."""
        skipped = {column.casefold() for column in ignore}
        changed: list[str] = []
        for column, scalar in self.items:
            if column.casefold() in skipped:
                continue
            if other.get(column) != scalar:
                changed.append(column)
        return changed

    def change_timestamp(self, create_column: str, modify_column: str) -> datetime | None:
        """Return the greatest non-null of the create and modify timestamps."""
        candidates: list[datetime] = []
        for column in (create_column, modify_column):
            scalar = self.get(column)
            if scalar is None or scalar.is_null:
                continue
            if scalar.kind is ScalarKind.TIMESTAMP:
                candidates.append(scalar.value)
            elif scalar.kind is ScalarKind.DATE:
                candidates.append(datetime.combine(scalar.value, time.min))
        return max(candidates) if candidates else None

    def __len__(self) -> int:
        return len(self.items)
