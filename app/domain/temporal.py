"""Rangos de fechas de una reserva."""
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any, Dict

from ..errors import ValidationError


def to_datetime(d: date) -> datetime:
    """Mongo no guarda `date`; se almacena la medianoche (UTC, naive)."""
    if isinstance(d, datetime):
        return d
    return datetime.combine(d, time.min)


def to_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raise ValidationError(f"Fecha inválida: {value!r}")


@dataclass(frozen=True)
class DateRange:
    """Intervalo de días con ambos extremos incluidos."""

    start: date
    end: date

    def __post_init__(self):
        if self.end < self.start:
            raise ValidationError("end_date no puede ser anterior a start_date")

    def overlaps(self, other: "DateRange") -> bool:
        return overlaps(self, other)

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "DateRange":
        return cls(to_date(doc["start_date"]), to_date(doc["end_date"]))

    def bounds(self) -> tuple[datetime, datetime]:
        return to_datetime(self.start), to_datetime(self.end)


def overlaps(a: DateRange, b: DateRange) -> bool:
    # Extremos incluidos: compartir un día de frontera ya es solape
    return a.start <= b.end and b.start <= a.end
