"""Máquina de estados de las reservas."""
from enum import Enum

from ..errors import ValidationError, InvalidTransitionError


class BookingStatus(str, Enum):
    pending   = "PENDING"
    accepted  = "ACCEPTED"
    rejected  = "REJECTED"
    cancelled = "CANCELLED"
    returned  = "RETURNED"
    picked    = "PICKED"


class Role(str, Enum):
    requester = "requester"  # from_user_id
    recipient = "recipient"  # to_user_id: dueño o portador actual


ALLOWED: dict[BookingStatus, set[BookingStatus]] = {
    BookingStatus.pending:   {BookingStatus.accepted, BookingStatus.rejected, BookingStatus.cancelled},
    BookingStatus.accepted:  {BookingStatus.returned, BookingStatus.picked, BookingStatus.cancelled},
    BookingStatus.picked:    {BookingStatus.returned},
    BookingStatus.returned:  set(),
    BookingStatus.rejected:  set(),
    BookingStatus.cancelled: set(),
}

# Quién puede llevar la reserva a cada estado
ACTOR: dict[BookingStatus, Role] = {
    BookingStatus.accepted:  Role.recipient,
    BookingStatus.rejected:  Role.recipient,
    BookingStatus.cancelled: Role.requester,
    BookingStatus.returned:  Role.recipient,
    BookingStatus.picked:    Role.recipient,
}

TERMINAL = frozenset(s for s, nxt in ALLOWED.items() if not nxt)

# Reservas que ocupan la herramienta a efectos de solapes
COMMITTED = frozenset({BookingStatus.accepted, BookingStatus.picked})

# Estados en los que ya se puede valorar
RATEABLE = frozenset({BookingStatus.returned, BookingStatus.picked})


def parse_status(value) -> BookingStatus:
    if isinstance(value, BookingStatus):
        return value
    try:
        return BookingStatus(str(value).upper())
    except ValueError:
        raise ValidationError(f"Estado de reserva inválido: {value}")


def assert_transition(current: BookingStatus, target: BookingStatus) -> None:
    if target not in ALLOWED.get(current, set()):
        raise InvalidTransitionError(current.value, target.value)


def required_role(target: BookingStatus) -> Role:
    role = ACTOR.get(target)
    if role is None:
        # PENDING solo se alcanza al crear la reserva
        raise InvalidTransitionError("*", target.value)
    return role


def role_of(booking: dict, user_id: str) -> set[Role]:
    roles: set[Role] = set()
    if str(booking.get("from_user_id")) == user_id:
        roles.add(Role.requester)
    if str(booking.get("to_user_id")) == user_id:
        roles.add(Role.recipient)
    return roles
