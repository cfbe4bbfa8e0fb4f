"""
Excepciones del núcleo de reservas.

Todas heredan de HTTPException para que la capa HTTP las devuelva tal cual,
pero se lanzan desde los servicios y se pueden capturar en llamadas internas.
"""
from fastapi import HTTPException, status


class AppError(HTTPException):
    """Base de los errores de la aplicación."""

    default_detail = "Error inesperado"
    status_code_default = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(status_code=self.status_code_default, detail=detail or self.default_detail)


# ---------- 400 ----------

class ValidationError(AppError):
    status_code_default = status.HTTP_400_BAD_REQUEST
    default_detail = "Datos de entrada inválidos"


class InvalidBookingStatus(ValidationError):
    default_detail = "Operación no permitida para el estado actual de la reserva"


class InvalidTransitionError(InvalidBookingStatus):
    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Transición no permitida: {current} → {target}")


# ---------- 403 ----------

class ForbiddenError(AppError):
    status_code_default = status.HTTP_403_FORBIDDEN
    default_detail = "Sin permiso para esta operación"


class ToolNotNomadicError(ForbiddenError):
    default_detail = "La herramienta no es nómada"


class InactiveUserError(ForbiddenError):
    default_detail = "Usuario inactivo"


class NotCommunityMemberError(ForbiddenError):
    default_detail = "El usuario no pertenece a ninguna comunidad de la herramienta"


class OutOfRangeError(ForbiddenError):
    default_detail = "La herramienta está fuera de la distancia máxima permitida"


# ---------- 404 ----------

class NotFoundError(AppError):
    status_code_default = status.HTTP_404_NOT_FOUND

    def __init__(self, resource: str = "Recurso", identifier: str | None = None) -> None:
        detail = f"{resource} no encontrado"
        if identifier:
            detail = f"{resource} '{identifier}' no encontrado"
        super().__init__(detail)


# ---------- 409 ----------

class ConflictError(AppError):
    status_code_default = status.HTTP_409_CONFLICT
    default_detail = "Conflicto con el estado actual"


class BookingDatesConflictError(ConflictError):
    default_detail = "Las fechas se solapan con una reserva aceptada"


class StaleStatusError(ConflictError):
    default_detail = "La reserva cambió de estado durante la operación"


class AlreadyRatedError(ConflictError):
    default_detail = "Ya has valorado esta reserva"


# ---------- 503 ----------

class TransientStoreError(AppError):
    status_code_default = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Base de datos no disponible, inténtalo más tarde"
