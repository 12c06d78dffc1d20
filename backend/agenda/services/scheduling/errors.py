# backend/agenda/services/scheduling/errors.py
"""
Error taxonomy of the scheduling core.

ValidationError and ConflictError are raised before anything is changed.
NotFoundError comes from the storage layer and is propagated unchanged.
Idempotency edges (unskipping a date that is not skipped, finalizing an
inactive series) are not errors: the engine returns a no-op result instead.
"""

from dataclasses import dataclass


class AgendaError(Exception):
    """Base class for scheduling errors."""


class ValidationError(AgendaError):
    """Malformed or out-of-range input, rejected before any computation."""


class InvalidTransitionError(ValidationError):
    def __init__(self, from_status, to_status):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Transicao de status invalida: {getattr(from_status, 'value', from_status)} -> "
            f"{getattr(to_status, 'value', to_status)}"
        )


class NotFoundError(AgendaError):
    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} nao encontrado")


@dataclass(frozen=True)
class Conflict:
    """One colliding occurrence: its position, its date and who already holds the time."""
    index: int
    date: str
    conflicts_with: str | None
    appointment_id: str | None = None


class ConflictError(AgendaError):
    def __init__(self, conflicts: list[Conflict], message: str = "Conflitos de horario encontrados"):
        self.conflicts = conflicts
        super().__init__(message)
