"""Appointment lifecycle: which status may follow which."""

from mobipet.core.errors import ConflictError
from mobipet.models.appointment import Appointment, AppointmentStatus

PENDING = AppointmentStatus.PENDING.value
WAITING_FOR_VET = AppointmentStatus.WAITING_FOR_VET.value
CONFIRMED = AppointmentStatus.CONFIRMED.value
TIME_PROPOSED = AppointmentStatus.TIME_PROPOSED.value
DECLINED = AppointmentStatus.DECLINED.value
IN_PROGRESS = AppointmentStatus.IN_PROGRESS.value
COMPLETED = AppointmentStatus.COMPLETED.value
CANCELLED = AppointmentStatus.CANCELLED.value

TRANSITIONS = {
    PENDING: {WAITING_FOR_VET},
    WAITING_FOR_VET: {CONFIRMED, IN_PROGRESS, TIME_PROPOSED, DECLINED},
    TIME_PROPOSED: {CONFIRMED, TIME_PROPOSED, WAITING_FOR_VET, DECLINED, CANCELLED},
    CONFIRMED: {IN_PROGRESS, COMPLETED},
    IN_PROGRESS: {COMPLETED},
}

TERMINAL_STATUSES = {COMPLETED, CANCELLED, DECLINED}
OWNER_CANCELLABLE_STATUSES = {PENDING, WAITING_FOR_VET, TIME_PROPOSED, CONFIRMED}

STATUS_LABELS = {
    PENDING: 'Draft',
    WAITING_FOR_VET: 'Waiting for vet',
    IN_PROGRESS: 'In progress',
    TIME_PROPOSED: 'Time proposed',
    CONFIRMED: 'Confirmed',
    DECLINED: 'Declined',
    COMPLETED: 'Completed',
    CANCELLED: 'Cancelled',
}


def status_label(status: str | None) -> str:
    return STATUS_LABELS.get(status or '', status or 'Unknown')


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, set())


def require_status(appointment: Appointment, *allowed: str) -> None:
    if appointment.status not in allowed:
        raise ConflictError(
            f'Appointment is {status_label(appointment.status).lower()}; '
            f'this action requires {" or ".join(status_label(s).lower() for s in allowed)}.'
        )


def transition(appointment: Appointment, target: str) -> None:
    if not can_transition(appointment.status, target):
        raise ConflictError(
            f'Cannot move appointment from {status_label(appointment.status).lower()} '
            f'to {status_label(target).lower()}.'
        )
    appointment.status = target
