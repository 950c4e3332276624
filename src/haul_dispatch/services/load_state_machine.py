"""Load, request, and trip state machines.

Loads move forward one step at a time; cancellation is reachable from any
non-terminal status. Requests only leave `pending`. Trips follow their own
forward ordering and are settled only through the settlement service.
"""

from haul_dispatch.domain.enums import LoadStatus, RequestStatus, TripStatus
from haul_dispatch.domain.errors import InvalidTransition, RequestNotPending, RequestTerminal

S = LoadStatus
R = RequestStatus
T = TripStatus

# Fixed forward ordering of the load lifecycle
LOAD_STATUS_ORDER: list[LoadStatus] = [
    S.PENDING,
    S.ACCEPTED,
    S.LOADING,
    S.LOADED,
    S.IN_TRANSIT,
    S.DELIVERED,
]

LOAD_TERMINAL_STATES: set[LoadStatus] = {S.DELIVERED, S.CANCELLED}

# Stages at which a carrier assignment may still be undone
CARRIER_CANCELLABLE_STATES: set[LoadStatus] = {S.ACCEPTED, S.LOADING}

REQUEST_TERMINAL_STATES: set[RequestStatus] = {R.DECLINED, R.WITHDRAWN, R.EXPIRED}

# Trip transition map: from_status -> allowed targets
TRIP_TRANSITION_MAP: dict[TripStatus, set[TripStatus]] = {
    T.PLANNED: {T.ACTIVE, T.CANCELLED},
    T.ACTIVE: {T.EN_ROUTE, T.COMPLETED, T.CANCELLED},
    T.EN_ROUTE: {T.COMPLETED, T.CANCELLED},
    T.COMPLETED: {T.SETTLED},
}

# Trips in these states no longer take loads
TRIP_CLOSED_STATES: set[TripStatus] = {T.COMPLETED, T.SETTLED, T.CANCELLED}


def _load_status(value) -> LoadStatus:
    return value if isinstance(value, LoadStatus) else LoadStatus(value)


class LoadStateMachine:
    """Validates load status changes against the forward-only ordering."""

    def validate_transition(self, current_status, target_status) -> bool:
        """Return True if the transition is valid. Raise InvalidTransition if not."""
        current = _load_status(current_status)
        target = _load_status(target_status)

        if current in LOAD_TERMINAL_STATES:
            raise InvalidTransition(
                current.value, target.value, f"{current.value} is a terminal status"
            )

        if target == S.CANCELLED:
            return True

        if target == current:
            raise InvalidTransition(current.value, target.value, "Load is already in this status")

        next_index = LOAD_STATUS_ORDER.index(current) + 1
        expected = LOAD_STATUS_ORDER[next_index]
        if target != expected:
            raise InvalidTransition(
                current.value,
                target.value,
                f"Next status after {current.value} must be {expected.value}",
            )
        return True

    def get_allowed_transitions(self, current_status) -> list[LoadStatus]:
        """Return list of valid next statuses from the current status."""
        current = _load_status(current_status)
        if current in LOAD_TERMINAL_STATES:
            return []
        next_index = LOAD_STATUS_ORDER.index(current) + 1
        return [LOAD_STATUS_ORDER[next_index], S.CANCELLED]

    def is_carrier_cancellable(self, current_status) -> bool:
        return _load_status(current_status) in CARRIER_CANCELLABLE_STATES


def ensure_request_pending(request_id: str, status) -> None:
    """Raise unless a request is still pending.

    Terminal requests raise RequestTerminal; an already accepted request
    raises the plain RequestNotPending.
    """
    status = status if isinstance(status, RequestStatus) else RequestStatus(status)
    if status == R.PENDING:
        return
    if status in REQUEST_TERMINAL_STATES:
        raise RequestTerminal(request_id, status.value)
    raise RequestNotPending(request_id, status.value)


def validate_trip_transition(current_status, target_status) -> bool:
    current = current_status if isinstance(current_status, TripStatus) else TripStatus(current_status)
    target = target_status if isinstance(target_status, TripStatus) else TripStatus(target_status)

    allowed = TRIP_TRANSITION_MAP.get(current)
    if not allowed:
        raise InvalidTransition(current.value, target.value, f"No transitions allowed from {current.value}")
    if target not in allowed:
        raise InvalidTransition(
            current.value,
            target.value,
            f"Transition from {current.value} to {target.value} is not allowed",
        )
    return True
