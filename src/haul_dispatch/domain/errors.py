"""Error kinds raised by the dispatch engine.

Every error carries the HTTP status the API layer answers with. All of them
are recoverable by the caller; only StoreUnavailable is worth retrying as-is.
"""


class DispatchError(Exception):
    """Base class for engine errors."""

    status_code = 400
    retryable = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class Unauthorized(DispatchError):
    """The acting company does not own the entity it is trying to change."""

    status_code = 403


class EntityNotFound(DispatchError):
    """A referenced load, request, trip, or equipment row does not exist."""

    status_code = 404

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class NotPostable(DispatchError):
    """The load is not posted and visible on the marketplace."""

    status_code = 409


class RequestNotPending(DispatchError):
    """The request has already left the pending state."""

    status_code = 409

    def __init__(self, request_id: str, status: str, message: str | None = None):
        self.request_id = request_id
        self.status = status
        super().__init__(message or f"Request {request_id} is {status}, not pending")


class RequestTerminal(RequestNotPending):
    """The request is declined, withdrawn, or expired and cannot change again."""

    def __init__(self, request_id: str, status: str):
        super().__init__(
            request_id, status, f"Request {request_id} is {status} and can no longer change"
        )


class InvalidTransition(DispatchError):
    """A load or trip status change is not allowed from the current status."""

    status_code = 409

    def __init__(self, current_status: str, target_status: str, reason: str):
        self.current_status = current_status
        self.target_status = target_status
        self.reason = reason
        super().__init__(
            f"Invalid transition from {current_status} to {target_status}: {reason}"
        )


class CarrierAlreadyAssigned(DispatchError):
    """The load is being fulfilled by an external carrier."""

    status_code = 409


class CannotCancelAtStage(DispatchError):
    """The carrier assignment can no longer be cancelled."""

    status_code = 409


class EquipmentMismatch(DispatchError):
    """Truck and trailer selection violates the tractor/trailer rule."""

    status_code = 422


class CounterOfferNotAllowed(DispatchError):
    """A counter offer was made on a fixed-rate load, or without a rate."""

    status_code = 422


class InvalidProposal(DispatchError):
    """Proposed dates on a request are inconsistent with the load."""

    status_code = 422


class LoadAlreadyOnTrip(DispatchError):
    """The load is already on a trip: the target one, or any one when a carrier is accepted."""

    status_code = 409


class TripClosed(DispatchError):
    """The trip is completed, settled, or cancelled."""

    status_code = 409


class DuplicateTripNumber(DispatchError):
    """The trip number is taken for this owner."""

    status_code = 409


class StoreUnavailable(DispatchError):
    """The ledger store timed out or the connection failed. Retry with backoff."""

    status_code = 503
    retryable = True


class InvalidSequence(DispatchError):
    """A reorder does not list exactly the loads on the trip."""

    status_code = 422


class LoadNotOnTrip(DispatchError):
    """The load is not attached to the trip named in the call."""

    status_code = 404
