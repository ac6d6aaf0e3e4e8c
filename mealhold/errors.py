"""Exception types raised by the reservation core."""


class MealholdError(Exception):
    """Base class for errors surfaced to callers with an HTTP status."""

    def __init__(self, message: str, status_code: int = 400) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class ReservationAborted(MealholdError):
    """Inventory reserve rejected because the store state forbids it."""

    NO_SUCH_STORE = "no such store"
    NOT_ACCEPTING = "store not accepting orders"
    SOLD_OUT = "sold out"

    def __init__(self, reason: str, store_id: str | None = None) -> None:
        self.reason = reason
        self.store_id = store_id
        super().__init__(reason, 409)


class LedgerConflictError(MealholdError):
    """Optimistic update lost the race too many times in a row."""

    def __init__(self, path: str, attempts: int) -> None:
        self.path = path
        self.attempts = attempts
        super().__init__(
            f"Too much contention on {path}; please try again",
            503,
        )


class StoreUnavailableError(MealholdError):
    """The shared store could not be reached."""

    def __init__(self, message: str = "Service temporarily unavailable; please try again") -> None:
        super().__init__(message, 503)


class ReservationPersistError(MealholdError):
    """A slot was taken from inventory but the reservation record was not written."""

    def __init__(self, store_id: str, cause: Exception) -> None:
        self.store_id = store_id
        self.cause = cause
        super().__init__(
            f"Reservation for store {store_id} could not be saved",
            500,
        )


class ReservationNotFoundError(MealholdError):
    def __init__(self, reservation_id: str) -> None:
        self.reservation_id = reservation_id
        super().__init__(f"Reservation {reservation_id} not found", 404)


class InvalidTransitionError(MealholdError):
    def __init__(self, from_state: str | None, to_state: str) -> None:
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Cannot move reservation from {from_state} to {to_state}", 409)


class AuthenticationRequiredError(MealholdError):
    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message, 401)


class NoActiveReservationError(MealholdError):
    def __init__(self, message: str = "No active reservation") -> None:
        super().__init__(message, 409)


class ForbiddenError(MealholdError):
    def __init__(self, message: str = "Not allowed") -> None:
        super().__init__(message, 403)


class InvalidDiningWindowError(MealholdError):
    def __init__(self, minutes: int) -> None:
        self.minutes = minutes
        super().__init__(f"Dining window must be at least 1 minute, got {minutes}", 422)
