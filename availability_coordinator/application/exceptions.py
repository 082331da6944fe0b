class CoordinatorError(RuntimeError):
    """Base for every failure surfaced by the availability and hold flow."""

    default_message = "Something went wrong. Please try again."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class BackendTransportError(CoordinatorError):
    """Raised when the booking backend cannot be reached (network, DNS, timeouts)."""

    default_message = "Network error. Please try again."


class AuthenticationRequiredError(CoordinatorError):
    """Raised on 401. Callers redirect to login instead of showing an error."""

    default_message = "Please log in to continue."


class BackendRequestError(CoordinatorError):
    """Raised when the backend answers with a non-success status."""

    def __init__(self, message: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class BackendContractError(CoordinatorError):
    """Raised when a success payload is missing fields or malformed."""

    default_message = "Unexpected response from the booking service."


class PreconditionError(CoordinatorError):
    """Raised when a dependent action is missing required linkage (service, location, offering)."""

    pass


class HoldInvalidError(CoordinatorError):
    """Raised when a dependent request rejects the hold because it vanished or mismatched."""

    default_message = "That hold expired. Pick another time."
