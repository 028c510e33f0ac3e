class MarketplaceError(Exception):
    """
    Base for every error surfaced to the caller.

    `message` is short and actionable; it is what the UI shows.
    `retryable` tells the retry policy whether another attempt may help.
    """

    kind = "unexpected"
    status_code = 500
    retryable = False
    default_message = "Something went wrong. Please try again."

    def __init__(self, message: str | None = None, *, form: dict | None = None):
        self.message = message or self.default_message
        self.form = form
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body = {"error": self.message, "kind": self.kind}
        if self.form is not None:
            body["form"] = self.form
        return body


class AuthorizationError(MarketplaceError):
    kind = "authorization"
    status_code = 403
    default_message = "You are not allowed to do that."


class NotFoundError(MarketplaceError):
    kind = "not_found"
    status_code = 404
    default_message = "The requested item could not be found."


class ValidationFailed(MarketplaceError):
    kind = "validation"
    status_code = 422
    default_message = "Some fields are missing or invalid."

    def __init__(self, message: str | None = None, *, code: str = "invalidFieldValues", form: dict | None = None):
        super().__init__(message, form=form)
        self.code = code

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["code"] = self.code
        return body


class InvalidTransition(MarketplaceError):
    kind = "invalid_transition"
    status_code = 409
    default_message = "This booking can no longer be changed that way."


class TransportError(MarketplaceError):
    kind = "transport"
    status_code = 502
    retryable = True
    default_message = "Could not reach the server. Please try again."


class BookingTimeout(TransportError):
    kind = "timeout"
    status_code = 504
    # the backend may still complete the booking; a blind retry could double-book
    retryable = False
    default_message = "The server may be busy. Please try again."


class UnexpectedResponse(MarketplaceError):
    kind = "unexpected"
    status_code = 502
    default_message = "The server sent an unexpected response."


class NotReady(MarketplaceError):
    kind = "not_ready"
    status_code = 401
    default_message = "Please log in first."
