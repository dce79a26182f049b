"""Application error taxonomy, mapped to HTTP responses in app.main."""


class CheckoutError(Exception):
    """Base class for expected, user-facing failures."""

    status_code = 500
    kind = "internal"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CheckoutError):
    status_code = 400
    kind = "validation"


class NotFoundError(CheckoutError):
    status_code = 404
    kind = "not_found"


class ProviderConfigurationError(CheckoutError):
    """Provider credentials or terminal device missing; an admin must act."""

    status_code = 400
    kind = "configuration"


class ProviderCommunicationError(CheckoutError):
    """Network failure or provider-side error; the customer may retry."""

    status_code = 502
    kind = "communication"


class PaymentDeclinedError(ProviderCommunicationError):
    """Provider rejected the payment request; the customer may retry."""

    status_code = 402
    kind = "declined"


class ConflictError(CheckoutError):
    """Requested feature not enabled, or order not in a payable state."""

    status_code = 400
    kind = "conflict"


def error_for_kind(kind: str | None, message: str) -> CheckoutError:
    """Build the exception matching an adapter failure tag."""
    mapping = {
        "configuration": ProviderConfigurationError,
        "declined": PaymentDeclinedError,
        "conflict": ConflictError,
        "unsupported": ConflictError,
        "communication": ProviderCommunicationError,
    }
    return mapping.get(kind or "communication", ProviderCommunicationError)(message)
