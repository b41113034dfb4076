from __future__ import annotations


class WalletError(Exception):
    """Base class for every error raised by the wallet engine."""


class ValidationError(WalletError, ValueError):
    """Malformed caller input. Never retried."""


class AddressError(ValidationError):
    pass


class MalformedEncoding(AddressError):
    pass


class WrongLength(AddressError):
    pass


class UnsupportedPrefix(AddressError):
    pass


class InvalidHashLength(AddressError):
    pass


class InvalidOfferAmount(ValidationError):
    pass


class InvalidDepositAddress(ValidationError):
    def __init__(self, address: str, cause: AddressError) -> None:
        super().__init__(f"invalid_deposit_address:{cause}")
        self.address = address
        self.cause = cause


class NotAuthenticated(WalletError):
    def __init__(self, message: str = "not_authenticated:missing_bearer_credential") -> None:
        super().__init__(message)


class TransientNetworkError(WalletError, RuntimeError):
    """Timeout, connection failure or 5xx from a remote service. Retryable."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class LedgerRequestError(WalletError, RuntimeError):
    """Non-retryable rejection (4xx or malformed payload) from the Ledger Service."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class SyncError(WalletError):
    def __init__(self, message: str, *, attempts: int = 0) -> None:
        super().__init__(message)
        self.attempts = attempts


class SubmissionError(WalletError):
    pass


class InsufficientFundsError(WalletError):
    def __init__(self, *, available: int, required: int) -> None:
        super().__init__(f"insufficient_funds:available={available}:required={required}")
        self.available = available
        self.required = required


class SigningKeyUnavailable(WalletError):
    """No synthetic key yet; re-poll the coin store once the account is connected."""

    def __init__(self, message: str = "signing_key_unavailable") -> None:
        super().__init__(message)


class OfferError(WalletError):
    pass


class OfferNotFound(OfferError):
    def __init__(self, offer_id: str) -> None:
        super().__init__(f"offer_not_found:{offer_id}")
        self.offer_id = offer_id


class InvalidStatusTransition(OfferError):
    pass


class StorageError(WalletError):
    """The durable store could not be read or written for a read-modify-write."""
