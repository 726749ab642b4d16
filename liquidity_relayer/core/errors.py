"""Exception taxonomy shared by the codec, auction model and relay pipeline."""

from __future__ import annotations


class RelayerError(Exception):
    """Base class for relayer failures."""


class DecodeError(RelayerError, ValueError):
    """Raised when a payload is malformed or truncated."""


class UnknownPayloadType(DecodeError):
    """Raised when a discriminator byte does not name a known payload."""

    def __init__(self, payload_id: int, *, context: str = "payload") -> None:
        super().__init__(f"Unknown {context} type: {payload_id}")
        self.payload_id = payload_id


class ValidationError(RelayerError, ValueError):
    """Raised for unauthorized senders, unregistered endpoints or bad parameters."""


class AttestationTimeout(RelayerError, TimeoutError):
    """Raised when an attestation poll is cancelled or exceeds its deadline."""


class AlreadySettled(RelayerError):
    """Raised when the destination chain already consumed a message."""


class SubmissionError(RelayerError):
    """Raised when a settlement transaction is rejected or reverts."""


__all__ = [
    "AlreadySettled",
    "AttestationTimeout",
    "DecodeError",
    "RelayerError",
    "SubmissionError",
    "UnknownPayloadType",
    "ValidationError",
]
