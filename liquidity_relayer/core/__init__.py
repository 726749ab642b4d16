"""Core domain logic for the relayer."""

from .auction import Auction, AuctionConfigLedger, AuctionHistory, AuctionParameters, compute_deposit_penalty
from .endpoints import EndpointRegistry, RouterEndpoint
from .errors import (
    AlreadySettled,
    AttestationTimeout,
    DecodeError,
    RelayerError,
    SubmissionError,
    UnknownPayloadType,
    ValidationError,
)
from .messages import decode_message, encode_message
from .pipeline import RelayOutcome, RelayPipeline

__all__ = [
    "AlreadySettled",
    "AttestationTimeout",
    "Auction",
    "AuctionConfigLedger",
    "AuctionHistory",
    "AuctionParameters",
    "DecodeError",
    "EndpointRegistry",
    "RelayOutcome",
    "RelayPipeline",
    "RelayerError",
    "RouterEndpoint",
    "SubmissionError",
    "UnknownPayloadType",
    "ValidationError",
    "compute_deposit_penalty",
    "decode_message",
    "encode_message",
]
