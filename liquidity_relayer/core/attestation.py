"""Polling clients for guardian-signed VAAs and Circle burn attestations.

Both clients retry at a fixed interval until the attestation exists. A
cancellation event (shared with the service) or an optional deadline ends
the loop with :class:`AttestationTimeout`; nothing else does.
"""

from __future__ import annotations

import base64
import binascii
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

import requests

from liquidity_relayer.core.errors import AttestationTimeout
from liquidity_relayer.core.utils import get_logger, hex_to_bytes

LOGGER = get_logger("liquidity_relayer.attestation")

DEFAULT_POLL_INTERVAL = 2.0
CIRCLE_SANDBOX_URL = "https://iris-api-sandbox.circle.com"


@dataclass(frozen=True)
class VaaKey:
    """Identifies a published message: emitter chain, emitter address and sequence."""

    chain: int
    emitter: bytes
    sequence: int

    @property
    def emitter_hex(self) -> str:
        return self.emitter.hex()

    def __str__(self) -> str:
        return f"{self.chain}/{self.emitter_hex}/{self.sequence}"


class _PollingClient:
    def __init__(
        self,
        *,
        session: Optional[requests.Session] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        timeout: Optional[float] = None,
        api_timeout: float = 10,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.session = session or requests.Session()
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.api_timeout = api_timeout
        self._clock = clock

    def _poll(
        self,
        attempt: Callable[[], Optional[bytes]],
        *,
        description: str,
        cancel: Optional[threading.Event],
    ) -> bytes:
        waiter = cancel if cancel is not None else threading.Event()
        deadline = None if self.timeout is None else self._clock() + self.timeout
        attempts = 0
        while True:
            if waiter.is_set():
                raise AttestationTimeout(f"Cancelled while waiting for {description}")
            attempts += 1
            result = attempt()
            if result is not None:
                LOGGER.info("Fetched %s after %s attempt(s)", description, attempts)
                return result
            if deadline is not None and self._clock() >= deadline:
                raise AttestationTimeout(f"Timed out after {attempts} attempt(s) waiting for {description}")
            LOGGER.debug("%s not ready (attempt %s), retrying in %ss", description, attempts, self.poll_interval)
            if waiter.wait(self.poll_interval):
                raise AttestationTimeout(f"Cancelled while waiting for {description}")


class GuardianAttestationClient(_PollingClient):
    """Fetch signed VAAs from a list of guardian REST endpoints."""

    def __init__(self, hosts: Sequence[str], **kwargs) -> None:
        super().__init__(**kwargs)
        if not hosts:
            raise ValueError("At least one guardian RPC host is required")
        self.hosts = tuple(host.rstrip("/") for host in hosts)

    def _try_hosts(self, key: VaaKey) -> Optional[bytes]:
        for host in self.hosts:
            url = f"{host}/v1/signed_vaa/{key.chain}/{key.emitter_hex}/{key.sequence}"
            try:
                response = self.session.get(url, timeout=self.api_timeout)
            except requests.RequestException as exc:
                LOGGER.debug("Guardian host %s unavailable: %s", host, exc)
                continue
            if response.status_code != 200:
                continue
            try:
                data = response.json()
                encoded = data.get("vaaBytes") if isinstance(data, dict) else None
                if isinstance(encoded, str) and encoded:
                    return base64.b64decode(encoded, validate=True)
                LOGGER.debug("Guardian host %s has no VAA for %s", host, key)
            except (ValueError, binascii.Error) as exc:
                LOGGER.warning("Guardian host %s returned a malformed VAA response: %s", host, exc)
        return None

    def fetch(self, key: VaaKey, cancel: Optional[threading.Event] = None) -> bytes:
        """Block until a signed VAA for ``key`` is available and return its bytes."""
        return self._poll(lambda: self._try_hosts(key), description=f"VAA {key}", cancel=cancel)


class CircleAttestationClient(_PollingClient):
    """Fetch Circle attestations for burn messages by message hash."""

    def __init__(self, base_url: str = CIRCLE_SANDBOX_URL, **kwargs) -> None:
        super().__init__(**kwargs)
        self.base_url = base_url.rstrip("/")

    def _try_fetch(self, message_hash: bytes) -> Optional[bytes]:
        url = f"{self.base_url}/attestations/0x{message_hash.hex()}"
        try:
            response = self.session.get(url, timeout=self.api_timeout)
        except requests.RequestException as exc:
            LOGGER.debug("Circle attestation request failed: %s", exc)
            return None
        if response.status_code != 200:
            return None
        try:
            data = response.json()
            if not isinstance(data, dict) or data.get("status") != "complete":
                return None
            attestation = data.get("attestation")
            if not isinstance(attestation, str) or not attestation:
                LOGGER.warning("Circle attestation for 0x%s is complete but unusable", message_hash.hex())
                return None
            return hex_to_bytes(attestation)
        except ValueError as exc:
            LOGGER.warning("Circle attestation response was malformed: %s", exc)
            return None

    def fetch(self, message_hash: bytes, cancel: Optional[threading.Event] = None) -> bytes:
        """Block until the burn message attestation is complete and return it."""
        return self._poll(
            lambda: self._try_fetch(message_hash),
            description=f"Circle attestation 0x{message_hash.hex()}",
            cancel=cancel,
        )


__all__ = [
    "CIRCLE_SANDBOX_URL",
    "CircleAttestationClient",
    "DEFAULT_POLL_INTERVAL",
    "GuardianAttestationClient",
    "VaaKey",
]
