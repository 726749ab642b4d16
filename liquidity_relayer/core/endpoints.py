"""Router endpoint registry: the authority on which routers may send orders."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Iterator, Optional, Union

from liquidity_relayer.config import RelayerConfig
from liquidity_relayer.core.errors import ValidationError
from liquidity_relayer.core.utils import ZERO_ADDRESS, BytesLike, to_universal_address


class ProtocolKind(Enum):
    NONE = "none"
    CCTP = "cctp"
    LOCAL = "local"


@dataclass(frozen=True)
class MessageProtocol:
    """How funds reach the chain an endpoint lives on."""

    kind: ProtocolKind
    cctp_domain: Optional[int] = None
    program_id: Optional[bytes] = None

    @classmethod
    def cctp(cls, domain: int) -> "MessageProtocol":
        return cls(ProtocolKind.CCTP, cctp_domain=domain)

    @classmethod
    def local(cls, program_id: bytes) -> "MessageProtocol":
        return cls(ProtocolKind.LOCAL, program_id=program_id)

    @classmethod
    def none(cls) -> "MessageProtocol":
        return cls(ProtocolKind.NONE)


@dataclass(frozen=True)
class RouterEndpoint:
    chain: int
    address: bytes
    mint_recipient: bytes
    protocol: MessageProtocol

    @property
    def enabled(self) -> bool:
        return self.protocol.kind is not ProtocolKind.NONE and self.address != ZERO_ADDRESS


class EndpointRegistry:
    """Owner-managed mapping of chain id to registered router endpoint."""

    def __init__(self, *, owner: str) -> None:
        self.owner = owner
        self._endpoints: Dict[int, RouterEndpoint] = {}

    def __contains__(self, chain: object) -> bool:
        return chain in self._endpoints

    def __iter__(self) -> Iterator[RouterEndpoint]:
        return iter(list(self._endpoints.values()))

    def __len__(self) -> int:
        return len(self._endpoints)

    def _require_owner(self, by: str) -> None:
        if by != self.owner:
            raise ValidationError(f"{by} is not the registry owner")

    def add(self, endpoint: RouterEndpoint, *, by: str) -> None:
        self._require_owner(by)
        if endpoint.chain in self._endpoints:
            raise ValidationError(f"Endpoint for chain {endpoint.chain} already registered")
        if endpoint.protocol.kind is ProtocolKind.CCTP:
            existing = self._find_cctp_domain(endpoint.protocol.cctp_domain)
            if existing is not None:
                raise ValidationError(
                    f"CCTP domain {endpoint.protocol.cctp_domain} already mapped to chain {existing.chain}"
                )
        self._endpoints[endpoint.chain] = endpoint

    def update(self, endpoint: RouterEndpoint, *, by: str) -> None:
        self._require_owner(by)
        if endpoint.chain not in self._endpoints:
            raise ValidationError(f"No endpoint registered for chain {endpoint.chain}")
        self._endpoints[endpoint.chain] = endpoint

    def disable(self, chain: int, *, by: str) -> None:
        self._require_owner(by)
        current = self.get(chain, include_disabled=True)
        self._endpoints[chain] = replace(current, protocol=MessageProtocol.none())

    def remove(self, chain: int, *, by: str) -> None:
        self._require_owner(by)
        if self._endpoints.pop(chain, None) is None:
            raise ValidationError(f"No endpoint registered for chain {chain}")

    def get(self, chain: int, *, include_disabled: bool = False) -> RouterEndpoint:
        endpoint = self._endpoints.get(chain)
        if endpoint is None:
            raise ValidationError(f"No endpoint registered for chain {chain}")
        if not include_disabled and not endpoint.enabled:
            raise ValidationError(f"Endpoint for chain {chain} is disabled")
        return endpoint

    def _find_cctp_domain(self, domain: Optional[int]) -> Optional[RouterEndpoint]:
        for endpoint in self._endpoints.values():
            if endpoint.protocol.kind is ProtocolKind.CCTP and endpoint.protocol.cctp_domain == domain:
                return endpoint
        return None

    def chain_for_cctp_domain(self, domain: int) -> int:
        endpoint = self._find_cctp_domain(domain)
        if endpoint is None or not endpoint.enabled:
            raise ValidationError(f"No endpoint registered for CCTP domain {domain}")
        return endpoint.chain

    def verify_sender(self, chain: int, sender: Union[str, BytesLike]) -> RouterEndpoint:
        """Return the endpoint for ``chain`` if ``sender`` is its registered router."""
        endpoint = self.get(chain)
        if to_universal_address(sender) != endpoint.address:
            raise ValidationError(
                f"Sender {to_universal_address(sender).hex()} is not the registered router for chain {chain}"
            )
        return endpoint

    @classmethod
    def from_config(cls, config: RelayerConfig, *, owner: str = "config") -> "EndpointRegistry":
        """Build a registry from the execution routes and CCTP domain table."""
        domains_by_chain = {chain: domain for domain, chain in config.circle_domains.items()}
        registry = cls(owner=owner)
        for chain_id, route in config.execution_routes.items():
            if chain_id in domains_by_chain:
                protocol = MessageProtocol.cctp(domains_by_chain[chain_id])
            else:
                protocol = MessageProtocol.local(to_universal_address(route.bridge))
            router = to_universal_address(route.router)
            registry.add(
                RouterEndpoint(chain=chain_id, address=router, mint_recipient=router, protocol=protocol),
                by=owner,
            )
        return registry


__all__ = ["EndpointRegistry", "MessageProtocol", "ProtocolKind", "RouterEndpoint"]
