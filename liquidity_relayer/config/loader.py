"""Config loader for the relayer project."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, MutableMapping, Optional, Tuple

from web3 import Web3


class ConfigError(ValueError):
    """Raised when configuration data is invalid or missing."""


def _require_keys(data: Mapping[str, Any], keys: Iterable[str], context: str) -> None:
    missing = [key for key in keys if key not in data]
    if missing:
        raise ConfigError(f"{context} missing required keys: {', '.join(missing)}")


def _to_checksum(value: str, *, field_name: str) -> str:
    try:
        return Web3.to_checksum_address(value)
    except Exception as exc:  # web3 raises ValueError for malformed inputs
        raise ConfigError(f"Invalid address for {field_name}: {value}") from exc


def _optional_checksum(value: Optional[str], *, field_name: str) -> Optional[str]:
    if not value:
        return None
    return _to_checksum(value, field_name=field_name)


def _to_int(value: Any, *, field_name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{field_name} must be an integer, got {value!r}") from exc


@dataclass(frozen=True)
class ChainConfig:
    """RPC access for one monitored chain, keyed by its Wormhole chain id."""

    chain_id: int
    rpc_url: Optional[str] = None
    evm_chain_id: Optional[int] = None

    def ensure_rpc_url(self) -> str:
        """Return the RPC URL or raise if it is missing."""
        if not self.rpc_url:
            raise ConfigError(f"RPC URL required but not configured for chain {self.chain_id}")
        return self.rpc_url


@dataclass(frozen=True)
class RouteConfig:
    """Contract addresses making up the execution route of one chain."""

    wormhole: str
    bridge: str
    router: str
    cctp: Optional[str] = None
    circle_transmitter: Optional[str] = None
    native_swap: Optional[str] = None

    @property
    def supports_cctp(self) -> bool:
        return self.cctp is not None


@dataclass(frozen=True)
class MatchingEngineConfig:
    chain: int
    address: str


@dataclass(frozen=True)
class DefaultsConfig:
    """Default operational parameters."""

    poll_interval: float = 2.0
    attestation_timeout: Optional[float] = None
    api_timeout: int = 10
    dedup_horizon: int = 1024
    log_poll_interval: float = 5.0
    start_block_lookback: int = 0
    max_block_range: int = 1000
    max_workers: int = 16
    gas_buffer_bps: int = 100_000


@dataclass(frozen=True)
class RelayerConfig:
    """Typed wrapper around the relayer configuration."""

    execution_routes: Mapping[int, RouteConfig]
    chains: Mapping[int, ChainConfig]
    matching_engine: MatchingEngineConfig
    circle_domains: Mapping[int, int]
    guardian_rpc_hosts: Tuple[str, ...]
    circle_attestation_url: str
    defaults: DefaultsConfig
    raw: Mapping[str, Any] = field(repr=False)

    def route(self, chain_id: int) -> RouteConfig:
        try:
            return self.execution_routes[chain_id]
        except KeyError:
            raise ConfigError(f"No execution route configured for chain {chain_id}") from None

    def chain(self, chain_id: int) -> ChainConfig:
        try:
            return self.chains[chain_id]
        except KeyError:
            raise ConfigError(f"No chain configured for chain {chain_id}") from None

    def to_dict(self) -> Dict[str, Any]:
        """Return the raw configuration mapping."""
        return dict(self.raw)


def _load_json(path: Path) -> MutableMapping[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as fh:
            return json.load(fh)
    except FileNotFoundError as exc:
        raise ConfigError(f"Config file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Config file contains invalid JSON: {path}") from exc


def _parse_route(chain_id: int, data: Mapping[str, Any]) -> RouteConfig:
    context = f"execution_routes[{chain_id}]"
    _require_keys(data, ["wormhole", "bridge", "router"], context)
    route = RouteConfig(
        wormhole=_to_checksum(data["wormhole"], field_name=f"{context}.wormhole"),
        bridge=_to_checksum(data["bridge"], field_name=f"{context}.bridge"),
        router=_to_checksum(data["router"], field_name=f"{context}.router"),
        cctp=_optional_checksum(data.get("cctp"), field_name=f"{context}.cctp"),
        circle_transmitter=_optional_checksum(
            data.get("circle_transmitter"), field_name=f"{context}.circle_transmitter"
        ),
        native_swap=_optional_checksum(data.get("native_swap"), field_name=f"{context}.native_swap"),
    )
    if route.cctp is not None and route.circle_transmitter is None:
        raise ConfigError(f"{context} sets cctp but not circle_transmitter")
    return route


def _parse_defaults(data: Mapping[str, Any]) -> DefaultsConfig:
    base = DefaultsConfig()
    timeout = data.get("attestation_timeout", base.attestation_timeout)
    defaults = DefaultsConfig(
        poll_interval=float(data.get("poll_interval", base.poll_interval)),
        attestation_timeout=None if timeout is None else float(timeout),
        api_timeout=_to_int(data.get("api_timeout", base.api_timeout), field_name="defaults.api_timeout"),
        dedup_horizon=_to_int(data.get("dedup_horizon", base.dedup_horizon), field_name="defaults.dedup_horizon"),
        log_poll_interval=float(data.get("log_poll_interval", base.log_poll_interval)),
        start_block_lookback=_to_int(
            data.get("start_block_lookback", base.start_block_lookback), field_name="defaults.start_block_lookback"
        ),
        max_block_range=_to_int(data.get("max_block_range", base.max_block_range), field_name="defaults.max_block_range"),
        max_workers=_to_int(data.get("max_workers", base.max_workers), field_name="defaults.max_workers"),
        gas_buffer_bps=_to_int(data.get("gas_buffer_bps", base.gas_buffer_bps), field_name="defaults.gas_buffer_bps"),
    )
    if defaults.poll_interval <= 0:
        raise ConfigError("defaults.poll_interval must be positive")
    if defaults.attestation_timeout is not None and defaults.attestation_timeout <= 0:
        raise ConfigError("defaults.attestation_timeout must be positive when set")
    if defaults.api_timeout <= 0:
        raise ConfigError("defaults.api_timeout must be positive")
    if defaults.dedup_horizon <= 0:
        raise ConfigError("defaults.dedup_horizon must be positive")
    if defaults.log_poll_interval <= 0:
        raise ConfigError("defaults.log_poll_interval must be positive")
    if defaults.start_block_lookback < 0:
        raise ConfigError("defaults.start_block_lookback must not be negative")
    if defaults.max_block_range <= 0:
        raise ConfigError("defaults.max_block_range must be positive")
    if defaults.max_workers <= 0:
        raise ConfigError("defaults.max_workers must be positive")
    if not 0 <= defaults.gas_buffer_bps <= 1_000_000:
        raise ConfigError("defaults.gas_buffer_bps must be between 0 and 1000000")
    return defaults


def parse_config(data: Mapping[str, Any]) -> RelayerConfig:
    """Validate an already-loaded configuration mapping."""
    _require_keys(
        data,
        ["execution_routes", "chains", "matching_engine", "guardian_rpc_hosts", "circle_attestation_url"],
        "config",
    )

    routes = {
        _to_int(chain_id, field_name="execution_routes key"): _parse_route(int(chain_id), route)
        for chain_id, route in data["execution_routes"].items()
    }
    if not routes:
        raise ConfigError("execution_routes cannot be empty")

    chains: Dict[int, ChainConfig] = {}
    for chain_key, chain_data in data["chains"].items():
        chain_id = _to_int(chain_key, field_name="chains key")
        _require_keys(chain_data, ["rpc_url"], f"chains[{chain_id}]")
        evm_chain_id = chain_data.get("evm_chain_id")
        chains[chain_id] = ChainConfig(
            chain_id=chain_id,
            rpc_url=str(chain_data["rpc_url"]),
            evm_chain_id=None if evm_chain_id is None else _to_int(evm_chain_id, field_name="evm_chain_id"),
        )
    missing_chains = sorted(set(routes) - set(chains))
    if missing_chains:
        raise ConfigError(f"chains missing RPC configuration for: {', '.join(map(str, missing_chains))}")

    engine_data = data["matching_engine"]
    _require_keys(engine_data, ["chain", "address"], "matching_engine")
    matching_engine = MatchingEngineConfig(
        chain=_to_int(engine_data["chain"], field_name="matching_engine.chain"),
        address=_to_checksum(engine_data["address"], field_name="matching_engine.address"),
    )
    if matching_engine.chain not in chains:
        raise ConfigError(f"matching_engine.chain {matching_engine.chain} has no chain configuration")

    circle_domains = {
        _to_int(domain, field_name="circle_domains key"): _to_int(chain, field_name=f"circle_domains[{domain}]")
        for domain, chain in data.get("circle_domains", {}).items()
    }
    unknown = sorted(chain for chain in circle_domains.values() if chain not in routes)
    if unknown:
        raise ConfigError(f"circle_domains reference chains without routes: {', '.join(map(str, unknown))}")

    hosts = tuple(str(host).rstrip("/") for host in data["guardian_rpc_hosts"])
    if not hosts:
        raise ConfigError("guardian_rpc_hosts cannot be empty")

    return RelayerConfig(
        execution_routes=routes,
        chains=chains,
        matching_engine=matching_engine,
        circle_domains=circle_domains,
        guardian_rpc_hosts=hosts,
        circle_attestation_url=str(data["circle_attestation_url"]).rstrip("/"),
        defaults=_parse_defaults(data.get("defaults", {})),
        raw=data,
    )


def load_config(config_path: Optional[Path] = None) -> RelayerConfig:
    """Load and validate relayer configuration data."""
    config_path = config_path or Path("relayer.json")
    return parse_config(_load_json(config_path))


__all__ = [
    "ChainConfig",
    "ConfigError",
    "DefaultsConfig",
    "MatchingEngineConfig",
    "RelayerConfig",
    "RouteConfig",
    "load_config",
    "parse_config",
]
