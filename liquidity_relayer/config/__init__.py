"""Configuration utilities for the relayer."""

from .loader import (
    ChainConfig,
    ConfigError,
    DefaultsConfig,
    MatchingEngineConfig,
    RelayerConfig,
    RouteConfig,
    load_config,
    parse_config,
)

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
