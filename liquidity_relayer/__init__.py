"""Top-level package for the fast transfer relayer."""

from importlib import metadata


def __getattr__(name: str) -> str:
    """Expose the package version via ``liquidity_relayer.__version__``."""
    if name == "__version__":
        try:
            return metadata.version("liquidity-relayer")
        except metadata.PackageNotFoundError:
            return "0.0.0"
    raise AttributeError(name)


__all__ = ["__version__"]
