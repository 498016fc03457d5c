"""Serial bridge between the solar tracker firmware and host-side dashboards."""

from .version import __version__

__all__ = ["__version__"]
