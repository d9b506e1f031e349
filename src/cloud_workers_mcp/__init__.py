"""Cloud Workers MCP: track remote coding sessions and drive their review loop."""

__version__ = "0.1.0"

__all__ = ["__version__"]
