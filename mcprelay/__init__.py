"""mcprelay: streaming pass-through proxy for a single MCP upstream."""

__version__ = "0.3.0"
