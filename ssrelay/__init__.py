"""Relay building blocks: SNI parsing, address headers, TLS ticket obfuscation, options, stats."""

__version__ = "0.1.0"

__all__ = ["addressing", "options", "sni", "stats", "tls_ticket"]