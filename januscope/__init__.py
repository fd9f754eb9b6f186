"""Januscope: HTTP(S) availability and TLS certificate monitoring with incident alerting."""

__version__ = "1.0.0"
