"""Collator activity monitor for Substrate-style parachains."""

__version__ = "0.1.0"
