"""Modules that turn chain data into governance, staking, mint, slashing and price records."""

__version__ = "2.0.0"