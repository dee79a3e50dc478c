"""Nonce queue for ERC-4337 user operations awaiting an on-chain nonce."""

__version__ = "0.1.0"
