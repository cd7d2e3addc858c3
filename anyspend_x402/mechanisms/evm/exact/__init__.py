"""Exact EVM payment scheme for x402."""

from .scheme import ExactEvmScheme

__all__ = ["ExactEvmScheme"]
