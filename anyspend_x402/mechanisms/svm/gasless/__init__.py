"""Fee-sponsored exact payments on Solana."""

from .scheme import GaslessSvmScheme

__all__ = ["GaslessSvmScheme"]
