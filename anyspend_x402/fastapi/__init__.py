"""
FastAPI middleware for x402 payment requirements.

Usage:   from anyspend_x402.fastapi import require_payment

Example:
    from fastapi import FastAPI
    from anyspend_x402.fastapi import require_payment

    app = FastAPI()
    app.middleware("http")(require_payment(server, RouteConfig(price=1000, asset=USDC, network="base", pay_to="0x...")))
"""

from .middleware import path_is_match, require_payment

__all__ = ["path_is_match", "require_payment"]
