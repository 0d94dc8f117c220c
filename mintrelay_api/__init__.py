"""
Mint Relay API - payment verification and mint relay.

Provides REST endpoints for:
- Verifying a USDC payment transaction (POST /verify)
- Verifying a payment and minting tokens to a beneficiary (POST /mint)
- Health checks (GET /health)
"""

__version__ = "0.1.0"
