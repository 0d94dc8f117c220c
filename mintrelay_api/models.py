"""
Pydantic models for API requests and responses.

JSON bodies use camelCase keys (txHash, mintTxHash, ...).
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ============================================================================
# Verify
# ============================================================================

class VerifyRequest(CamelModel):
    """Request to check a payment transaction."""

    tx_hash: Optional[str] = Field(None, alias="txHash", description="Payment transaction hash (0x + 64 hex)")
    to: Optional[str] = Field(None, description="Required transfer recipient (optional)")

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {
                    "txHash": "0x" + "ab" * 32,
                    "to": "0x1234567890abcdef1234567890abcdef12345678",
                }
            ]
        },
    )


class VerifyResponse(CamelModel):
    """Payment check result."""

    valid: bool = Field(..., description="Whether a matching transfer was found")
    from_address: Optional[str] = Field(None, alias="from", description="Payer address")
    to: Optional[str] = Field(None, description="Transfer recipient")
    value: Optional[str] = Field(None, description="Transfer value in base units")
    block_number: Optional[int] = Field(None, alias="blockNumber", description="Payment block")
    reason: Optional[str] = Field(None, description="Why the payment is not valid")


class ErrorResponse(CamelModel):
    """Error body for /verify."""

    error: str


# ============================================================================
# Mint
# ============================================================================

class MintRequest(CamelModel):
    """Request to verify a payment and mint to a beneficiary."""

    tx_hash: Optional[str] = Field(None, alias="txHash", description="Payment transaction hash (0x + 64 hex)")
    beneficiary: Optional[str] = Field(None, description="Address receiving the minted tokens")

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {
                    "txHash": "0x" + "ab" * 32,
                    "beneficiary": "0x1234567890abcdef1234567890abcdef12345678",
                }
            ]
        },
    )


class MintResponse(CamelModel):
    """Response from /mint."""

    success: bool = Field(..., description="Whether tokens were minted")
    mint_tx_hash: Optional[str] = Field(None, alias="mintTxHash", description="Mint transaction hash")
    payment_from: Optional[str] = Field(None, alias="paymentFrom", description="Payer address")
    payment_value: Optional[str] = Field(None, alias="paymentValue", description="Payment value in base units")
    block_number: Optional[int] = Field(None, alias="blockNumber", description="Payment block")
    mint_block_number: Optional[int] = Field(None, alias="mintBlockNumber", description="Mint block")
    reason: Optional[str] = Field(None, description="Failure reason")
    error: Optional[str] = Field(None, description="Unexpected error message")


# ============================================================================
# Health Check
# ============================================================================

class HealthResponse(CamelModel):
    """Health check response."""

    status: str = Field(..., description="Service status")
    version: str = Field(..., description="API version")
    rpc: bool = Field(..., description="EVM RPC connectivity")
    ledger: str = Field(..., description="Idempotency ledger backend")
    relayer: Optional[str] = Field(None, description="Relayer address, if configured")
    contracts: dict[str, Optional[str]] = Field(
        ...,
        description="Configured contract addresses"
    )
