"""
Canonical Type Definitions
===========================

Single source of truth for shared types used across the codebase.
All modules should import shared enums, request models and result
types from here.

This module defines:
- PrivacyLevel: Confidentiality modes a caller can request
- OperationType: Capability operations a provider executes
- StepType: Kinds of pipeline steps
- KnownProvider: Well-known provider ids
- Request models (pydantic, validated at the caller boundary)
- Result and estimate dataclasses (produced by providers)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

__all__ = [
    "WILDCARD_TOKEN",
    "BalanceSummary",
    "CostEstimate",
    "DepositRequest",
    "DepositResult",
    "EstimateRequest",
    "KnownProvider",
    "OperationType",
    "PrivacyLevel",
    "ProveRequest",
    "ProveResult",
    "StepType",
    "TransferRequest",
    "TransferResult",
    "WithdrawRequest",
    "WithdrawResult",
]

# A declared token set containing this entry matches any token.
WILDCARD_TOKEN = "*"

class PrivacyLevel(StrEnum):
    """Confidentiality mode requested for an operation.

    Each level maps to a different underlying privacy technology.
    """

    AMOUNT_HIDDEN = "amount-hidden"  # Range proofs hide the amount
    SENDER_HIDDEN = "sender-hidden"  # Pool mixing hides the sender
    FULL_ENCRYPTED = "full-encrypted"  # MPC over fully encrypted state
    ZK_PROVEN = "zk-proven"  # Circuit-based zero-knowledge proofs
    COMPLIANT_POOL = "compliant-pool"  # Pool with proof of innocence
    NONE = "none"  # Plain ledger transaction

class OperationType(StrEnum):
    """Capability operations that can be estimated and executed."""

    TRANSFER = "transfer"
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    PROVE = "prove"

class StepType(StrEnum):
    """Kinds of pipeline steps."""

    DEPOSIT = "deposit"
    TRANSFER = "transfer"
    WITHDRAW = "withdraw"
    PROVE = "prove"
    WAIT = "wait"
    CUSTOM = "custom"

    @property
    def provider_bound(self) -> bool:
        return self in _PROVIDER_BOUND_STEPS

_PROVIDER_BOUND_STEPS = frozenset(
    {StepType.DEPOSIT, StepType.TRANSFER, StepType.WITHDRAW, StepType.PROVE}
)

class KnownProvider(StrEnum):
    """Well-known provider ids.

    Provider ids are plain strings; these are the ones the default
    configuration carries reference profiles for.
    """

    SHADOWWIRE = "shadowwire"
    ARCIUM = "arcium"
    NOIR = "noir"
    PRIVACY_CASH = "privacycash"
    INCO = "inco"

# ── Requests ───────────────────────────────────────────────────────

class _Request(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("token", mode="before", check_fields=False)
    @classmethod
    def _normalize_token(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().upper()
        return v

class TransferRequest(_Request):
    """Private transfer of ``amount`` ``token`` to ``recipient``."""

    recipient: str = Field(..., min_length=1)
    amount: float = Field(..., gt=0)
    token: str = Field(..., min_length=1)
    privacy: PrivacyLevel
    provider: str | None = None
    max_fee: float | None = Field(default=None, ge=0)
    memo: str | None = None

class DepositRequest(_Request):
    """Deposit into a provider's shielded pool."""

    amount: float = Field(..., gt=0)
    token: str = Field(..., min_length=1)
    provider: str | None = None

class WithdrawRequest(_Request):
    """Withdrawal from a provider's shielded pool."""

    recipient: str = Field(..., min_length=1)
    amount: float = Field(default=0.0, ge=0)
    token: str = Field(default="SOL", min_length=1)
    provider: str | None = None
    commitment: str | None = None

class ProveRequest(_Request):
    """Zero-knowledge proof generation request."""

    circuit: str = Field(..., min_length=1)
    public_inputs: dict[str, Any] = Field(default_factory=dict)
    private_inputs: dict[str, Any] = Field(default_factory=dict)
    provider: str | None = None

class EstimateRequest(_Request):
    """Cost estimation request for a single operation."""

    operation: OperationType
    token: str | None = None
    amount: float | None = Field(default=None, ge=0)
    privacy: PrivacyLevel | None = None
    provider: str | None = None

# ── Results ────────────────────────────────────────────────────────

@dataclass
class CostEstimate:
    """Projected cost of one operation on one provider.

    Produced fresh by every estimate call; never cached.
    """

    fee: float  # Settlement-currency units
    provider_id: str
    latency_ms: float
    token_fee: float | None = None
    anonymity_set: int | None = None
    warnings: list[str] = field(default_factory=list)

@dataclass
class TransferResult:
    signature: str
    provider_id: str
    privacy_level: PrivacyLevel
    fee: float
    anonymity_set: int | None = None

@dataclass
class DepositResult:
    signature: str
    provider_id: str
    fee: float
    commitment: str | None = None  # Note for a later withdrawal

@dataclass
class WithdrawResult:
    signature: str
    provider_id: str
    fee: float

@dataclass
class ProveResult:
    proof: bytes
    public_inputs: dict[str, Any]
    provider_id: str
    verification_key: bytes | None = None
    fee: float = 0.0

@dataclass
class BalanceSummary:
    """Shielded balances of one token across providers."""

    token: str
    shielded: dict[str, float] = field(default_factory=dict)
    failed_providers: list[str] = field(default_factory=list)

    @property
    def total(self) -> float:
        return sum(self.shielded.values())
