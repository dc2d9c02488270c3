"""
In-Memory Provider — Development Backend
==========================================

A conforming provider whose ledger lives in process memory. Used for
local development, demos and tests in place of a real protocol
connector: deposits mint commitments, withdrawals redeem them, and
every operation returns a synthetic signature.

Cost model:
  - fee = amount × fee_percent / 100 (zero when no amount is given)
  - latency is fixed per provider, with per-operation overrides
  - amounts below ``min_amount`` produce an estimate warning
"""

from __future__ import annotations

import asyncio
import hashlib
import itertools
from collections.abc import Iterable
from dataclasses import dataclass

from privacykit.core.exceptions import (
    PrivacyKitError,
    ProviderNotReadyError,
    UnsupportedOperationError,
)
from privacykit.core.types import (
    CostEstimate,
    DepositRequest,
    DepositResult,
    EstimateRequest,
    KnownProvider,
    OperationType,
    PrivacyLevel,
    ProveRequest,
    ProveResult,
    TransferRequest,
    TransferResult,
    WithdrawRequest,
    WithdrawResult,
)
from privacykit.infra.telemetry import get_logger
from privacykit.providers.base import declared_support, supports_level, supports_token

logger = get_logger(__name__)

@dataclass
class _Note:
    token: str
    amount: float

class InMemoryProvider:
    """Development provider satisfying the ``PrivacyProvider`` protocol."""

    def __init__(
        self,
        provider_id: str,
        *,
        name: str | None = None,
        levels: Iterable[PrivacyLevel] = (PrivacyLevel.AMOUNT_HIDDEN,),
        tokens: Iterable[str] = ("SOL",),
        has_compliance: bool = False,
        has_onchain_verification: bool = False,
        fee_percent: float = 0.5,
        latency_ms: float = 1000.0,
        operation_latency_ms: dict[OperationType, float] | None = None,
        anonymity_set: int | None = None,
        min_amount: float = 0.0,
        fail_on: Iterable[OperationType] = (),
        init_delay_s: float = 0.0,
    ) -> None:
        self.provider_id = provider_id
        self.name = name or provider_id
        self.supported_levels = frozenset(PrivacyLevel(level) for level in levels)
        self.supported_tokens = frozenset(t.upper() for t in tokens)
        self.has_compliance = has_compliance
        self.has_onchain_verification = has_onchain_verification
        self.fee_percent = fee_percent
        self.latency_ms = latency_ms
        self.operation_latency_ms = dict(operation_latency_ms or {})
        self.anonymity_set = anonymity_set
        self.min_amount = min_amount
        self.fail_on = frozenset(OperationType(op) for op in fail_on)
        self._init_delay_s = init_delay_s
        self._ready = False
        self._balances: dict[str, float] = {}
        self._notes: dict[str, _Note] = {}
        self._counter = itertools.count(1)
        self.calls: list[OperationType] = []

    def __repr__(self) -> str:
        return f"InMemoryProvider({self.provider_id!r}, ready={self._ready})"

    # ── Lifecycle ──────────────────────────────────────────────────

    async def initialize(self) -> None:
        if self._init_delay_s:
            await asyncio.sleep(self._init_delay_s)
        self._ready = True
        logger.info("provider_initialized", provider=self.provider_id)

    def is_ready(self) -> bool:
        return self._ready

    def supports(self, operation: str, token: str, privacy: PrivacyLevel) -> bool:
        return declared_support(self, operation, token, privacy)

    # ── Queries ────────────────────────────────────────────────────

    async def get_balance(self, token: str, address: str | None = None) -> float:
        self._ensure_ready()
        return self._balances.get(token.upper(), 0.0)

    async def estimate(self, request: EstimateRequest) -> CostEstimate:
        token = request.token or "SOL"
        if not supports_token(self, token):
            return CostEstimate(
                fee=0.0,
                provider_id=self.provider_id,
                latency_ms=0.0,
                warnings=[f"Token {token} not supported by {self.name}"],
            )

        amount = request.amount or 0.0
        fee = amount * self.fee_percent / 100
        warnings: list[str] = []
        if 0 < amount < self.min_amount:
            warnings.append(f"Amount {amount} {token} is below minimum {self.min_amount}")
        if request.privacy is not None and not supports_level(self, request.privacy):
            warnings.append(f"Privacy level {request.privacy} not supported by {self.name}")

        return CostEstimate(
            fee=fee,
            token_fee=fee,
            provider_id=self.provider_id,
            latency_ms=self.operation_latency_ms.get(request.operation, self.latency_ms),
            anonymity_set=self.anonymity_set,
            warnings=warnings,
        )

    # ── Operations ─────────────────────────────────────────────────

    async def transfer(self, request: TransferRequest) -> TransferResult:
        self._begin(OperationType.TRANSFER, request.token)
        if not supports_level(self, request.privacy):
            raise UnsupportedOperationError(self.provider_id, f"transfer:{request.privacy}")
        return TransferResult(
            signature=self._signature(OperationType.TRANSFER),
            provider_id=self.provider_id,
            privacy_level=request.privacy,
            fee=request.amount * self.fee_percent / 100,
            anonymity_set=self.anonymity_set,
        )

    async def deposit(self, request: DepositRequest) -> DepositResult:
        self._begin(OperationType.DEPOSIT, request.token)
        n = next(self._counter)
        commitment = hashlib.sha256(
            f"{self.provider_id}:{n}:{request.token}:{request.amount}".encode()
        ).hexdigest()
        fee = request.amount * self.fee_percent / 100
        self._notes[commitment] = _Note(request.token, request.amount - fee)
        self._balances[request.token] = self._balances.get(request.token, 0.0) + request.amount - fee
        return DepositResult(
            signature=self._signature(OperationType.DEPOSIT, n),
            provider_id=self.provider_id,
            fee=fee,
            commitment=commitment,
        )

    async def withdraw(self, request: WithdrawRequest) -> WithdrawResult:
        self._begin(OperationType.WITHDRAW, request.token)
        if request.commitment is not None:
            note = self._notes.get(request.commitment)
            if note is None:
                raise PrivacyKitError(
                    f"Unknown commitment {request.commitment[:16]}",
                    error_code="UNKNOWN_COMMITMENT",
                    context={"provider_id": self.provider_id},
                )
            amount = request.amount or note.amount
            token = note.token
        else:
            amount, token = request.amount, request.token

        available = self._balances.get(token, 0.0)
        if amount > available:
            raise PrivacyKitError(
                f"Insufficient {token} balance: required {amount}, available {available}",
                error_code="INSUFFICIENT_BALANCE",
                context={"provider_id": self.provider_id},
            )
        if request.commitment is not None:
            del self._notes[request.commitment]
        self._balances[token] = available - amount
        return WithdrawResult(
            signature=self._signature(OperationType.WITHDRAW),
            provider_id=self.provider_id,
            fee=amount * self.fee_percent / 100,
        )

    async def prove(self, request: ProveRequest) -> ProveResult:
        self._ensure_ready()
        if PrivacyLevel.ZK_PROVEN not in self.supported_levels:
            raise UnsupportedOperationError(self.provider_id, OperationType.PROVE.value)
        self._record(OperationType.PROVE)
        digest = hashlib.sha256(
            f"{request.circuit}:{sorted(request.public_inputs.items())}".encode()
        ).digest()
        return ProveResult(
            proof=digest,
            public_inputs=dict(request.public_inputs),
            provider_id=self.provider_id,
            verification_key=hashlib.sha256(request.circuit.encode()).digest(),
        )

    # ── Internal ───────────────────────────────────────────────────

    def _ensure_ready(self) -> None:
        if not self._ready:
            raise ProviderNotReadyError(self.provider_id)

    def _begin(self, operation: OperationType, token: str) -> None:
        self._ensure_ready()
        if not supports_token(self, token):
            raise UnsupportedOperationError(self.provider_id, f"{operation}:{token}")
        self._record(operation)

    def _record(self, operation: OperationType) -> None:
        self.calls.append(operation)
        if operation in self.fail_on:
            raise ConnectionError(f"{self.name} rejected {operation}")

    def _signature(self, operation: OperationType, n: int | None = None) -> str:
        n = n if n is not None else next(self._counter)
        return hashlib.sha256(f"{self.provider_id}:{operation}:{n}".encode()).hexdigest()[:64]

def default_development_providers() -> list[InMemoryProvider]:
    """The four well-known providers with their published capability sets."""
    return [
        InMemoryProvider(
            KnownProvider.SHADOWWIRE.value,
            name="ShadowWire",
            levels=(PrivacyLevel.AMOUNT_HIDDEN, PrivacyLevel.SENDER_HIDDEN),
            tokens=("SOL", "USDC", "USDT", "BONK", "RADR", "ORE", "ANON"),
            fee_percent=0.75,
            latency_ms=4000,
            anonymity_set=500,
            min_amount=0.1,
        ),
        InMemoryProvider(
            KnownProvider.ARCIUM.value,
            name="Arcium",
            levels=(
                PrivacyLevel.FULL_ENCRYPTED,
                PrivacyLevel.AMOUNT_HIDDEN,
                PrivacyLevel.SENDER_HIDDEN,
            ),
            tokens=("SOL", "USDC"),
            has_onchain_verification=True,
            fee_percent=0.2,
            latency_ms=8000,
        ),
        InMemoryProvider(
            KnownProvider.NOIR.value,
            name="Noir",
            levels=(PrivacyLevel.ZK_PROVEN,),
            tokens=("*",),
            has_onchain_verification=True,
            fee_percent=0.1,
            latency_ms=6000,
        ),
        InMemoryProvider(
            KnownProvider.PRIVACY_CASH.value,
            name="Privacy Cash",
            levels=(PrivacyLevel.COMPLIANT_POOL, PrivacyLevel.SENDER_HIDDEN),
            tokens=("SOL", "USDC"),
            has_compliance=True,
            has_onchain_verification=True,
            fee_percent=1.0,
            latency_ms=12000,
            anonymity_set=300,
        ),
    ]
