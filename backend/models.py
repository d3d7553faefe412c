from pydantic import BaseModel, Field, ConfigDict, RootModel
from typing import Optional, Dict, Any, List, Literal, Union, Annotated
from datetime import datetime, timezone
from enum import Enum
import uuid

# ============================================================================
# ENUMS (System Constants)
# ============================================================================

class ClassificationErrorCode(str, Enum):
    TOO_SHORT = "TOO_SHORT"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    MALFORMED_RESPONSE = "MALFORMED_RESPONSE"
    NOT_A_STATEMENT = "NOT_A_STATEMENT"

class VerifyErrorCode(str, Enum):
    REPORT_NOT_FOUND = "REPORT_NOT_FOUND"
    UNSUPPORTED_CHAIN = "UNSUPPORTED_CHAIN"
    TRANSACTION_NOT_CONFIRMED = "TRANSACTION_NOT_CONFIRMED"
    PAYMENT_NOT_FOUND = "PAYMENT_NOT_FOUND"
    SIGNATURE_MISMATCH = "SIGNATURE_MISMATCH"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    CHAIN_UNAVAILABLE = "CHAIN_UNAVAILABLE"
    PROOF_ALREADY_USED = "PROOF_ALREADY_USED"  # Only with UNLOCK_SINGLE_USE_PROOFS

class WithdrawalStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    REJECTED = "REJECTED"

class WithdrawalToken(str, Enum):
    USDC = "USDC"
    USDT = "USDT"

class AuditAction(str, Enum):
    REFERRAL_USER_CREATED = "REFERRAL_USER_CREATED"
    REFERRAL_CREDITED = "REFERRAL_CREDITED"
    WITHDRAWAL_REQUESTED = "WITHDRAWAL_REQUESTED"


HEX_ADDRESS_PATTERN = r"^0x[0-9a-fA-F]{40}$"
TX_HASH_PATTERN = r"^0x[0-9a-fA-F]{64}$"
SIGNATURE_PATTERN = r"^0x[0-9a-fA-F]+$"

# ============================================================================
# REPORT MODELS
# Field aliases follow the camelCase JSON the LLM returns and the web client reads.
# ============================================================================

class SubscriptionCharge(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    monthly_amount: float = Field(alias="monthlyAmount")
    total_paid: float = Field(0, alias="totalPaid")
    paid_months: int = Field(0, alias="paidMonths")
    annual_cost: float = Field(alias="annualCost")
    last_date: Optional[str] = Field(None, alias="lastDate")
    cancel_url: Optional[str] = Field(None, alias="cancelUrl")


class DetailedReport(BaseModel):
    """Full classification output. Only ever released through an unlock."""
    model_config = ConfigDict(populate_by_name=True)

    currency_code: str = Field("USD", alias="currencyCode")
    currency_symbol: str = Field("$", alias="currencySymbol")
    subscriptions: List[SubscriptionCharge] = []
    total_annual_waste: float = Field(0, alias="totalAnnualWaste")


class ReportSummary(BaseModel):
    """What the analyze caller sees before unlocking: aggregates only."""
    model_config = ConfigDict(populate_by_name=True)

    report_id: str = Field(alias="reportId")
    currency_code: str = Field(alias="currencyCode")
    currency_symbol: str = Field(alias="currencySymbol")
    total_annual_waste: float = Field(alias="totalAnnualWaste")
    subscription_count: int = Field(alias="subscriptionCount")

# ============================================================================
# UNLOCK REQUESTS (discriminated on "method")
# ============================================================================

class PaymentUnlockRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    report_id: str = Field(..., alias="reportId", min_length=1)
    method: Literal["payment"]
    chain_id: int = Field(..., alias="chainId")
    tx_hash: str = Field(..., alias="txHash", pattern=TX_HASH_PATTERN)


class NftUnlockRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    report_id: str = Field(..., alias="reportId", min_length=1)
    method: Literal["nft"]
    address: str = Field(..., pattern=HEX_ADDRESS_PATTERN)
    signature: str = Field(..., pattern=SIGNATURE_PATTERN)


UnlockRequest = Annotated[
    Union[PaymentUnlockRequest, NftUnlockRequest],
    Field(discriminator="method"),
]


class UnlockPayload(RootModel[UnlockRequest]):
    """Request body for /api/unlock-report; .root is the validated variant."""

# ============================================================================
# OUTCOMES
# ============================================================================

class VerificationOutcome(BaseModel):
    verified: bool
    error_code: Optional[VerifyErrorCode] = None
    message: Optional[str] = None

    @classmethod
    def ok(cls) -> "VerificationOutcome":
        return cls(verified=True)

    @classmethod
    def rejected(cls, error_code: VerifyErrorCode, message: str) -> "VerificationOutcome":
        return cls(verified=False, error_code=error_code, message=message)


class ClassificationOutcome(BaseModel):
    result: Optional[DetailedReport] = None
    error_code: Optional[ClassificationErrorCode] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.result is not None


class UnlockResult(BaseModel):
    detail: Optional[DetailedReport] = None
    error_code: Optional[VerifyErrorCode] = None
    message: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.detail is not None

# ============================================================================
# REFERRAL LEDGER
# ============================================================================

class ReferralClickRequest(BaseModel):
    code: str = Field(..., min_length=1)


class ClaimReferralRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    referrer_code: str = Field(..., alias="referrerCode", min_length=1)
    tx_hash: str = Field(..., alias="txHash", pattern=TX_HASH_PATTERN)
    chain_id: int = Field(..., alias="chainId")
    payer_address: str = Field(..., alias="payerAddress", pattern=HEX_ADDRESS_PATTERN)


class WithdrawalRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_address: str = Field(..., alias="userAddress", pattern=HEX_ADDRESS_PATTERN)
    amount: float = Field(..., gt=0)
    token: WithdrawalToken = WithdrawalToken.USDC
    chain_id: int = Field(..., alias="chainId")
    to_address: str = Field(..., alias="toAddress", pattern=HEX_ADDRESS_PATTERN)


class AuditLog(BaseModel):
    audit_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    action: AuditAction
    actor_address: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    before_state: Optional[Dict[str, Any]] = None
    after_state: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ReferralUser(BaseModel):
    address: str
    referral_code: str
    clicks: int = 0
    successful_refers: int = 0
    earnings: float = 0.0
    committed_withdrawals: float = 0.0
    created_at: Optional[datetime] = None
