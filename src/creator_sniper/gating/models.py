"""
Models for the credibility gate.

Payload models mirror the external APIs (camelCase aliases). CreatorProfile
is the normalized view the gate works with.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CredibilityServiceError(Exception):
    """Base exception for profile and reputation service failures."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


# =============================================================================
# ZORA PROFILE PAYLOAD
# =============================================================================


class _ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SocialAccount(_ApiModel):
    username: Optional[str] = None
    handle: Optional[str] = None
    display_name: Optional[str] = Field(default=None, alias="displayName")

    @property
    def best_name(self) -> Optional[str]:
        return self.username or self.handle or self.display_name


class SocialAccounts(_ApiModel):
    twitter: Optional[SocialAccount] = None
    instagram: Optional[SocialAccount] = None
    tiktok: Optional[SocialAccount] = None


class CreatorCoinInfo(_ApiModel):
    address: Optional[str] = None
    market_cap: Optional[str] = Field(default=None, alias="marketCap")


class PublicWallet(_ApiModel):
    wallet_address: Optional[str] = Field(default=None, alias="walletAddress")


class ProfilePayload(_ApiModel):
    """``profile`` object returned by the Zora profile endpoint."""

    id: Optional[str] = None
    handle: Optional[str] = None
    display_name: Optional[str] = Field(default=None, alias="displayName")
    bio: Optional[str] = None
    website: Optional[str] = None
    public_wallet: Optional[PublicWallet] = Field(default=None, alias="publicWallet")
    social_accounts: Optional[SocialAccounts] = Field(default=None, alias="socialAccounts")
    creator_coin: Optional[CreatorCoinInfo] = Field(default=None, alias="creatorCoin")


# =============================================================================
# NORMALIZED PROFILE
# =============================================================================


class CreatorProfile(BaseModel):
    """A creator's identity as resolved from their wallet address."""

    model_config = ConfigDict(frozen=True)

    address: str
    handle: Optional[str] = None
    display_name: Optional[str] = None
    wallet_address: Optional[str] = None
    twitter_username: Optional[str] = None
    creator_coin_address: Optional[str] = None
    creator_coin_market_cap: Optional[str] = None

    @property
    def is_creator_coin(self) -> bool:
        """Whether this profile owns a creator coin."""
        return bool(self.creator_coin_address)

    @property
    def best_identifier(self) -> str:
        """Twitter handle, then Zora handle, then display name, then wallet."""
        if self.twitter_username:
            return f"@{self.twitter_username}"
        if self.handle:
            return f"@{self.handle}"
        if self.display_name:
            return self.display_name
        return self.wallet_address or self.address

    @classmethod
    def from_payload(cls, address: str, payload: ProfilePayload) -> "CreatorProfile":
        twitter = payload.social_accounts.twitter if payload.social_accounts else None
        return cls(
            address=address.lower(),
            handle=payload.handle,
            display_name=payload.display_name,
            wallet_address=payload.public_wallet.wallet_address if payload.public_wallet else None,
            twitter_username=twitter.best_name if twitter else None,
            creator_coin_address=payload.creator_coin.address if payload.creator_coin else None,
            creator_coin_market_cap=payload.creator_coin.market_cap if payload.creator_coin else None,
        )


# =============================================================================
# REPUTATION
# =============================================================================


class ScorePayload(_ApiModel):
    """Response of the Ethos userkey score endpoint."""

    score: Optional[int] = None
    level: Optional[str] = None


class RiskLevel(str, Enum):
    """Counterparty risk derived from a reputation score."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    VERY_HIGH = "VERY_HIGH"


def risk_assessment(score: int) -> RiskLevel:
    """Bucket a reputation score into a risk level."""
    if score >= 850:
        return RiskLevel.LOW
    if score >= 750:
        return RiskLevel.MEDIUM
    if score >= 600:
        return RiskLevel.HIGH
    return RiskLevel.VERY_HIGH


# =============================================================================
# GATE DECISION
# =============================================================================


class GateStage(str, Enum):
    """Where in the credibility chain a decision was made."""

    PROFILE = "profile"
    CREATOR_COIN = "creator_coin"
    HANDLE = "handle"
    SCORE = "score"
    THRESHOLD = "threshold"
    PASSED = "passed"


@dataclass(frozen=True)
class GateDecision:
    """Outcome of running one launch through the credibility gate."""

    passed: bool
    stage: GateStage
    reason: str
    profile: Optional[CreatorProfile] = None
    score: Optional[int] = None
    risk: Optional[RiskLevel] = None

    @classmethod
    def skip(cls, stage: GateStage, reason: str, **kwargs) -> "GateDecision":
        return cls(passed=False, stage=stage, reason=reason, **kwargs)
