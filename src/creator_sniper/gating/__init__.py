"""
Gating Layer - Creator credibility checks.

This module provides:
    - ZoraProfileClient: Creator address -> public profile
    - EthosClient: X username -> reputation score
    - CredibilityGate: Chains both lookups into a pass/skip decision
    - GateDecision / GateStage: Outcome and where the chain stopped
    - risk_assessment: Score -> RiskLevel bucket

Any absent result (no profile, no creator coin, no handle, no score) or
service failure is a final skip for that launch.
"""

from .ethos_client import ETHOS_API_URL, EthosClient, twitter_userkey
from .gate import CredibilityGate, ProfileSource, ScoreSource
from .http import JsonServiceClient
from .models import (
    CreatorProfile,
    CredibilityServiceError,
    GateDecision,
    GateStage,
    ProfilePayload,
    RiskLevel,
    ScorePayload,
    risk_assessment,
)
from .profile_client import ZORA_API_URL, ZoraProfileClient

__all__ = [
    # Clients
    "ZoraProfileClient",
    "EthosClient",
    "JsonServiceClient",
    "ZORA_API_URL",
    "ETHOS_API_URL",
    "twitter_userkey",
    # Gate
    "CredibilityGate",
    "ProfileSource",
    "ScoreSource",
    # Models
    "CreatorProfile",
    "ProfilePayload",
    "ScorePayload",
    "GateDecision",
    "GateStage",
    "RiskLevel",
    "risk_assessment",
    "CredibilityServiceError",
]
