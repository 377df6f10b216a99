"""
Credibility gate.

Chains creator address -> profile -> X handle -> reputation score and
decides whether a launch is worth buying. Any missing link, or any
service failure, is a hard and final skip: nothing is queued or retried.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional, Protocol

from creator_sniper.ingestion.models import LaunchEvent

from .models import (
    CreatorProfile,
    CredibilityServiceError,
    GateDecision,
    GateStage,
    risk_assessment,
)

logger = logging.getLogger(__name__)

CREATOR_COIN_EVENT = "CreatorCoinCreated"


class ProfileSource(Protocol):
    async def get_profile(self, address: str) -> Optional[CreatorProfile]: ...


class ScoreSource(Protocol):
    async def get_score_by_twitter(self, username: str) -> Optional[int]: ...


class CredibilityGate:
    """
    Gate launches on their creator's reputation.

    Stages, in order:
        1. PROFILE       creator address resolves to a profile
        2. CREATOR_COIN  the profile owns a creator coin (implied by CreatorCoinCreated)
        3. HANDLE        the profile links an X account
        4. SCORE         the X account has a reputation score
        5. THRESHOLD     score >= min_score

    Usage:
        gate = CredibilityGate(profiles, ethos, min_score=750)
        decision = await gate.evaluate(event)
        if decision.passed:
            ...
    """

    def __init__(
        self,
        profiles: ProfileSource,
        scores: ScoreSource,
        min_score: int,
        call_timeout: Optional[float] = None,
    ) -> None:
        """
        Initialize the gate.

        Args:
            profiles: Address -> profile lookup
            scores: X username -> score lookup
            min_score: Minimum score for a launch to pass
            call_timeout: Per-lookup timeout in seconds (None = no timeout)
        """
        self._profiles = profiles
        self._scores = scores
        self._min_score = min_score
        self._call_timeout = call_timeout

    @property
    def min_score(self) -> int:
        return self._min_score

    async def resolve_identity(self, creator_address: str) -> Optional[CreatorProfile]:
        """Profile for a creator address, or None."""
        return await self._bounded(self._profiles.get_profile(creator_address))

    async def score(self, handle: str) -> Optional[int]:
        """Reputation score for an X handle, or None."""
        return await self._bounded(self._scores.get_score_by_twitter(handle))

    async def evaluate(self, event: LaunchEvent) -> GateDecision:
        """
        Run a launch through the full chain.

        Never raises for service failures; they become a skip decision.
        """
        label = event.symbol or event.token_address

        try:
            profile = await self.resolve_identity(event.creator)
        except (CredibilityServiceError, asyncio.TimeoutError) as e:
            return self._skip(label, GateStage.PROFILE, f"profile lookup failed for {event.creator}: {e!r}", error=True)

        if profile is None:
            return self._skip(label, GateStage.PROFILE, f"no profile for creator {event.creator}")

        if not profile.is_creator_coin and event.event_name != CREATOR_COIN_EVENT:
            return self._skip(
                label, GateStage.CREATOR_COIN,
                f"{profile.best_identifier} has no creator coin",
                profile=profile,
            )

        if not profile.twitter_username:
            return self._skip(
                label, GateStage.HANDLE,
                f"{profile.best_identifier} has no linked X account",
                profile=profile,
            )

        try:
            score = await self.score(profile.twitter_username)
        except (CredibilityServiceError, asyncio.TimeoutError) as e:
            return self._skip(
                label, GateStage.SCORE,
                f"score lookup failed for @{profile.twitter_username}: {e!r}",
                profile=profile, error=True,
            )

        if score is None:
            return self._skip(
                label, GateStage.SCORE,
                f"no score for @{profile.twitter_username}",
                profile=profile,
            )

        risk = risk_assessment(score)
        if score < self._min_score:
            return self._skip(
                label, GateStage.THRESHOLD,
                f"score {score} below {self._min_score} for @{profile.twitter_username}",
                profile=profile, score=score, risk=risk,
            )

        logger.info(
            f"Gate passed {label}: @{profile.twitter_username} score {score} "
            f">= {self._min_score} (risk {risk.value})"
        )
        return GateDecision(
            passed=True,
            stage=GateStage.PASSED,
            reason=f"score {score} >= {self._min_score}",
            profile=profile,
            score=score,
            risk=risk,
        )

    async def _bounded(self, call):
        if self._call_timeout is None:
            return await call
        return await asyncio.wait_for(call, timeout=self._call_timeout)

    def _skip(self, label: str, stage: GateStage, reason: str, error: bool = False, **kwargs) -> GateDecision:
        if error:
            logger.warning(f"Gate skipped {label} at {stage.value}: {reason}")
        else:
            logger.info(f"Gate skipped {label} at {stage.value}: {reason}")
        return GateDecision.skip(stage, reason, **kwargs)
