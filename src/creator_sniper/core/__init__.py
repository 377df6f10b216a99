"""
Core Layer - Sniper engine and orchestration.

This module provides:
    - SniperEngine: Main orchestrator (logs -> freshness -> gate -> position)
    - EngineConfig: Configuration for the engine
    - EngineStats: Runtime counters
    - BackgroundTasksManager: Runs the poll and evaluation loops
    - BackgroundTaskConfig: Loop intervals

Data Flow:
    1. LogPoller returns new launch events in (block, log index) order
    2. FreshnessFilter drops anything at/before startup or too old
    3. CredibilityGate checks the creator's profile and score
    4. PositionManager buys and opens a position
    5. LadderEngine evaluates open positions on its own interval
"""

from .background_tasks import BackgroundTaskConfig, BackgroundTasksManager
from .engine import BlockSource, EngineConfig, EngineStats, SniperEngine

__all__ = [
    # Main engine
    "SniperEngine",
    "EngineConfig",
    "EngineStats",
    "BlockSource",
    # Background tasks
    "BackgroundTasksManager",
    "BackgroundTaskConfig",
]
