"""Unified message processing pipeline."""

from .analytics import (
    GenerationRecord,
    InMemoryGenerationRepository,
    PostgresGenerationRepository,
    SideEffectQueue,
    TenantAnalytics,
)
from .cache import ResponseCache, TenantCache, normalize_query
from .delivery import DeliveryCoordinator, DeliveryReport, SessionRegistry
from .orchestrator import MessageOrchestrator, PipelineOutcome
from .schemas import HistoryTurn, ProcessMessageInput, ProcessMessageResult, ResultMetadata

__all__ = [
    "DeliveryCoordinator",
    "DeliveryReport",
    "GenerationRecord",
    "HistoryTurn",
    "InMemoryGenerationRepository",
    "MessageOrchestrator",
    "PipelineOutcome",
    "PostgresGenerationRepository",
    "ProcessMessageInput",
    "ProcessMessageResult",
    "ResponseCache",
    "ResultMetadata",
    "SessionRegistry",
    "SideEffectQueue",
    "TenantAnalytics",
    "TenantCache",
    "normalize_query",
]
