"""Storage layer - Database schemas and repositories."""

from agentscore.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
)
from agentscore.storage.models import (
    Base,
    DiscoveredAgentModel,
    RegisteredAgentModel,
    ReplyRecordModel,
    ScanCheckpointModel,
    ScoredAgentModel,
    WalletMetricsModel,
)
from agentscore.storage.repos import (
    DiscoveredAgentDTO,
    DiscoveredAgentRepository,
    RegisteredAgentDTO,
    RegisteredAgentRepository,
    ReplyRecordRepository,
    ScanCheckpointRepository,
    ScoredAgentDTO,
    ScoredAgentRepository,
    WalletMetricsDelta,
    WalletMetricsDTO,
    WalletMetricsRepository,
)

__all__ = [
    "Base",
    "DatabaseManager",
    "DiscoveredAgentDTO",
    "DiscoveredAgentModel",
    "DiscoveredAgentRepository",
    "RegisteredAgentDTO",
    "RegisteredAgentModel",
    "RegisteredAgentRepository",
    "ReplyRecordModel",
    "ReplyRecordRepository",
    "ScanCheckpointModel",
    "ScanCheckpointRepository",
    "ScoredAgentDTO",
    "ScoredAgentModel",
    "ScoredAgentRepository",
    "WalletMetricsDTO",
    "WalletMetricsDelta",
    "WalletMetricsModel",
    "WalletMetricsRepository",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
]
