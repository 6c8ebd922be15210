"""Optional external signals - debate ranking and financial activity."""

from agentscore.sources.debate import DebateRecord, DebateSource, debate_score
from agentscore.sources.financial import FinancialMetrics, FinancialSource, financial_score

__all__ = [
    "DebateRecord",
    "DebateSource",
    "FinancialMetrics",
    "FinancialSource",
    "debate_score",
    "financial_score",
]
