"""Outreach engine."""

from agentscore.outreach.engine import (
    Eligibility,
    OutreachEngine,
    OutreachOutcome,
    SkipReason,
    check_eligibility,
)

__all__ = ["Eligibility", "OutreachEngine", "OutreachOutcome", "SkipReason", "check_eligibility"]
