"""Council deliberation across multiple advisor models."""
from __future__ import annotations

from janus.council.swarm import AdvisorSpec, CouncilRunResult, CouncilSettings, CouncilSwarm
from janus.council.types import Deliberation, Disagreement, Proposal

__all__ = [
    "AdvisorSpec",
    "CouncilRunResult",
    "CouncilSettings",
    "CouncilSwarm",
    "Deliberation",
    "Disagreement",
    "Proposal",
]
