"""
Tool: Consensus Clustering

Groups candidate points from distinct agents by textual similarity and
keeps the clusters that at least two different agents support.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Set, Tuple

from app.config import settings
from app.models.schemas import ConsensusPoint
from app.tools.text_similarity import SimilarityFn, bigram_similarity, max_similarity

MAX_CONSENSUS_POINTS = 5
MIN_SUPPORTING_AGENTS = 2


@dataclass
class PointCluster:
    members: List[str] = field(default_factory=list)
    agents: Set[str] = field(default_factory=set)

    @property
    def representative(self) -> str:
        return max(self.members, key=len)


def cluster_points(
    candidates: Sequence[Tuple[str, str]],
    threshold: float,
    similarity: SimilarityFn = bigram_similarity,
) -> List[PointCluster]:
    """
    Greedy single-link clustering of (agent_id, point) pairs.

    A point joins the first cluster containing a member at least
    ``threshold`` similar to it, otherwise starts a new cluster.
    """
    clusters: List[PointCluster] = []
    for agent_id, point in candidates:
        for cluster in clusters:
            if max_similarity(point, cluster.members, similarity) >= threshold:
                cluster.members.append(point)
                cluster.agents.add(agent_id)
                break
        else:
            clusters.append(PointCluster(members=[point], agents={agent_id}))
    return clusters


def build_consensus(
    candidates: Sequence[Tuple[str, str]],
    total_agents: int,
    threshold: Optional[float] = None,
    similarity: SimilarityFn = bigram_similarity,
    limit: int = MAX_CONSENSUS_POINTS,
) -> List[ConsensusPoint]:
    """
    Args:
        candidates: (agent_id, point) pairs from substantive answers
        total_agents: number of substantive agents (denominator in the report)
        threshold: clustering similarity threshold (looser than duplicate detection)
    """
    threshold = settings.consensus_threshold if threshold is None else threshold
    clusters = [
        c for c in cluster_points(candidates, threshold, similarity)
        if len(c.agents) >= MIN_SUPPORTING_AGENTS
    ]
    clusters.sort(key=lambda c: len(c.agents), reverse=True)
    return [
        ConsensusPoint(
            point=cluster.representative,
            agent_count=len(cluster.agents),
            total_agents=total_agents,
        )
        for cluster in clusters[:limit]
    ]
