"""Select the nodes an experiment run will hog."""

import logging
import math
import random

from nodehog.config import ExperimentConfig
from nodehog.errors import NoEligibleTargetsError
from nodehog.models import TargetNode
from nodehog.service.base import ClusterAPI

logger = logging.getLogger("all.nodehog.targets")


def target_count(eligible: int, percentage: int) -> int:
    """Number of nodes to affect: ceil(eligible * percentage / 100), at least one."""
    return min(eligible, max(1, math.ceil(eligible * percentage / 100)))


class TargetResolver:
    def __init__(self, cluster: ClusterAPI, config: ExperimentConfig):
        self.cluster = cluster
        self.config = config

    def resolve(self) -> list[TargetNode]:
        if self.config.target_nodes:
            logger.info(f"Using explicit target nodes: {', '.join(self.config.target_nodes)}")
            return [TargetNode(name, self.cluster.is_node_ready(name)) for name in self.config.target_nodes]

        eligible = self.eligible_nodes()
        if not eligible:
            raise NoEligibleTargetsError(f"no eligible nodes found ({self._describe_source()})")

        ordered = sorted(eligible)
        random.Random(self.config.run_id).shuffle(ordered)
        count = target_count(len(ordered), self.config.nodes_affected_perc)
        chosen = ordered[:count]
        logger.info(
            f"Selected {count}/{len(ordered)} eligible nodes at {self.config.nodes_affected_perc}%: {', '.join(chosen)}"
        )
        return [TargetNode(name, True) for name in chosen]

    def eligible_nodes(self) -> list[str]:
        """Ready, deduplicated candidates from the configured selection source."""
        if self.config.node_label:
            candidates = self.cluster.list_nodes(self.config.node_label)
        elif self.config.app_namespace and self.config.app_label:
            candidates = self.cluster.list_app_nodes(self.config.app_namespace, self.config.app_label)
        else:
            candidates = self.cluster.list_nodes(None)

        eligible = []
        for name in candidates:
            if name in eligible:
                continue
            if not self.cluster.is_node_ready(name):
                logger.warning(f"Skipping node {name}: not Ready")
                continue
            eligible.append(name)
        return eligible

    def _describe_source(self) -> str:
        if self.config.node_label:
            return f"label '{self.config.node_label}'"
        if self.config.app_namespace and self.config.app_label:
            return f"app '{self.config.app_label}' in '{self.config.app_namespace}'"
        return "all nodes"
