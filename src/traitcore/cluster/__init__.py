"""Memory clustering, connections and pruning."""

from traitcore.cluster.engine import ClusterEngine
from traitcore.cluster.pruning import PruningAdvisor

__all__ = ["ClusterEngine", "PruningAdvisor"]
