from nodehog.service.base import ClusterAPI
from nodehog.service.kubectl import KubeCtl

__all__ = ["ClusterAPI", "KubeCtl"]
