import logging
from dataclasses import dataclass
from typing import Optional

from stock_loader.models.cluster import Cluster

logger = logging.getLogger(__name__)


@dataclass
class ConnectionResult:
    connection_message: str
    connection_established: bool
    cluster_version: Optional[str]

    def __str__(self):
        if self.connection_established:
            return f"{self.connection_message}\nCluster version: {self.cluster_version}"
        return self.connection_message


def connection_check(cluster: Cluster) -> ConnectionResult:
    try:
        r = cluster.call_api("/", timeout=3)
        version = r.json().get('version', {}).get('number')
    except Exception as e:
        logger.debug(f"Unable to access cluster: {cluster.endpoint} with exception: {e}")
        return ConnectionResult(connection_message=f"Unable to connect to cluster with error: {e}",
                                connection_established=False,
                                cluster_version=None)
    return ConnectionResult(connection_message="Successfully connected!",
                            connection_established=True,
                            cluster_version=version)
