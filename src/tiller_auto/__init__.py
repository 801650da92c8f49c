"""tiller-auto: bootstrap Tiller and manage chart releases through it.

This package installs or upgrades the Tiller control plane in a Kubernetes
cluster, grants it the permissions it needs, connects to it through a port
forward and installs, upgrades and deletes releases idempotently.

Example usage:
    from tiller_auto import Cluster, TillerClient, load_settings

    settings = load_settings()
    cluster = Cluster(select_context=False, context=settings.kube_context)

    with TillerClient(
        settings,
        cluster_api=cluster,
        tunnels=my_port_forwarder,
        rpc_factory=my_release_client,
        chart_loader=my_loader,
        dependency_manager=my_dependency_manager,
        chart_downloader=my_downloader,
    ) as helm:
        helm.install_chart_by_name("cache", "default", "stable/redis", values={"usePassword": False})
"""

__version__ = "0.1.0"

from tiller_auto.access import AccessBootstrapper
from tiller_auto.cluster import Cluster
from tiller_auto.core.client import TillerClient, delete_tiller
from tiller_auto.exceptions import (
    ClusterConnectionError,
    ConfigurationError,
    PartialTeardownError,
    ReleaseNotFoundError,
    ReleaseRPCError,
    ResourceExistsError,
    ResourceNotFoundError,
    TillerAutoError,
    WaitTimeoutError,
)
from tiller_auto.releases import ReleaseReconciler
from tiller_auto.repositories import HelmHome, RepositoryIndexSyncer
from tiller_auto.settings import Settings, load_settings
from tiller_auto.supervisor import ControlPlaneSupervisor

__all__ = [
    # Version
    "__version__",
    # Configuration
    "Settings",
    "load_settings",
    # Classes
    "AccessBootstrapper",
    "Cluster",
    "ControlPlaneSupervisor",
    "HelmHome",
    "ReleaseReconciler",
    "RepositoryIndexSyncer",
    "TillerClient",
    "delete_tiller",
    # Exceptions
    "TillerAutoError",
    "ClusterConnectionError",
    "ConfigurationError",
    "PartialTeardownError",
    "ReleaseNotFoundError",
    "ReleaseRPCError",
    "ResourceExistsError",
    "ResourceNotFoundError",
    "WaitTimeoutError",
]
