"""TillerClient facade class.

This module provides the TillerClient class, the main entry point for
release operations. Creating one brings the control plane up, connects to
it and prepares the local chart repositories.
"""

from collections.abc import Callable
from pathlib import Path
from typing import Any

from icecream import ic

from tiller_auto import console
from tiller_auto.access import AccessBootstrapper, config_manager_grant, operator_grant
from tiller_auto.exceptions import ConfigurationError, PartialTeardownError
from tiller_auto.interfaces import (
    ChartDownloader,
    ChartLoader,
    ClusterAPI,
    DependencyManager,
    ReleaseRPCClient,
    TunnelEstablisher,
)
from tiller_auto.models import ChartReference, Release, ReleaseRecord
from tiller_auto.releases import ReleaseReconciler
from tiller_auto.repositories import HelmHome, RepositoryIndexSyncer, load_repositories_file
from tiller_auto.settings import Settings
from tiller_auto.supervisor import ControlPlaneSupervisor, control_plane_instance, identity_of


class TillerClient:
    """Session with a running control plane.

    Attributes:
        settings: Settings the session was created with.
        supervisor: Supervisor owning the control plane and tunnel.
        rpc: Release server client connected through the tunnel.
        home: Local helm home.
        releases: Reconciler used for release operations.

    """

    def __init__(
        self,
        settings: Settings,
        *,
        cluster_api: ClusterAPI,
        tunnels: TunnelEstablisher,
        rpc_factory: Callable[[str], ReleaseRPCClient],
        chart_loader: ChartLoader,
        dependency_manager: DependencyManager,
        chart_downloader: ChartDownloader,
        upgrade_tiller: bool = False,
    ) -> None:
        """Bring up the control plane and connect to it.

        Args:
            settings: Namespaces, image, wait bounds and local paths.
            cluster_api: Cluster API the control plane is managed through.
            tunnels: Port forwarder to the Tiller service.
            rpc_factory: Builds a release server client for a host:port.
            chart_loader: Reads charts from disk.
            dependency_manager: Fetches chart dependencies.
            chart_downloader: Fetches repository charts.
            upgrade_tiller: Upgrade an existing Tiller deployment.

        """
        console.configure_debug(settings.debug)
        self.settings = settings
        self.instance = control_plane_instance(settings)
        self.supervisor = ControlPlaneSupervisor(cluster_api, tunnels, AccessBootstrapper(cluster_api), settings)

        self.supervisor.ensure_running(self.instance, upgrade=upgrade_tiller)
        tunnel = self.supervisor.open_tunnel(self.instance)

        try:
            self.rpc: ReleaseRPCClient = rpc_factory(tunnel.address)
            self.supervisor.await_healthy(self.rpc)
            self.home = HelmHome(settings.helm_home)
            self._prepare_repositories()
        except Exception:
            self.supervisor.close_tunnel()
            raise

        self.releases = ReleaseReconciler(
            self.rpc,
            chart_loader,
            dependency_manager,
            chart_downloader,
            archive_dir=self.home.archive,
        )

    def __enter__(self) -> "TillerClient":
        """Enter context manager.

        Returns:
            The TillerClient instance.

        """
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        """Exit context manager and close the tunnel.

        Args:
            exc_type: Exception type if an exception was raised.
            exc_val: Exception value if an exception was raised.
            exc_tb: Exception traceback if an exception was raised.

        """
        self.close()

    def __repr__(self) -> str:
        """Return a detailed string representation for debugging."""
        return f"TillerClient(namespace={self.instance.namespace!r}, tunnel={self.supervisor.tunnel!r})"

    def close(self) -> None:
        """Close the tunnel to the control plane."""
        self.supervisor.close_tunnel()

    def _prepare_repositories(self) -> None:
        """Create the helm home and fetch indexes that were never downloaded."""
        self.home.ensure_layout()
        entries = load_repositories_file(self.home.repository_file)
        missing = self.home.missing_caches(entries)
        ic(missing)

        if missing:
            RepositoryIndexSyncer(self.home).sync_all()

    def release_exists(self, name: str) -> bool:
        """Check whether a release exists on the server."""
        return self.releases.exists(name)

    def install_chart_by_path(
        self,
        name: str,
        namespace: str,
        chart_path: str,
        values: dict[str, Any] | None = None,
    ) -> ReleaseRecord:
        """Install or upgrade a release from a local chart.

        Args:
            name: Release name.
            namespace: Namespace to install into.
            chart_path: Local chart directory or archive.
            values: Value overrides.

        Returns:
            The deployed release.

        Raises:
            ConfigurationError: If the chart path does not exist.

        """
        if not Path(chart_path).exists():
            raise ConfigurationError(f"Chart path {chart_path} does not exist")
        chart = ChartReference(location=chart_path, local=True)
        return self.releases.upsert(self._release(name, namespace, chart, values))

    def install_chart_by_name(
        self,
        name: str,
        namespace: str,
        chart_name: str,
        chart_version: str = "",
        values: dict[str, Any] | None = None,
    ) -> ReleaseRecord:
        """Install or upgrade a release from a repository chart.

        Args:
            name: Release name.
            namespace: Namespace to install into.
            chart_name: Repository chart, e.g. 'stable/redis'.
            chart_version: Version constraint; empty for the latest.
            values: Value overrides.

        Returns:
            The deployed release.

        """
        chart = ChartReference(location=chart_name, version=chart_version, local=False)
        return self.releases.upsert(self._release(name, namespace, chart, values))

    def _release(
        self,
        name: str,
        namespace: str,
        chart: ChartReference,
        values: dict[str, Any] | None,
    ) -> Release:
        return Release(
            name=name,
            namespace=namespace,
            chart=chart,
            values=values,
            timeout=self.settings.deployment_timeout,
        )

    def delete_release(self, name: str, purge: bool = False) -> Any:
        """Delete a release, optionally purging its history."""
        return self.releases.delete(name, purge=purge)


def delete_tiller(settings: Settings, cluster_api: ClusterAPI) -> None:
    """Remove the control plane, its service account and its grants.

    Args:
        settings: Settings naming the namespaces involved.
        cluster_api: Cluster API to delete through.

    Raises:
        PartialTeardownError: If any of the objects could not be deleted.

    """
    instance = control_plane_instance(settings)
    identity = identity_of(instance)
    grants = [config_manager_grant(identity), operator_grant(identity, settings.release_namespace)]

    try:
        with console.spinner("Removing Tiller server"):
            AccessBootstrapper(cluster_api).teardown(identity, grants, instance)
    except PartialTeardownError as e:
        console.error(str(e))
        raise

    console.success(f"Removed Tiller from namespace {console.highlight(instance.namespace)}")
