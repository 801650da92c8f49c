"""Interfaces of the collaborators tiller-auto drives.

The cluster API, the port forwarder, the release server client and the
chart tooling are provided by the caller. Only the methods listed here
are used.
"""

from pathlib import Path
from typing import Any, Protocol

from kubernetes import client


class ClusterAPI(Protocol):
    """Namespaced CRUD on the resources the control plane needs.

    Lookups and deletions of missing objects raise ResourceNotFoundError;
    creating an existing object raises ResourceExistsError.
    """

    def get_deployment(self, namespace: str, name: str) -> client.V1Deployment: ...

    def create_deployment(self, namespace: str, body: client.V1Deployment) -> client.V1Deployment: ...

    def replace_deployment(self, namespace: str, name: str, body: client.V1Deployment) -> client.V1Deployment: ...

    def delete_deployment(self, namespace: str, name: str) -> None: ...

    def create_service(self, namespace: str, body: client.V1Service) -> client.V1Service: ...

    def delete_service(self, namespace: str, name: str) -> None: ...

    def get_service_account(self, namespace: str, name: str) -> client.V1ServiceAccount: ...

    def create_service_account(self, namespace: str, body: client.V1ServiceAccount) -> client.V1ServiceAccount: ...

    def delete_service_account(self, namespace: str, name: str) -> None: ...

    def create_role(self, namespace: str, body: client.V1Role) -> client.V1Role: ...

    def delete_role(self, namespace: str, name: str) -> None: ...

    def create_role_binding(self, namespace: str, body: client.V1RoleBinding) -> client.V1RoleBinding: ...

    def delete_role_binding(self, namespace: str, name: str) -> None: ...


class TunnelEstablisher(Protocol):
    """Opens local port forwards to services inside the cluster."""

    def open(self, namespace: str, service_name: str) -> int:
        """Forward a free local port to the service and return the port."""
        ...

    def close(self, local_port: int) -> None:
        """Stop forwarding the given local port."""
        ...


class ReleaseRPCClient(Protocol):
    """Client of the remote release server.

    Failures are raised as ReleaseRPCError subclasses; a missing release as
    ReleaseNotFoundError.
    """

    def list_releases(self, limit: int) -> Any: ...

    def release_history(self, name: str, max: int) -> Any: ...

    def install_release_from_chart(
        self,
        chart: Any,
        namespace: str,
        *,
        name: str,
        values: str,
        reuse_name: bool,
        wait: bool,
        timeout: int,
    ) -> Any: ...

    def update_release(
        self,
        name: str,
        chart_path: str,
        *,
        values: str,
        reuse_values: bool,
        wait: bool,
        timeout: int,
    ) -> Any: ...

    def delete_release(self, name: str, *, purge: bool) -> Any: ...


class ChartLoader(Protocol):
    """Reads a chart directory or archive into memory.

    Loaded charts expose a ``dependencies`` sequence.
    """

    def load(self, path: str) -> Any: ...


class DependencyManager(Protocol):
    """Downloads the dependencies a chart declares into its charts/ folder."""

    def update(self, chart_path: str) -> None: ...


class ChartDownloader(Protocol):
    """Fetches repository charts."""

    def download_to(self, name: str, version: str, dest: Path) -> str:
        """Download the chart matching ``version`` into ``dest`` and return its path."""
        ...
