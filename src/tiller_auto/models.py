"""Data models for tiller-auto.

This module provides type-safe data structures describing the identity,
grants, control plane, tunnel, releases and chart repositories the
package works with.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, NamedTuple

# Version constraint meaning "latest available, prereleases included"
ANY_VERSION = ">0.0.0-0"

DEFAULT_RELEASE_TIMEOUT = 600


class ControlPlaneState(str, Enum):
    """States the control plane passes through while being ensured."""

    ABSENT = "absent"
    INSTALLING = "installing"
    UPGRADING = "upgrading"
    WAITING_READY = "waiting-ready"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ClusterIdentity:
    """A service account the control plane runs as.

    Attributes:
        name: The service account name.
        namespace: The namespace the service account lives in.

    """

    name: str
    namespace: str


@dataclass(frozen=True, slots=True)
class PolicyRule:
    """A single RBAC rule: which verbs on which resources of which API groups."""

    api_groups: tuple[str, ...]
    resources: tuple[str, ...]
    verbs: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class AccessGrant:
    """A role and its role binding, created and deleted as a unit.

    Attributes:
        name: Name of the role; the binding is named after it.
        namespace: Namespace of the control plane (where the subject lives).
        target_namespace: Namespace the role and binding are created in.
        rules: RBAC rules of the role.
        subject: The identity the binding grants the role to.

    """

    name: str
    namespace: str
    target_namespace: str
    rules: tuple[PolicyRule, ...]
    subject: ClusterIdentity

    @property
    def binding_name(self) -> str:
        """Name of the role binding belonging to this grant."""
        return f"{self.name}-binding"


@dataclass(frozen=True, slots=True)
class ControlPlaneInstance:
    """The remote Tiller deployment to keep running.

    Attributes:
        namespace: Namespace the deployment runs in.
        deployment_name: Name of the deployment (and of its service).
        image: Container image to run.
        max_history: Maximum number of release revisions Tiller keeps.
        service_account: Service account the pod runs as.

    """

    namespace: str
    deployment_name: str
    image: str
    max_history: int
    service_account: str

    @property
    def service_name(self) -> str:
        """Name of the service fronting the deployment."""
        return self.deployment_name


@dataclass(frozen=True, slots=True)
class Tunnel:
    """A local port forwarded to a service inside the cluster."""

    local_port: int
    remote_namespace: str
    remote_service_name: str

    @property
    def address(self) -> str:
        """The local host:port the tunnel listens on."""
        return f"127.0.0.1:{self.local_port}"


@dataclass(frozen=True, slots=True)
class ChartReference:
    """Where a chart comes from.

    Attributes:
        location: A local chart directory or a repository chart name
                  such as 'stable/redis'.
        version: Version constraint for repository charts. Empty means
                 the latest available version.
        local: True if ``location`` is a path on the local filesystem,
               False if it names a chart in a repository.

    """

    location: str
    version: str = ""
    local: bool = False

    @property
    def version_constraint(self) -> str:
        """The version constraint to resolve, defaulting to any version."""
        return self.version or ANY_VERSION


@dataclass(frozen=True)
class Release:
    """Desired state of one deployed chart instance.

    Attributes:
        name: Release name.
        namespace: Namespace the release is installed into.
        chart: Chart to deploy.
        values: Value overrides, replacing any values of a previous revision.
        timeout: Seconds to wait for the release to become stable.

    """

    name: str
    namespace: str
    chart: ChartReference
    values: dict[str, Any] | None = None
    timeout: int = DEFAULT_RELEASE_TIMEOUT


class ReleaseRecord(NamedTuple):
    """Result of an install or upgrade as reported by the release server.

    Attributes:
        name: Release name.
        namespace: Namespace the release lives in.
        revision: Revision number of the release.
        status: Status string (e.g. 'DEPLOYED').

    """

    name: str
    namespace: str
    revision: int
    status: str


@dataclass(frozen=True, slots=True)
class RepositoryEntry:
    """A configured chart repository.

    Attributes:
        name: Repository name (e.g. 'stable').
        url: Base URL of the repository.
        cache: Path of the cached index, relative to the helm home
               unless absolute.

    """

    name: str
    url: str
    cache: str


@dataclass(frozen=True, slots=True)
class SyncOutcome:
    """Result of refreshing one repository index."""

    name: str
    url: str
    error: Exception | None = field(default=None, compare=False)

    @property
    def ok(self) -> bool:
        """Whether the index was refreshed."""
        return self.error is None
