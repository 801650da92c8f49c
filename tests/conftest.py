"""Shared test fixtures for tiller-auto tests."""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from kubernetes import client

from tiller_auto import console
from tiller_auto.exceptions import ReleaseNotFoundError, ReleaseRPCError, ResourceExistsError, ResourceNotFoundError
from tiller_auto.models import ControlPlaneInstance
from tiller_auto.settings import Settings


class FakeClusterAPI:
    """In-memory ClusterAPI.

    Objects are stored by (kind, namespace, name). Every call is recorded in
    ``calls`` as (method, namespace, name). ``failures`` maps a method name,
    or a (method, name) pair, to an exception raised instead of the call.
    """

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str, str], object] = {}
        self.calls: list[tuple[str, str, str]] = []
        self.failures: dict[object, Exception] = {}
        self.ready_replicas: int = 1
        self.polls_until_ready: int = 0
        self.polls: int = 0

    def _record(self, method: str, namespace: str, name: str) -> None:
        self.calls.append((method, namespace, name))
        failure = self.failures.get((method, name)) or self.failures.get(method)
        if failure is not None:
            raise failure

    def called(self, method: str) -> list[tuple[str, str, str]]:
        return [call for call in self.calls if call[0] == method]

    def _get(self, kind: str, namespace: str, name: str):
        try:
            return self.objects[(kind, namespace, name)]
        except KeyError:
            raise ResourceNotFoundError(kind, namespace, name) from None

    def _create(self, kind: str, namespace: str, body):
        key = (kind, namespace, body.metadata.name)
        if key in self.objects:
            raise ResourceExistsError(*key)
        self.objects[key] = body
        return body

    def _delete(self, kind: str, namespace: str, name: str) -> None:
        if (kind, namespace, name) not in self.objects:
            raise ResourceNotFoundError(kind, namespace, name)
        del self.objects[(kind, namespace, name)]

    def get_deployment(self, namespace, name):
        self._record("get_deployment", namespace, name)
        deployment = self._get("Deployment", namespace, name)
        self.polls += 1
        ready = self.ready_replicas if self.polls > self.polls_until_ready else 0
        deployment.status = client.V1DeploymentStatus(replicas=deployment.spec.replicas, ready_replicas=ready)
        return deployment

    def create_deployment(self, namespace, body):
        self._record("create_deployment", namespace, body.metadata.name)
        return self._create("Deployment", namespace, body)

    def replace_deployment(self, namespace, name, body):
        self._record("replace_deployment", namespace, name)
        self._get("Deployment", namespace, name)
        self.objects[("Deployment", namespace, name)] = body
        return body

    def delete_deployment(self, namespace, name):
        self._record("delete_deployment", namespace, name)
        self._delete("Deployment", namespace, name)

    def create_service(self, namespace, body):
        self._record("create_service", namespace, body.metadata.name)
        return self._create("Service", namespace, body)

    def delete_service(self, namespace, name):
        self._record("delete_service", namespace, name)
        self._delete("Service", namespace, name)

    def get_service_account(self, namespace, name):
        self._record("get_service_account", namespace, name)
        return self._get("ServiceAccount", namespace, name)

    def create_service_account(self, namespace, body):
        self._record("create_service_account", namespace, body.metadata.name)
        return self._create("ServiceAccount", namespace, body)

    def delete_service_account(self, namespace, name):
        self._record("delete_service_account", namespace, name)
        self._delete("ServiceAccount", namespace, name)

    def create_role(self, namespace, body):
        self._record("create_role", namespace, body.metadata.name)
        return self._create("Role", namespace, body)

    def delete_role(self, namespace, name):
        self._record("delete_role", namespace, name)
        self._delete("Role", namespace, name)

    def create_role_binding(self, namespace, body):
        self._record("create_role_binding", namespace, body.metadata.name)
        return self._create("RoleBinding", namespace, body)

    def delete_role_binding(self, namespace, name):
        self._record("delete_role_binding", namespace, name)
        self._delete("RoleBinding", namespace, name)


class FakeTunnels:
    """TunnelEstablisher that fails a number of times before succeeding."""

    def __init__(self, failures_before_success: int = 0, port: int = 41234) -> None:
        self.failures_before_success = failures_before_success
        self.port = port
        self.attempts = 0
        self.closed: list[int] = []

    def open(self, namespace, service_name):
        self.attempts += 1
        if self.failures_before_success < 0 or self.attempts <= self.failures_before_success:
            raise ConnectionError(f"attempt {self.attempts}: pod not running")
        return self.port

    def close(self, local_port):
        self.closed.append(local_port)


class FakeReleaseServer:
    """In-memory ReleaseRPCClient keeping a revision count per release."""

    def __init__(self) -> None:
        self.releases: dict[str, dict] = {}
        self.calls: list[tuple[str, str, dict]] = []

    def _response(self, name: str):
        release = self.releases[name]
        return SimpleNamespace(
            release=SimpleNamespace(
                name=name,
                namespace=release["namespace"],
                version=release["revision"],
                status="DEPLOYED",
            )
        )

    def list_releases(self, limit):
        self.calls.append(("list_releases", "", {"limit": limit}))
        return list(self.releases)[:limit]

    def release_history(self, name, max):
        self.calls.append(("release_history", name, {"max": max}))
        if name not in self.releases:
            raise ReleaseNotFoundError(name)
        return [self.releases[name]]

    def install_release_from_chart(self, chart, namespace, *, name, values, reuse_name, wait, timeout):
        self.calls.append(
            (
                "install_release_from_chart",
                name,
                {"chart": chart, "namespace": namespace, "values": values, "reuse_name": reuse_name,
                 "wait": wait, "timeout": timeout},
            )
        )
        if name in self.releases:
            raise ReleaseRPCError(f"cannot re-use a name that is still in use: {name}")
        self.releases[name] = {"namespace": namespace, "revision": 1, "values": values}
        return self._response(name)

    def update_release(self, name, chart_path, *, values, reuse_values, wait, timeout):
        self.calls.append(
            (
                "update_release",
                name,
                {"chart_path": chart_path, "values": values, "reuse_values": reuse_values,
                 "wait": wait, "timeout": timeout},
            )
        )
        if name not in self.releases:
            raise ReleaseNotFoundError(name)
        self.releases[name]["revision"] += 1
        self.releases[name]["values"] = values
        return self._response(name)

    def delete_release(self, name, *, purge):
        self.calls.append(("delete_release", name, {"purge": purge}))
        self.releases.pop(name, None)
        return SimpleNamespace(release=SimpleNamespace(name=name), info="deleted")

    def called(self, method: str) -> list[tuple[str, str, dict]]:
        return [call for call in self.calls if call[0] == method]


@pytest.fixture(autouse=True)
def quiet_debug():
    """Keep icecream traces out of test output."""
    console.configure_debug(False)
    yield


@pytest.fixture
def settings(tmp_path):
    """Settings with waits shrunk to fractions of a second."""
    return Settings(
        tiller_namespace="tiller-system",
        release_namespace="apps",
        tiller_wait=0.3,
        tunnel_wait=0.3,
        rpc_wait=0.3,
        poll_interval=0.01,
        home=tmp_path / "tiller-auto",
    )


@pytest.fixture
def instance():
    """A control plane instance in the tiller-system namespace."""
    return ControlPlaneInstance(
        namespace="tiller-system",
        deployment_name="tiller-deploy",
        image="gcr.io/kubernetes-helm/tiller:v2.9.1",
        max_history=10,
        service_account="tiller-auto",
    )


@pytest.fixture
def cluster_api():
    """An empty in-memory cluster."""
    return FakeClusterAPI()


@pytest.fixture
def tunnels():
    """A port forwarder that connects on the first attempt."""
    return FakeTunnels()


@pytest.fixture
def release_server():
    """An empty in-memory release server."""
    return FakeReleaseServer()


@pytest.fixture
def chart_loader():
    """Chart loader returning a chart without dependencies."""
    loader = MagicMock()
    loader.load.return_value = SimpleNamespace(name="app", dependencies=[])
    return loader


@pytest.fixture
def mock_kube_contexts():
    """Mock kubernetes config contexts."""
    with patch("kubernetes.config.list_kube_config_contexts") as mock:
        mock.return_value = ([{"name": "test-context"}], {"name": "test-context"})
        yield mock


@pytest.fixture
def mock_kube_config():
    """Mock kubernetes config loading."""
    with patch("kubernetes.config.load_kube_config") as mock:
        yield mock


@pytest.fixture
def mock_apis():
    """Mock the core, apps and RBAC API clients."""
    with (
        patch("kubernetes.client.CoreV1Api") as core,
        patch("kubernetes.client.AppsV1Api") as apps,
        patch("kubernetes.client.RbacAuthorizationV1Api") as rbac,
    ):
        yield SimpleNamespace(core=core.return_value, apps=apps.return_value, rbac=rbac.return_value)


@pytest.fixture
def make_tunnels():
    """Factory for port forwarders with a chosen failure count."""
    return FakeTunnels
