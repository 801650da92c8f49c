"""Control plane lifecycle.

This module provides the ControlPlaneSupervisor, which installs or
upgrades the Tiller deployment, waits for it to roll out, and owns the
tunnel through which the release server is reached.
"""

import time

from icecream import ic
from kubernetes import client
from kubernetes.client import ApiException

from tiller_auto import console, manifests
from tiller_auto.access import AccessBootstrapper, config_manager_grant, operator_grant
from tiller_auto.exceptions import (
    ClusterConnectionError,
    ResourceExistsError,
    ResourceNotFoundError,
    WaitTimeoutError,
)
from tiller_auto.interfaces import ClusterAPI, ReleaseRPCClient, TunnelEstablisher
from tiller_auto.models import ClusterIdentity, ControlPlaneInstance, ControlPlaneState, Tunnel
from tiller_auto.polling import retry_until, wait_until
from tiller_auto.settings import Settings

TILLER_DEPLOYMENT_NAME = "tiller-deploy"
TILLER_SERVICE_ACCOUNT = "tiller-auto"


def control_plane_instance(settings: Settings) -> ControlPlaneInstance:
    """Describe the control plane the settings ask for."""
    return ControlPlaneInstance(
        namespace=settings.tiller_namespace,
        deployment_name=TILLER_DEPLOYMENT_NAME,
        image=settings.image,
        max_history=settings.max_history,
        service_account=TILLER_SERVICE_ACCOUNT,
    )


def identity_of(instance: ControlPlaneInstance) -> ClusterIdentity:
    """The service account a control plane instance runs as."""
    return ClusterIdentity(name=instance.service_account, namespace=instance.namespace)


class ControlPlaneSupervisor:
    """Keeps the Tiller deployment running and reachable.

    Attributes:
        api: Cluster API used to inspect and change the deployment.
        tunnels: Port forwarder used to reach the Tiller service.
        access: Bootstrapper creating the identity and grants on install.
        settings: Namespaces, wait bounds and poll interval.
        state: The last state reached by ``ensure_running``.
        transitions: Every state entered during the last ``ensure_running``.
        tunnel: The open tunnel, if any.

    """

    def __init__(
        self,
        api: ClusterAPI,
        tunnels: TunnelEstablisher,
        access: AccessBootstrapper,
        settings: Settings,
    ) -> None:
        self.api = api
        self.tunnels = tunnels
        self.access = access
        self.settings = settings
        self.state: ControlPlaneState | None = None
        self.transitions: list[ControlPlaneState] = []
        self.tunnel: Tunnel | None = None

    def __repr__(self) -> str:
        """Return a detailed string representation for debugging."""
        return f"ControlPlaneSupervisor(state={self.state!r}, tunnel={self.tunnel!r})"

    def _enter(self, state: ControlPlaneState) -> None:
        ic(state)
        self.state = state
        self.transitions.append(state)

    def ensure_running(
        self,
        instance: ControlPlaneInstance,
        upgrade: bool = False,
        *,
        max_wait: float | None = None,
        poll_interval: float | None = None,
    ) -> ControlPlaneState:
        """Install or upgrade the control plane and wait until it is ready.

        A deployment that exists and is not being upgraded is reported as
        ready without waiting; ``await_healthy`` catches one that is stuck.

        Args:
            instance: The control plane to ensure.
            upgrade: Upgrade an existing deployment in place.
            max_wait: Seconds to wait for the rollout; defaults to settings.
            poll_interval: Seconds between readiness checks; defaults to settings.

        Returns:
            The final state, always READY.

        Raises:
            WaitTimeoutError: If the deployment did not become ready in time.
                              It is left on the cluster as-is.

        """
        self.transitions = []

        try:
            deployment = self.api.get_deployment(instance.namespace, instance.deployment_name)
        except ResourceNotFoundError:
            deployment = None

        if deployment is None:
            self._enter(ControlPlaneState.ABSENT)
            self._install(instance)
        elif upgrade:
            self._upgrade(instance, deployment)
        else:
            self._enter(ControlPlaneState.READY)
            return self.state

        self._await_rollout(
            instance,
            max_wait=self.settings.tiller_wait if max_wait is None else max_wait,
            poll_interval=self.settings.poll_interval if poll_interval is None else poll_interval,
        )
        return self.state

    def _install(self, instance: ControlPlaneInstance) -> None:
        self._enter(ControlPlaneState.INSTALLING)
        identity = identity_of(instance)

        with console.spinner("Installing Tiller server"):
            self.access.ensure_identity(identity)
            self.access.ensure_grant(config_manager_grant(identity))

            try:
                self.api.create_deployment(instance.namespace, manifests.tiller_deployment(instance))
            except ResourceExistsError:
                ic("deployment appeared concurrently")
            self._ensure_service(instance)

            self.access.ensure_grant(operator_grant(identity, self.settings.release_namespace))

        console.success(f"Installed Tiller in namespace {console.highlight(instance.namespace)}")

    def _upgrade(self, instance: ControlPlaneInstance, deployment: client.V1Deployment) -> None:
        self._enter(ControlPlaneState.UPGRADING)

        with console.spinner("Upgrading Tiller server"):
            manifests.apply_upgrade(deployment, instance)
            self.api.replace_deployment(instance.namespace, instance.deployment_name, deployment)
            self._ensure_service(instance)

        console.success(f"Upgraded Tiller to {console.highlight(instance.image)}")

    def _ensure_service(self, instance: ControlPlaneInstance) -> None:
        try:
            self.api.create_service(instance.namespace, manifests.tiller_service(instance))
        except ResourceExistsError:
            pass

    def _is_rolled_out(self, instance: ControlPlaneInstance) -> bool:
        try:
            deployment = self.api.get_deployment(instance.namespace, instance.deployment_name)
        except ResourceNotFoundError:
            return False
        except (ApiException, ClusterConnectionError) as e:
            ic(e)
            return False

        desired = deployment.spec.replicas if deployment.spec.replicas is not None else 1
        ready = (deployment.status.ready_replicas if deployment.status else None) or 0
        ic(desired, ready)
        return ready == desired

    def _await_rollout(self, instance: ControlPlaneInstance, *, max_wait: float, poll_interval: float) -> None:
        self._enter(ControlPlaneState.WAITING_READY)
        resource = f"Deployment {instance.namespace}/{instance.deployment_name}"

        try:
            with console.spinner("Waiting for Tiller server to start"):
                wait_until(
                    lambda: self._is_rolled_out(instance),
                    resource=resource,
                    max_wait=max_wait,
                    interval=poll_interval,
                )
        except Exception as e:
            self._enter(ControlPlaneState.FAILED)
            console.error(str(e))
            raise

        self._enter(ControlPlaneState.READY)
        console.success("Tiller server started")

    def open_tunnel(
        self,
        instance: ControlPlaneInstance,
        *,
        max_wait: float | None = None,
        poll_interval: float | None = None,
    ) -> Tunnel:
        """Open a tunnel to the Tiller service, retrying until a deadline.

        The port forward may race the pod becoming schedulable, so failed
        attempts are retried until ``max_wait`` has elapsed.

        Args:
            instance: The control plane to connect to.
            max_wait: Seconds to keep retrying; defaults to settings.
            poll_interval: Seconds between attempts; defaults to settings.

        Returns:
            The open tunnel, also kept on ``self.tunnel``.

        Raises:
            Exception: The error of the last connection attempt.

        """
        try:
            with console.spinner("Waiting for Tiller port forwarding to become ready"):
                local_port = retry_until(
                    lambda: self.tunnels.open(instance.namespace, instance.service_name),
                    max_wait=self.settings.tunnel_wait if max_wait is None else max_wait,
                    interval=self.settings.poll_interval if poll_interval is None else poll_interval,
                )
        except Exception as e:
            console.error(f"Could not forward to service {instance.namespace}/{instance.service_name}: {e}")
            raise

        self.tunnel = Tunnel(
            local_port=local_port,
            remote_namespace=instance.namespace,
            remote_service_name=instance.service_name,
        )
        ic(self.tunnel)
        return self.tunnel

    def await_healthy(
        self,
        rpc_client: ReleaseRPCClient,
        max_wait: float | None = None,
        poll_interval: float | None = None,
    ) -> None:
        """Wait until the release server answers a minimal list request.

        A ready pod does not mean the server inside it has finished starting.

        Args:
            rpc_client: Client connected through the tunnel.
            max_wait: Seconds to keep retrying; defaults to settings.
            poll_interval: Seconds between attempts; defaults to settings.

        Raises:
            WaitTimeoutError: If no request succeeded in time, chained from
                              the last request's error.

        """
        started = time.monotonic()
        address = self.tunnel.address if self.tunnel else "release server"

        try:
            with console.spinner("Waiting for Tiller server to become ready"):
                retry_until(
                    lambda: rpc_client.list_releases(limit=1),
                    max_wait=self.settings.rpc_wait if max_wait is None else max_wait,
                    interval=self.settings.poll_interval if poll_interval is None else poll_interval,
                )
        except Exception as e:
            timeout = WaitTimeoutError(f"release server at {address}", time.monotonic() - started)
            console.error(str(timeout))
            raise timeout from e

        console.success("Tiller server is ready")

    def close_tunnel(self) -> None:
        """Close the tunnel if one is open."""
        if self.tunnel is None:
            return
        tunnel, self.tunnel = self.tunnel, None
        self.tunnels.close(tunnel.local_port)
