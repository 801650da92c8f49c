"""Identity and RBAC management for the control plane.

This module provides the AccessBootstrapper, which makes sure the service
account Tiller runs as and the roles it is granted exist exactly once,
and removes all of them again on teardown.
"""

from collections.abc import Callable, Iterable

from icecream import ic
from kubernetes.client import ApiException

from tiller_auto import console, manifests
from tiller_auto.exceptions import (
    PartialTeardownError,
    ResourceExistsError,
    ResourceNotFoundError,
    TillerAutoError,
)
from tiller_auto.interfaces import ClusterAPI
from tiller_auto.models import AccessGrant, ClusterIdentity, ControlPlaneInstance, PolicyRule

CONFIG_MANAGER_GRANT = "tiller-config-manager"
OPERATOR_GRANT = "tiller-auto"

_API_GROUPS = ("*", "extensions", "apps")


def config_manager_grant(identity: ClusterIdentity) -> AccessGrant:
    """Grant allowing Tiller to store release data in its own namespace."""
    return AccessGrant(
        name=CONFIG_MANAGER_GRANT,
        namespace=identity.namespace,
        target_namespace=identity.namespace,
        rules=(PolicyRule(api_groups=_API_GROUPS, resources=("configmaps",), verbs=("*",)),),
        subject=identity,
    )


def operator_grant(identity: ClusterIdentity, release_namespace: str) -> AccessGrant:
    """Grant allowing Tiller to manage every resource of the release namespace."""
    return AccessGrant(
        name=OPERATOR_GRANT,
        namespace=identity.namespace,
        target_namespace=release_namespace,
        rules=(PolicyRule(api_groups=_API_GROUPS, resources=("*",), verbs=("*",)),),
        subject=identity,
    )


class AccessBootstrapper:
    """Creates and removes the identity and grants the control plane needs.

    Attributes:
        api: Cluster API used for all reads and writes.

    """

    def __init__(self, api: ClusterAPI) -> None:
        self.api = api

    def ensure_identity(self, identity: ClusterIdentity) -> bool:
        """Create the service account unless it already exists.

        An existing service account is never modified.

        Args:
            identity: The identity to ensure.

        Returns:
            True if the service account was created by this call.

        """
        try:
            self.api.get_service_account(identity.namespace, identity.name)
            ic(identity, "exists")
            return False
        except ResourceNotFoundError:
            pass

        try:
            self.api.create_service_account(identity.namespace, manifests.service_account(identity))
        except ResourceExistsError:
            # Created concurrently between lookup and create
            return False

        console.step(f"Created service account {console.highlight(f'{identity.namespace}/{identity.name}')}")
        return True

    def ensure_grant(self, grant: AccessGrant) -> None:
        """Create the role and role binding of a grant.

        Objects that already exist are left alone. If the binding cannot be
        created, a role created by this call is removed again before the
        error is raised.

        Args:
            grant: The grant to ensure.

        """
        namespace = grant.target_namespace
        role_created = True
        try:
            self.api.create_role(namespace, manifests.role(grant))
        except ResourceExistsError:
            role_created = False

        try:
            self.api.create_role_binding(namespace, manifests.role_binding(grant))
        except ResourceExistsError:
            pass
        except Exception:
            if role_created:
                self._rollback_role(grant)
            raise

        console.step(f"Granted {console.highlight(grant.name)} in namespace {console.highlight(namespace)}")

    def _rollback_role(self, grant: AccessGrant) -> None:
        try:
            self.api.delete_role(grant.target_namespace, grant.name)
        except (TillerAutoError, ApiException) as e:
            console.warning(f"Could not roll back role {grant.target_namespace}/{grant.name}: {e}")

    def teardown(
        self,
        identity: ClusterIdentity,
        grants: Iterable[AccessGrant],
        instance: ControlPlaneInstance,
    ) -> None:
        """Delete the control plane, its identity and all of its grants.

        Every deletion is attempted even if earlier ones fail.

        Args:
            identity: The service account to delete.
            grants: Grants whose role and role binding to delete.
            instance: The control plane deployment and service to delete.

        Raises:
            PartialTeardownError: Listing every deletion that failed.

        """
        deletions: list[tuple[str, Callable[[], None]]] = [
            (
                f"Deployment {instance.namespace}/{instance.deployment_name}",
                lambda: self.api.delete_deployment(instance.namespace, instance.deployment_name),
            ),
            (
                f"Service {instance.namespace}/{instance.service_name}",
                lambda: self.api.delete_service(instance.namespace, instance.service_name),
            ),
            (
                f"ServiceAccount {identity.namespace}/{identity.name}",
                lambda: self.api.delete_service_account(identity.namespace, identity.name),
            ),
        ]
        for grant in grants:
            deletions.append(self._deletion("Role", grant.target_namespace, grant.name, self.api.delete_role))
            deletions.append(
                self._deletion("RoleBinding", grant.target_namespace, grant.binding_name, self.api.delete_role_binding)
            )

        failures: list[tuple[str, Exception]] = []
        for resource, delete in deletions:
            try:
                delete()
            except Exception as e:  # noqa: BLE001
                ic(resource, e)
                failures.append((resource, e))

        if failures:
            raise PartialTeardownError(failures)

    @staticmethod
    def _deletion(
        kind: str,
        namespace: str,
        name: str,
        delete: Callable[[str, str], None],
    ) -> tuple[str, Callable[[], None]]:
        return f"{kind} {namespace}/{name}", lambda: delete(namespace, name)
