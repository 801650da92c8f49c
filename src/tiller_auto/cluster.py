"""Kubernetes cluster interaction.

This module provides the Cluster class, the ClusterAPI implementation
backed by the official kubernetes client. API errors are translated into
tiller-auto exceptions at this boundary.
"""

from collections.abc import Callable
from typing import TypeVar

import click
import questionary
from icecream import ic
from kubernetes import client, config
from kubernetes.client import ApiException
from kubernetes.config.config_exception import ConfigException
from questionary import Style
from urllib3.exceptions import MaxRetryError

from tiller_auto import console
from tiller_auto.exceptions import ClusterConnectionError, ResourceExistsError, ResourceNotFoundError

T = TypeVar("T")

# Context picker styling; ANSI 256 colors for broad terminal compatibility
_PROMPT_STYLE = Style(
    [
        ("qmark", "fg:#af87ff bold"),
        ("question", "bold"),
        ("answer", "fg:#ff87d7 bold"),
        ("pointer", "fg:#ff87d7 bold"),
        ("highlighted", "fg:#1c1c1c bg:#ff87d7 bold"),
        ("instruction", "fg:#6c6c6c italic"),
    ]
)
_POINTER = "❯ "
_QMARK = "? "


def _call(kind: str, namespace: str, name: str, request: Callable[[], T]) -> T:
    """Run an API request, translating errors.

    Raises:
        ResourceNotFoundError: On HTTP 404.
        ResourceExistsError: On HTTP 409.
        ClusterConnectionError: If the cluster cannot be reached.
        ApiException: Any other API error, unchanged.

    """
    try:
        return request()
    except ApiException as e:
        if e.status == 404:
            raise ResourceNotFoundError(kind, namespace, name) from e
        if e.status == 409:
            raise ResourceExistsError(kind, namespace, name) from e
        raise
    except MaxRetryError as e:
        raise ClusterConnectionError(f"Failed to connect to the Kubernetes cluster: {e.reason}") from e


class Cluster:
    """Manages Kubernetes cluster interactions for the control plane.

    Implements the ClusterAPI interface for service accounts, roles, role
    bindings, deployments and services.

    Attributes:
        context: The active Kubernetes context name.
        core_v1: CoreV1Api client.
        apps_v1: AppsV1Api client.
        rbac_v1: RbacAuthorizationV1Api client.

    """

    def __init__(self, *, select_context: bool, context: str | None = None) -> None:
        """Initialize Cluster with context selection.

        Args:
            select_context: If True, prompt user to select a context.
                           Must be passed as a keyword argument.
            context: Context to use when not prompting; None for the
                     current context.

        """
        self.context: str = context or self._set_context(select_context=select_context)
        config.load_kube_config(context=self.context)
        self.core_v1 = client.CoreV1Api()
        self.apps_v1 = client.AppsV1Api()
        self.rbac_v1 = client.RbacAuthorizationV1Api()

    @staticmethod
    def _set_context(*, select_context: bool) -> str:
        """Set the Kubernetes context to use.

        Args:
            select_context: If True, prompt user to select a context.
                           Must be passed as a keyword argument.

        Returns:
            The selected or current context name.

        Raises:
            ClusterConnectionError: If kubeconfig is invalid or missing.
            click.Abort: If user cancels context selection.

        """
        try:
            contexts, current_context = config.list_kube_config_contexts()
        except ConfigException as e:
            raise ClusterConnectionError(f"Invalid or missing kubeconfig: {e}") from e
        if select_context:
            context_names: list[str] = [context["name"] for context in contexts]
            context: str | None = questionary.select(
                "Select context to work with",
                choices=context_names,
                style=_PROMPT_STYLE,
                pointer=_POINTER,
                qmark=_QMARK,
            ).ask()
            if context is None:
                console.warning("Context selection cancelled.")
                raise click.Abort()
        else:
            context = str(current_context["name"])
        console.action(f"Working with {console.highlight(context)} cluster")
        return context

    def __repr__(self) -> str:
        """Return a detailed string representation for debugging."""
        return f"Cluster(context={self.context!r})"

    def get_deployment(self, namespace: str, name: str) -> client.V1Deployment:
        return _call(
            "Deployment", namespace, name, lambda: self.apps_v1.read_namespaced_deployment(name, namespace)
        )

    def create_deployment(self, namespace: str, body: client.V1Deployment) -> client.V1Deployment:
        ic(body.metadata.name)
        return _call(
            "Deployment",
            namespace,
            body.metadata.name,
            lambda: self.apps_v1.create_namespaced_deployment(namespace, body),
        )

    def replace_deployment(self, namespace: str, name: str, body: client.V1Deployment) -> client.V1Deployment:
        return _call(
            "Deployment", namespace, name, lambda: self.apps_v1.replace_namespaced_deployment(name, namespace, body)
        )

    def delete_deployment(self, namespace: str, name: str) -> None:
        _call("Deployment", namespace, name, lambda: self.apps_v1.delete_namespaced_deployment(name, namespace))

    def create_service(self, namespace: str, body: client.V1Service) -> client.V1Service:
        return _call(
            "Service",
            namespace,
            body.metadata.name,
            lambda: self.core_v1.create_namespaced_service(namespace, body),
        )

    def delete_service(self, namespace: str, name: str) -> None:
        _call("Service", namespace, name, lambda: self.core_v1.delete_namespaced_service(name, namespace))

    def get_service_account(self, namespace: str, name: str) -> client.V1ServiceAccount:
        return _call(
            "ServiceAccount",
            namespace,
            name,
            lambda: self.core_v1.read_namespaced_service_account(name, namespace),
        )

    def create_service_account(self, namespace: str, body: client.V1ServiceAccount) -> client.V1ServiceAccount:
        return _call(
            "ServiceAccount",
            namespace,
            body.metadata.name,
            lambda: self.core_v1.create_namespaced_service_account(namespace, body),
        )

    def delete_service_account(self, namespace: str, name: str) -> None:
        _call(
            "ServiceAccount",
            namespace,
            name,
            lambda: self.core_v1.delete_namespaced_service_account(name, namespace),
        )

    def create_role(self, namespace: str, body: client.V1Role) -> client.V1Role:
        return _call(
            "Role", namespace, body.metadata.name, lambda: self.rbac_v1.create_namespaced_role(namespace, body)
        )

    def delete_role(self, namespace: str, name: str) -> None:
        _call("Role", namespace, name, lambda: self.rbac_v1.delete_namespaced_role(name, namespace))

    def create_role_binding(self, namespace: str, body: client.V1RoleBinding) -> client.V1RoleBinding:
        return _call(
            "RoleBinding",
            namespace,
            body.metadata.name,
            lambda: self.rbac_v1.create_namespaced_role_binding(namespace, body),
        )

    def delete_role_binding(self, namespace: str, name: str) -> None:
        _call("RoleBinding", namespace, name, lambda: self.rbac_v1.delete_namespaced_role_binding(name, namespace))
