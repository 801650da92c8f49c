"""Kubernetes object bodies for the control plane and its grants."""

from kubernetes import client

from tiller_auto.models import AccessGrant, ClusterIdentity, ControlPlaneInstance, PolicyRule

TILLER_PORT = 44134
TILLER_PROBE_PORT = 44135

_LABELS = {"app": "helm", "name": "tiller"}
_CONTAINER_NAME = "tiller"


def _env(instance: ControlPlaneInstance) -> list[client.V1EnvVar]:
    return [
        client.V1EnvVar(name="TILLER_NAMESPACE", value=instance.namespace),
        client.V1EnvVar(name="TILLER_HISTORY_MAX", value=str(instance.max_history)),
    ]


def _probe(path: str) -> client.V1Probe:
    return client.V1Probe(
        http_get=client.V1HTTPGetAction(path=path, port=TILLER_PROBE_PORT),
        initial_delay_seconds=1,
        timeout_seconds=1,
    )


def service_account(identity: ClusterIdentity) -> client.V1ServiceAccount:
    """Build the service account body for an identity."""
    return client.V1ServiceAccount(
        metadata=client.V1ObjectMeta(name=identity.name, namespace=identity.namespace),
    )


def tiller_deployment(instance: ControlPlaneInstance) -> client.V1Deployment:
    """Build the Tiller deployment body.

    Args:
        instance: The control plane to describe.

    Returns:
        A single-replica deployment running the Tiller image.

    """
    container = client.V1Container(
        name=_CONTAINER_NAME,
        image=instance.image,
        image_pull_policy="IfNotPresent",
        ports=[
            client.V1ContainerPort(container_port=TILLER_PORT, name="tiller"),
            client.V1ContainerPort(container_port=TILLER_PROBE_PORT, name="http"),
        ],
        env=_env(instance),
        liveness_probe=_probe("/liveness"),
        readiness_probe=_probe("/readiness"),
    )
    return client.V1Deployment(
        api_version="apps/v1",
        kind="Deployment",
        metadata=client.V1ObjectMeta(name=instance.deployment_name, namespace=instance.namespace, labels=_LABELS),
        spec=client.V1DeploymentSpec(
            replicas=1,
            selector=client.V1LabelSelector(match_labels=_LABELS),
            template=client.V1PodTemplateSpec(
                metadata=client.V1ObjectMeta(labels=_LABELS),
                spec=client.V1PodSpec(
                    service_account_name=instance.service_account,
                    automount_service_account_token=True,
                    containers=[container],
                ),
            ),
        ),
    )


def tiller_service(instance: ControlPlaneInstance) -> client.V1Service:
    """Build the ClusterIP service the tunnel connects to."""
    return client.V1Service(
        api_version="v1",
        kind="Service",
        metadata=client.V1ObjectMeta(name=instance.service_name, namespace=instance.namespace, labels=_LABELS),
        spec=client.V1ServiceSpec(
            type="ClusterIP",
            selector=_LABELS,
            ports=[client.V1ServicePort(name="tiller", port=TILLER_PORT, target_port="tiller")],
        ),
    )


def apply_upgrade(deployment: client.V1Deployment, instance: ControlPlaneInstance) -> client.V1Deployment:
    """Update an existing Tiller deployment in place.

    Sets the image, the service account and the history limit; everything
    else is left as found on the cluster.

    Returns:
        The same deployment object, modified.

    """
    pod_spec = deployment.spec.template.spec
    pod_spec.service_account_name = instance.service_account

    for container in pod_spec.containers:
        if container.name != _CONTAINER_NAME:
            continue
        container.image = instance.image
        env = [var for var in container.env or [] if var.name not in ("TILLER_NAMESPACE", "TILLER_HISTORY_MAX")]
        container.env = env + _env(instance)

    return deployment


def _rule(rule: PolicyRule) -> client.V1PolicyRule:
    return client.V1PolicyRule(
        api_groups=list(rule.api_groups),
        resources=list(rule.resources),
        verbs=list(rule.verbs),
    )


def role(grant: AccessGrant) -> client.V1Role:
    """Build the role body of a grant."""
    return client.V1Role(
        metadata=client.V1ObjectMeta(name=grant.name, namespace=grant.target_namespace),
        rules=[_rule(rule) for rule in grant.rules],
    )


def role_binding(grant: AccessGrant) -> client.V1RoleBinding:
    """Build the role binding body of a grant, bound to its subject."""
    return client.V1RoleBinding(
        metadata=client.V1ObjectMeta(name=grant.binding_name, namespace=grant.target_namespace),
        subjects=[
            client.RbacV1Subject(
                kind="ServiceAccount",
                name=grant.subject.name,
                namespace=grant.subject.namespace,
            )
        ],
        role_ref=client.V1RoleRef(api_group="rbac.authorization.k8s.io", kind="Role", name=grant.name),
    )
