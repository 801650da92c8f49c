"""Custom exceptions for tiller-auto.

This module defines the exception hierarchy used throughout the package
so callers can branch on expected conditions (a missing remote object)
and report fatal ones (timeouts, partial teardown) with full context.
"""

from collections.abc import Sequence


class TillerAutoError(Exception):
    """Base exception for all tiller-auto errors.

    All custom exceptions in this package inherit from this class,
    allowing callers to catch all tiller-auto errors with a single
    except clause if desired.
    """

    pass


class ResourceNotFoundError(TillerAutoError):
    """Raised when a cluster object does not exist.

    This is an expected condition: components branch on it instead of
    reporting it as a failure.

    Attributes:
        kind: The resource kind (e.g. 'Deployment').
        namespace: The namespace that was searched.
        name: The resource name.

    """

    def __init__(self, kind: str, namespace: str, name: str) -> None:
        self.kind = kind
        self.namespace = namespace
        self.name = name
        super().__init__(f"{kind} {namespace}/{name} not found")


class ResourceExistsError(TillerAutoError):
    """Raised when creating a cluster object that already exists."""

    def __init__(self, kind: str, namespace: str, name: str) -> None:
        self.kind = kind
        self.namespace = namespace
        self.name = name
        super().__init__(f"{kind} {namespace}/{name} already exists")


class ClusterConnectionError(TillerAutoError):
    """Raised when connection to the Kubernetes cluster fails.

    This can occur when:
    - The kubeconfig is invalid or missing
    - The cluster is unreachable
    - Authentication fails
    """

    pass


class ConfigurationError(TillerAutoError):
    """Raised when local configuration cannot be used.

    This can occur when:
    - A settings or repository file is missing or unreadable
    - A file is not valid YAML or has the wrong shape
    - Release value overrides cannot be serialized
    """

    pass


class WaitTimeoutError(TillerAutoError):
    """Raised when a bounded wait expires before its condition was met.

    Attributes:
        resource: Description of what was being waited on.
        elapsed: Seconds spent waiting.

    """

    def __init__(self, resource: str, elapsed: float) -> None:
        self.resource = resource
        self.elapsed = elapsed
        super().__init__(f"Timed out after {elapsed:.1f}s waiting for {resource}")


class ReleaseRPCError(TillerAutoError):
    """Base class for errors raised by release server clients.

    Implementations of the release RPC client raise subclasses of this for
    transport and server failures. They are propagated verbatim.
    """

    pass


class ReleaseNotFoundError(ReleaseRPCError):
    """Raised by release server clients when a release does not exist."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f'release: "{name}" not found')


class PartialTeardownError(TillerAutoError):
    """Raised when one or more deletions failed during teardown.

    Every deletion is attempted; this error carries all of the failures.

    Attributes:
        failures: (resource description, error) pairs in attempt order.

    """

    def __init__(self, failures: Sequence[tuple[str, Exception]]) -> None:
        self.failures = list(failures)
        lines = [f"{resource}: {err}" for resource, err in self.failures]
        super().__init__(f"{len(self.failures)} resource(s) could not be deleted:\n" + "\n".join(lines))
