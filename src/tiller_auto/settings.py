"""Configuration for tiller-auto.

Settings are an explicit, immutable value handed to each component. They
are built from defaults, an optional YAML file and ``TILLER_AUTO_*``
environment variables, in that order of precedence (lowest first).
"""

import os
import re
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml
from icecream import ic

from tiller_auto.exceptions import ConfigurationError

# Semantic version pattern for validation
_SEMVER_PATTERN = re.compile(r"^\d+\.\d+\.\d+(?:-[\w.]+)?(?:\+[\w.]+)?$")

_ENV_PREFIX = "TILLER_AUTO_"

TILLER_IMAGE_REPOSITORY = "gcr.io/kubernetes-helm/tiller"


def normalize_version(version: str) -> str:
    """Normalize a version string by removing a leading 'v' prefix if present.

    Args:
        version: The version string (e.g., 'v2.9.1' or '2.9.1').

    Returns:
        The version string without leading 'v' (e.g., '2.9.1').

    Raises:
        ValueError: If version is empty or doesn't match semantic versioning.

    """
    if not version:
        raise ValueError("Version string cannot be None or empty")

    # Remove only a single leading 'v' if present
    normalized = version[1:] if version.startswith("v") else version

    if not normalized:
        raise ValueError(f"Invalid version string: '{version}' results in empty version after normalization")

    if not _SEMVER_PATTERN.match(normalized):
        raise ValueError(f"Invalid version format: '{normalized}' does not match semantic versioning pattern")

    return normalized


def default_home() -> Path:
    """Return the XDG-compliant data directory for tiller-auto."""
    xdg_data_home = os.environ.get("XDG_DATA_HOME")
    base_path = Path(xdg_data_home) if xdg_data_home else Path.home() / ".local" / "share"
    return base_path / "tiller-auto"


@dataclass(frozen=True, slots=True)
class Settings:
    """Cluster and client settings shared by all components.

    Attributes:
        tiller_namespace: Namespace the control plane runs in.
        release_namespace: Namespace releases are installed into.
        kube_context: Kubernetes context to use; None for the current one.
        tiller_version: Version of the Tiller image.
        max_history: Release revisions kept by Tiller.
        tiller_wait: Seconds to wait for the deployment to become ready.
        tunnel_wait: Seconds to keep retrying the tunnel.
        rpc_wait: Seconds to wait for the release server to answer.
        poll_interval: Seconds between attempts of every wait loop.
        deployment_timeout: Seconds a release may take to become stable.
        home: Local data directory; the helm home is ``home / 'helm'``.
        debug: Print icecream debug traces.

    """

    tiller_namespace: str = "kube-system"
    release_namespace: str = "default"
    kube_context: str | None = None
    tiller_version: str = "2.9.1"
    max_history: int = 10
    tiller_wait: float = 120.0
    tunnel_wait: float = 120.0
    rpc_wait: float = 120.0
    poll_interval: float = 5.0
    deployment_timeout: int = 600
    home: Path = field(default_factory=default_home)
    debug: bool = False

    @property
    def image(self) -> str:
        """The Tiller container image for the configured version."""
        return f"{TILLER_IMAGE_REPOSITORY}:v{normalize_version(self.tiller_version)}"

    @property
    def helm_home(self) -> Path:
        """Root of the local chart repository and archive layout."""
        return self.home / "helm"


def _coerce(name: str, value: Any) -> Any:
    """Convert a raw file or environment value to the field's type."""
    kind = {f.name: f.type for f in fields(Settings)}[name]
    try:
        if kind is float:
            return float(value)
        if kind is int:
            return int(value)
        if kind is bool:
            if isinstance(value, str):
                return value.strip().lower() in ("1", "true", "yes", "on")
            return bool(value)
        if kind is Path:
            return Path(value).expanduser()
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid value for {name}: {value!r}") from e
    return None if value is None else str(value)


def _read_settings_file(path: Path) -> dict[str, Any]:
    """Read a YAML settings file into a mapping of field overrides.

    Raises:
        ConfigurationError: If the file cannot be read or parsed.

    """
    try:
        with path.open() as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read settings file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in settings file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Settings file {path} must contain a mapping")
    return data


def load_settings(path: str | Path | None = None, env: dict[str, str] | None = None) -> Settings:
    """Build Settings from defaults, an optional YAML file and the environment.

    Keys in the file use the field names (``tiller_namespace``); environment
    variables use the upper-cased field names with a ``TILLER_AUTO_`` prefix
    (``TILLER_AUTO_TILLER_NAMESPACE``).

    Args:
        path: Optional settings file.
        env: Environment to read; defaults to ``os.environ``.

    Returns:
        The resulting Settings.

    Raises:
        ConfigurationError: If the file is unusable, contains unknown keys,
                            or a value cannot be converted.

    """
    env = os.environ if env is None else env
    known = {f.name for f in fields(Settings)}
    overrides: dict[str, Any] = {}

    if path is not None:
        for key, value in _read_settings_file(Path(path)).items():
            if key not in known:
                raise ConfigurationError(f"Unknown setting '{key}' in {path}")
            overrides[key] = _coerce(key, value)

    for key in known:
        raw = env.get(f"{_ENV_PREFIX}{key.upper()}")
        if raw is not None:
            overrides[key] = _coerce(key, raw)

    ic(overrides)
    settings = replace(Settings(), **overrides)

    try:
        normalize_version(settings.tiller_version)
    except ValueError as e:
        raise ConfigurationError(str(e)) from e

    return settings
