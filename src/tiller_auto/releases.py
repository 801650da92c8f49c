"""Release reconciliation.

This module provides the ReleaseReconciler, which installs a chart as a
named release or upgrades the release when the server already knows it.
The server is asked every time; nothing about releases is cached.
"""

from pathlib import Path
from typing import Any

import yaml
from icecream import ic

from tiller_auto import console
from tiller_auto.exceptions import ConfigurationError, ReleaseNotFoundError
from tiller_auto.interfaces import ChartDownloader, ChartLoader, DependencyManager, ReleaseRPCClient
from tiller_auto.models import ChartReference, Release, ReleaseRecord


def is_release_not_found(err: Exception, name: str) -> bool:
    """Whether a release server error means the release does not exist.

    Args:
        err: The error raised by the release server client.
        name: The release that was looked up.

    Returns:
        True for ReleaseNotFoundError or the server's not-found message.

    """
    if isinstance(err, ReleaseNotFoundError):
        return True
    return f'release: "{name}" not found' in str(err)


def serialize_values(values: dict[str, Any] | None) -> str:
    """Serialize value overrides into the YAML payload the server expects.

    Args:
        values: Value overrides; None or empty means no overrides.

    Returns:
        The YAML document, or an empty string when there are no overrides.

    Raises:
        ConfigurationError: If the values are not a mapping or contain
                            objects that cannot be represented in YAML.

    """
    if not values:
        return ""
    if not isinstance(values, dict):
        raise ConfigurationError(f"Value overrides must be a mapping, got {type(values).__name__}")
    try:
        return yaml.safe_dump(values, default_flow_style=False)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Value overrides cannot be serialized: {e}") from e


def _to_record(response: Any, release: Release) -> ReleaseRecord:
    rel = getattr(response, "release", None) or response
    return ReleaseRecord(
        name=getattr(rel, "name", None) or release.name,
        namespace=getattr(rel, "namespace", None) or release.namespace,
        revision=int(getattr(rel, "version", 0) or 0),
        status=str(getattr(rel, "status", "") or ""),
    )


class ReleaseReconciler:
    """Installs, upgrades and deletes releases through the release server.

    Attributes:
        rpc: Client of the release server.
        loader: Reads charts from disk.
        dependencies: Fetches declared chart dependencies.
        downloader: Fetches repository charts.
        archive_dir: Where downloaded charts are stored.

    """

    def __init__(
        self,
        rpc: ReleaseRPCClient,
        loader: ChartLoader,
        dependencies: DependencyManager,
        downloader: ChartDownloader,
        archive_dir: Path,
    ) -> None:
        self.rpc = rpc
        self.loader = loader
        self.dependencies = dependencies
        self.downloader = downloader
        self.archive_dir = archive_dir

    def exists(self, name: str) -> bool:
        """Check whether the server has any revision of a release.

        Args:
            name: The release name.

        Returns:
            True if the release exists, False if the server does not know it.

        Raises:
            Exception: Any other error of the release server, unchanged.

        """
        try:
            self.rpc.release_history(name, max=1)
        except Exception as e:
            if is_release_not_found(e, name):
                return False
            raise
        return True

    def resolve_chart(self, chart: ChartReference) -> str:
        """Return a local path for a chart, downloading repository charts.

        Args:
            chart: A local chart directory or a repository chart name.

        Returns:
            Path of the chart on the local filesystem.

        """
        if chart.local:
            return chart.location

        self.archive_dir.mkdir(parents=True, exist_ok=True)
        with console.spinner(f"Downloading chart {chart.location}"):
            path = self.downloader.download_to(chart.location, chart.version_constraint, self.archive_dir)
        ic(chart, path)
        return str(path)

    def load_chart(self, chart_path: str) -> Any:
        """Load a chart, fetching its declared dependencies first if it has any."""
        chart = self.loader.load(chart_path)

        if getattr(chart, "dependencies", None):
            console.step(f"Updating dependencies of {console.highlight(chart_path)}")
            self.dependencies.update(chart_path)
            chart = self.loader.load(chart_path)

        return chart

    def upsert(self, release: Release) -> ReleaseRecord:
        """Install the release, or upgrade it if it already exists.

        Upgrades replace the previous values entirely with ``release.values``.
        Both paths wait for the release to become stable within
        ``release.timeout`` seconds.

        Args:
            release: The desired release.

        Returns:
            The release as reported by the server.

        Raises:
            ConfigurationError: If the value overrides cannot be serialized.
            Exception: Errors of the chart tooling or release server, unchanged.

        """
        chart_path = self.resolve_chart(release.chart)
        chart = self.load_chart(chart_path)
        values = serialize_values(release.values)

        if self.exists(release.name):
            console.action(f"Upgrading release {console.highlight(release.name)}")
            with console.spinner(f"Waiting for release {release.name} to become ready"):
                response = self.rpc.update_release(
                    release.name,
                    chart_path,
                    values=values,
                    reuse_values=False,
                    wait=True,
                    timeout=release.timeout,
                )
        else:
            console.action(f"Installing release {console.highlight(release.name)}")
            with console.spinner(f"Waiting for release {release.name} to become ready"):
                response = self.rpc.install_release_from_chart(
                    chart,
                    release.namespace,
                    name=release.name,
                    values=values,
                    reuse_name=False,
                    wait=True,
                    timeout=release.timeout,
                )

        record = _to_record(response, release)
        console.summary_panel(
            "Release Deployed",
            {
                "Name": record.name,
                "Namespace": record.namespace,
                "Revision": str(record.revision),
                "Status": record.status,
            },
        )
        return record

    def delete(self, name: str, purge: bool = False) -> Any:
        """Delete a release.

        Args:
            name: The release name.
            purge: Also remove the release history so the name can be reused.

        Returns:
            The server's response, unchanged.

        """
        response = self.rpc.delete_release(name, purge=purge)
        console.success(f"Deleted release {console.highlight(name)}")
        return response
