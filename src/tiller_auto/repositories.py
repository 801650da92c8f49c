"""Chart repository registry and index synchronisation.

This module manages the local helm home layout, reads the repository
registry file and refreshes every repository index concurrently.
"""

from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path

import requests
import yaml
from icecream import ic

from tiller_auto import console
from tiller_auto.exceptions import ConfigurationError
from tiller_auto.models import RepositoryEntry, SyncOutcome

STABLE_REPOSITORY_NAME = "stable"
STABLE_REPOSITORY_URL = "https://charts.helm.sh/stable"
STABLE_REPOSITORY_CACHE = "repository/cache/stable-index.yaml"

_INDEX_TIMEOUT = 60


@dataclass(frozen=True, slots=True)
class HelmHome:
    """Paths of the local helm home.

    Layout::

        <root>/repository/repositories.yaml
        <root>/repository/cache/<name>-index.yaml
        <root>/archive/
        <root>/cache/

    """

    root: Path

    @property
    def repository_dir(self) -> Path:
        return self.root / "repository"

    @property
    def repository_file(self) -> Path:
        return self.repository_dir / "repositories.yaml"

    @property
    def repository_cache(self) -> Path:
        return self.repository_dir / "cache"

    @property
    def archive(self) -> Path:
        return self.root / "archive"

    @property
    def cache(self) -> Path:
        return self.root / "cache"

    def cache_path(self, entry: RepositoryEntry) -> Path:
        """Absolute path of a repository's cached index."""
        path = Path(entry.cache)
        return path if path.is_absolute() else self.root / path

    def ensure_layout(self) -> bool:
        """Create the directory layout and the default registry if missing.

        Returns:
            True if the default registry file was written.

        Raises:
            ConfigurationError: If the directories or file cannot be created.

        """
        try:
            for directory in (self.repository_cache, self.archive, self.cache):
                directory.mkdir(parents=True, exist_ok=True)

            if self.repository_file.exists():
                return False

            default = {
                "apiVersion": "v1",
                "repositories": [
                    {
                        "caFile": "",
                        "cache": STABLE_REPOSITORY_CACHE,
                        "certFile": "",
                        "keyFile": "",
                        "name": STABLE_REPOSITORY_NAME,
                        "url": STABLE_REPOSITORY_URL,
                    }
                ],
            }
            with self.repository_file.open("w") as f:
                yaml.safe_dump(default, f, default_flow_style=False)
        except OSError as e:
            raise ConfigurationError(f"Cannot prepare helm home {self.root}: {e}") from e

        console.step(f"Wrote default repository file {console.highlight(str(self.repository_file))}")
        return True

    def missing_caches(self, entries: list[RepositoryEntry]) -> list[RepositoryEntry]:
        """Entries whose index has never been downloaded."""
        return [entry for entry in entries if not self.cache_path(entry).exists()]


def load_repositories_file(path: Path) -> list[RepositoryEntry]:
    """Read the repository registry.

    Args:
        path: Path of repositories.yaml.

    Returns:
        The configured repositories in file order.

    Raises:
        ConfigurationError: If the file is missing, unreadable or malformed.

    """
    try:
        with path.open() as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read repository file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in repository file {path}: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get("repositories") or [], list):
        raise ConfigurationError(f"Repository file {path} has no repositories list")

    entries: list[RepositoryEntry] = []
    for item in data.get("repositories") or []:
        if not isinstance(item, dict) or not item.get("name") or not item.get("url"):
            raise ConfigurationError(f"Repository file {path} contains an entry without name or url: {item!r}")
        name = str(item["name"])
        entries.append(
            RepositoryEntry(
                name=name,
                url=str(item["url"]),
                cache=str(item.get("cache") or f"repository/cache/{name}-index.yaml"),
            )
        )

    ic(entries)
    return entries


def download_index_file(entry: RepositoryEntry, home: HelmHome) -> Path:
    """Download a repository's index.yaml into its cache path.

    The cache file is only replaced once a complete, parseable index has
    been received.

    Args:
        entry: The repository to refresh.
        home: The helm home the cache path is relative to.

    Returns:
        Path of the refreshed cache file.

    Raises:
        requests.RequestException: If the index cannot be fetched.
        ValueError: If the response is not a chart repository index.

    """
    url = f"{entry.url.rstrip('/')}/index.yaml"
    ic(url)

    with requests.get(url, timeout=_INDEX_TIMEOUT) as r:
        r.raise_for_status()
        content = r.text

    try:
        index = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ValueError(f"{url} is not valid YAML: {e}") from e
    if not isinstance(index, dict) or "entries" not in index:
        raise ValueError(f"{url} is not a chart repository index")

    target = home.cache_path(entry)
    target.parent.mkdir(parents=True, exist_ok=True)
    partial = target.with_name(target.name + ".part")
    partial.write_text(content)
    partial.replace(target)
    return target


IndexFetcher = Callable[[RepositoryEntry, HelmHome], object]


class RepositoryIndexSyncer:
    """Refreshes all configured repository indexes concurrently.

    Attributes:
        home: The helm home holding the registry and caches.
        fetch: Callable refreshing one repository's index.

    """

    def __init__(self, home: HelmHome, fetch: IndexFetcher = download_index_file) -> None:
        self.home = home
        self.fetch = fetch

    def sync_all(self, repository_file: Path | None = None) -> list[SyncOutcome]:
        """Refresh every repository in the registry.

        One task runs per repository and all of them are awaited; a failing
        repository is logged and reported in its outcome without affecting
        the others.

        Args:
            repository_file: Registry to read; defaults to the home's.

        Returns:
            One outcome per repository, in registry order.

        Raises:
            ConfigurationError: If the registry itself cannot be read.

        """
        entries = load_repositories_file(repository_file or self.home.repository_file)
        if not entries:
            return []

        with ThreadPoolExecutor(max_workers=len(entries), thread_name_prefix="repo-sync") as pool:
            futures = [pool.submit(self.fetch, entry, self.home) for entry in entries]

            with console.create_task_progress() as progress:
                task = progress.add_task("Updating chart repositories", total=len(futures))
                for _ in as_completed(futures):
                    progress.advance(task)

        outcomes: list[SyncOutcome] = []
        for entry, future in zip(entries, futures):
            error = future.exception()
            if error is not None:
                console.error(f"Unable to download index of repository {entry.name} ({entry.url}): {error}")
            outcomes.append(SyncOutcome(name=entry.name, url=entry.url, error=error))

        synced = sum(outcome.ok for outcome in outcomes)
        console.info(f"Updated {synced}/{len(outcomes)} chart repositories")
        return outcomes
