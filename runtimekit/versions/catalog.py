"""
Upstream release catalogs.

A Catalog wraps one runtime's release listing: it fetches it through the
FetchClient (which caches it on disk), orders it and resolves version
tokens against it.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Union

from runtimekit.core.download import CatalogPayload, FetchClient
from runtimekit.core.exceptions import VersionNotFound
from runtimekit.runtimes.base import CatalogEntry, RuntimePlugin
from runtimekit.versions.tokens import TokenKind, VersionId, VersionSpec, parse_token

logger = logging.getLogger(__name__)


@dataclass
class CatalogListing:
    """Catalog entries, newest first, with freshness information."""

    entries: List[CatalogEntry]
    stale: bool
    fetched_at: datetime

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)


class Catalog:
    """
    Release catalog of one runtime.

    Example:
        >>> catalog = Catalog(get_plugin("node"), client)
        >>> catalog.resolve("18")
        VersionId('node', '18.20.4')
        >>> [str(e.version) for e in catalog.list("lts").entries[:2]]
        ['20.18.0', '20.17.0']
    """

    def __init__(
        self, plugin: RuntimePlugin, client: FetchClient, max_age_seconds: float = 24 * 3600
    ):
        self.plugin = plugin
        self.client = client
        self.max_age_seconds = max_age_seconds
        self._entries: Optional[List[CatalogEntry]] = None
        self._payload: Optional[CatalogPayload] = None

    def _load(self, refresh: bool = False) -> None:
        if self._entries is not None and not refresh:
            return
        max_age = 0 if refresh else self.max_age_seconds
        entries, payload = self.plugin.fetch_catalog(self.client, max_age)
        self._entries = sorted(entries, key=lambda e: e.version, reverse=True)
        self._payload = payload
        if payload.stale:
            logger.warning(
                f"{self.plugin.display_name} release list may be out of date "
                f"(cached {payload.fetched_at.isoformat(timespec='seconds')})"
            )

    def list(self, channel: Optional[str] = None) -> CatalogListing:
        """
        List available releases, newest first.

        Args:
            channel: Restrict to a channel ('lts', 'stable'); None for all

        Returns:
            CatalogListing (stale=True if served from cache while offline)
        """
        self._load()
        entries = self._entries
        if channel:
            entries = [e for e in entries if channel.lower() in e.channels]
        return CatalogListing(
            entries=list(entries),
            stale=self._payload.stale,
            fetched_at=self._payload.fetched_at,
        )

    def _select(self, spec: VersionSpec) -> Optional[CatalogEntry]:
        # Entries are sorted newest first, so the first match is the highest
        if spec.kind is TokenKind.SYMBOLIC:
            if spec.raw == "latest":
                candidates = [e for e in self._entries if not e.version.is_prerelease]
                candidates = candidates or self._entries
            else:
                candidates = [e for e in self._entries if spec.raw in e.channels]
            return candidates[0] if candidates else None

        for entry in self._entries:
            if spec.matches(entry.version):
                return entry
        return None

    def find(self, token: Union[str, VersionSpec]) -> CatalogEntry:
        """
        Resolve a token to a catalog entry.

        A miss against a catalog served from the local cache triggers one
        forced refresh before giving up.

        Raises:
            VersionNotFound: If no release matches
            NetworkUnavailable: If offline without a cached catalog
        """
        spec = token if isinstance(token, VersionSpec) else parse_token(self.plugin, token)
        if spec.kind is TokenKind.ALIAS:
            raise VersionNotFound(self.plugin.name, spec.raw, "not a version or channel")

        self._load()
        entry = self._select(spec)

        if entry is None and self._payload.from_cache and not self._payload.stale:
            logger.debug(f"'{spec.raw}' not in cached {self.plugin.name} catalog, refreshing")
            self._load(refresh=True)
            entry = self._select(spec)

        if entry is None:
            raise VersionNotFound(self.plugin.name, spec.raw)

        logger.debug(f"Resolved {self.plugin.name} '{spec.raw}' -> {entry.version}")
        return entry

    def resolve(self, token: Union[str, VersionSpec]) -> VersionId:
        return self.find(token).version


__all__ = ["Catalog", "CatalogListing"]
