"""
Precedence-based version selection.

For one runtime, the version in effect is chosen from (highest first):

1. An explicit argument
2. The RUNTIMEKIT_<RUNTIME>_VERSION environment variable
3. The nearest project pin file, searched upward from the working directory
4. The registry's active pointer

Sources 2-4 can be reordered through configuration. Whatever token wins is
then looked up once in the alias table and resolved against installed
versions (or the release catalog for symbolic tokens).
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Mapping, Optional, Sequence, Tuple

from runtimekit.core.config import RESOLUTION_SOURCES
from runtimekit.core.exceptions import (
    NoVersionSelected,
    ResolutionError,
    VersionNotInstalled,
)
from runtimekit.core.registry import InstalledVersion, VersionRegistry
from runtimekit.runtimes.base import RuntimePlugin
from runtimekit.versions.catalog import Catalog
from runtimekit.versions.tokens import TokenKind, VersionId, VersionSpec, parse_token

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProjectPin:
    """A pin file and the token on its first line."""

    path: Path
    token: str


@dataclass(frozen=True)
class Resolution:
    """
    Result of resolving the version in effect.

    Attributes:
        version: Installed version string
        token: Token that was selected (before alias lookup)
        source: 'explicit', 'environment', 'project' or 'global'
        origin: Where the token came from (variable name, pin path, registry file)
        alias: Alias name if the token was an alias
        record: Registry record of the installed version
    """

    version: str
    token: str
    source: str
    origin: Optional[str]
    alias: Optional[str]
    record: InstalledVersion

    def describe(self) -> str:
        text = self.source if self.origin is None else f"{self.source} ({self.origin})"
        if self.alias:
            text += f" via alias '{self.alias}'"
        return text


def read_pin_file(path: Path) -> str:
    """
    Read the token from a pin file.

    Raises:
        ResolutionError: If the file is unreadable or its first line is empty
    """
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except (OSError, UnicodeDecodeError) as e:
        raise ResolutionError(f"Cannot read pin file {path}: {e}") from e
    token = lines[0].strip() if lines else ""
    if not token:
        raise ResolutionError(f"Pin file {path} is empty")
    return token


def find_pin(
    plugin: RuntimePlugin, start: Path, ceiling: Optional[Path] = None
) -> Optional[ProjectPin]:
    """
    Find the nearest pin file, walking up from start.

    The walk stops at the filesystem root or after checking ceiling.

    Args:
        plugin: Runtime plugin (supplies pin file names)
        start: Directory to start from
        ceiling: Last directory to check (None for the filesystem root)

    Returns:
        ProjectPin, or None if no pin file was found

    Raises:
        ResolutionError: If the nearest pin file is malformed
    """
    directory = Path(start).resolve()
    ceiling = Path(ceiling).resolve() if ceiling is not None else None

    for candidate in (directory, *directory.parents):
        for name in plugin.pin_files:
            pin_path = candidate / name
            if pin_path.is_file():
                return ProjectPin(pin_path, read_pin_file(pin_path))
        if ceiling is not None and candidate == ceiling:
            break
    return None


class Resolver:
    """
    Resolves the version in effect for one runtime.

    Example:
        >>> resolver = Resolver(plugin, registry, catalog)
        >>> resolution = resolver.resolve()
        >>> print(resolution.version, resolution.describe())
        20.10.0 project (/home/user/app/.node-version)
    """

    def __init__(
        self,
        plugin: RuntimePlugin,
        registry: VersionRegistry,
        catalog: Optional[Catalog] = None,
        order: Sequence[str] = RESOLUTION_SOURCES,
        ceiling: Optional[Path] = None,
        cwd: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.plugin = plugin
        self.registry = registry
        self.catalog = catalog
        self.order = list(order)
        self.ceiling = ceiling
        self.cwd = Path(cwd) if cwd is not None else None
        self.environ = environ if environ is not None else os.environ

    # -------------------------------------------------------------------------
    # Token selection
    # -------------------------------------------------------------------------

    def _from_environment(self) -> Optional[Tuple[str, str, str]]:
        value = self.environ.get(self.plugin.env_var, "").strip()
        if value:
            return value, "environment", self.plugin.env_var
        return None

    def _from_project(self) -> Optional[Tuple[str, str, str]]:
        pin = find_pin(self.plugin, self.cwd or Path.cwd(), self.ceiling)
        if pin is not None:
            return pin.token, "project", str(pin.path)
        return None

    def _from_global(self) -> Optional[Tuple[str, str, str]]:
        active = self.registry.active()
        if active:
            return active, "global", str(self.registry.registry_path)
        return None

    def select(self, explicit: Optional[str] = None) -> Optional[Tuple[str, str, Optional[str]]]:
        """
        Pick the winning token without resolving it.

        Returns:
            Tuple of (token, source, origin), or None if nothing is set
        """
        if explicit is not None and explicit.strip():
            return explicit.strip(), "explicit", None

        lookups = {
            "environment": self._from_environment,
            "project": self._from_project,
            "global": self._from_global,
        }
        for source in self.order:
            selected = lookups[source]()
            if selected is not None:
                logger.debug(f"{self.plugin.name} token '{selected[0]}' from {source}")
                return selected
        return None

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    def _installed(self) -> List[Tuple[VersionId, InstalledVersion]]:
        result = []
        for record in self.registry.installed():
            try:
                result.append((self.plugin.parse_version(record.version), record))
            except ValueError:
                logger.warning(f"Ignoring unparseable {self.plugin.name} version {record.version!r}")
        return result

    def resolve(self, explicit: Optional[str] = None) -> Resolution:
        """
        Resolve the installed version in effect.

        Args:
            explicit: Token given on the command line (wins over everything)

        Returns:
            Resolution

        Raises:
            NoVersionSelected: If no source provides a token
            ResolutionError: For alias chains, malformed pins or invalid tokens
            VersionNotInstalled: If the selected version is not installed
        """
        selected = self.select(explicit)
        if selected is None:
            raise NoVersionSelected(self.plugin.name)
        token, source, origin = selected

        try:
            spec = parse_token(self.plugin, token)
        except ResolutionError as e:
            if source == "project":
                raise ResolutionError(f"Malformed pin file {origin}: {e}") from e
            raise

        via = source if origin is None else f"{source} {origin}"
        alias = None
        if spec.kind is TokenKind.ALIAS:
            alias = spec.raw
            spec = self._follow_alias(alias)
            via = f"{via} via alias '{alias}'"

        record = self._match_installed(spec, via)
        logger.debug(f"Resolved {self.plugin.name} {record.version} from {via}")
        return Resolution(
            version=record.version,
            token=token,
            source=source,
            origin=origin,
            alias=alias,
            record=record,
        )

    def _follow_alias(self, name: str) -> VersionSpec:
        """Look an alias up exactly one level deep."""
        aliases = self.registry.aliases()
        if name not in aliases:
            raise ResolutionError(f"Unknown {self.plugin.name} version or alias '{name}'")

        target = aliases[name]
        if target in aliases:
            raise ResolutionError(
                f"Alias '{name}' points to alias '{target}'; alias chains are not allowed"
            )

        target_spec = parse_token(self.plugin, target)
        if target_spec.kind is TokenKind.ALIAS:
            raise ResolutionError(f"Alias '{name}' has an invalid target '{target}'")
        return target_spec

    def _match_installed(self, spec: VersionSpec, via: str) -> InstalledVersion:
        installed = self._installed()

        if spec.kind is TokenKind.SYMBOLIC:
            if self.catalog is None:
                raise ResolutionError(
                    f"'{spec.raw}' needs the {self.plugin.name} release catalog to resolve"
                )
            wanted = self.catalog.resolve(spec)
            spec = VersionSpec(TokenKind.CONCRETE, str(wanted), wanted)

        matches = sorted(
            ((v, r) for v, r in installed if spec.matches(v)),
            key=lambda item: item[0],
            reverse=True,
        )
        if not matches:
            shown = str(spec.version) if spec.version is not None else spec.raw
            raise VersionNotInstalled(self.plugin.name, shown, via=via)
        return matches[0][1]


__all__ = ["ProjectPin", "Resolution", "Resolver", "find_pin", "read_pin_file"]
