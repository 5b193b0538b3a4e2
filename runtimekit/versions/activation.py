"""
Current-version activation point management.

``current/<runtime>`` points at the active install and is what users put on
PATH. Three strategies are supported:

- symlink: a new link is created under a temporary name and renamed over
  the old one, so readers always see either the old or the new target
- junction (Windows without symlink privilege): old junction removed, new
  one created; a short window exists where the path is missing
- copy (last resort): the install is copied; same window as junction

The registry's active pointer stays authoritative; this module only keeps
the filesystem view in line with it.
"""

import logging
import os
import secrets
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional

from runtimekit.core.directory import DataLayout
from runtimekit.core.exceptions import ActivationFailed
from runtimekit.core.filesystem import FilesystemError, recursive_copy, safe_rmtree
from runtimekit.core.platform import PlatformInfo, detect_platform
from runtimekit.runtimes.base import RuntimePlugin

logger = logging.getLogger(__name__)

# Marker inside a copied activation directory naming the install it mirrors
COPY_MARKER = ".runtimekit-target"


class LinkStrategy(Enum):
    """Ways of exposing the active install."""

    SYMLINK = "symlink"
    JUNCTION = "junction"
    COPY = "copy"


@dataclass
class ActivationResult:
    """
    Outcome of an activation.

    Attributes:
        strategy: Strategy that was used
        atomic: True if readers could never observe a missing target
        link_path: The activation point
        target: Install directory now exposed
        previous_target: Install directory exposed before (None if none)
    """

    strategy: LinkStrategy
    atomic: bool
    link_path: Path
    target: Path
    previous_target: Optional[Path] = None


def _is_junction(path: Path) -> bool:
    if hasattr(os.path, "isjunction"):
        return os.path.isjunction(path)
    try:
        st = os.lstat(path)
    except OSError:
        return False
    # FILE_ATTRIBUTE_REPARSE_POINT on a directory that is not a symlink
    return bool(getattr(st, "st_file_attributes", 0) & 0x400) and not path.is_symlink()


class Activator:
    """
    Manages ``current/<runtime>`` for one runtime.

    Example:
        >>> activator = Activator(plugin, layout)
        >>> result = activator.activate(Path("~/.runtimekit/versions/node/20.10.0"))
        >>> result.atomic
        True
        >>> activator.path_entries()
        [PosixPath('/home/user/.runtimekit/current/node/bin')]
    """

    def __init__(
        self,
        plugin: RuntimePlugin,
        layout: DataLayout,
        strategy: str = "auto",
        platform: Optional[PlatformInfo] = None,
    ):
        """
        Initialize activator.

        Args:
            plugin: Runtime plugin (supplies the bin directory layout)
            layout: Data directory layout
            strategy: 'auto', 'symlink', 'junction' or 'copy'
            platform: Platform (detected if None)
        """
        self.plugin = plugin
        self.layout = layout
        self.strategy = strategy
        self.platform = platform or detect_platform()

    @property
    def link_path(self) -> Path:
        return self.layout.current_link(self.plugin.name)

    def _candidates(self) -> List[LinkStrategy]:
        if self.strategy != "auto":
            return [LinkStrategy(self.strategy)]
        if self.platform.is_windows:
            return [LinkStrategy.SYMLINK, LinkStrategy.JUNCTION, LinkStrategy.COPY]
        return [LinkStrategy.SYMLINK, LinkStrategy.COPY]

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def current_target(self) -> Optional[Path]:
        """Install directory currently exposed, or None."""
        link = self.link_path
        if link.is_symlink() or _is_junction(link):
            target = Path(os.readlink(link))
            target_str = str(target)
            # Junction targets come back with the \\?\ prefix
            if target_str.startswith("\\\\?\\") or target_str.startswith("//?/"):
                target = Path(target_str[4:])
            if not target.is_absolute():
                target = link.parent / target
            return target
        marker = link / COPY_MARKER
        if marker.is_file():
            return Path(marker.read_text(encoding="utf-8").strip())
        return None

    def is_broken(self) -> bool:
        """True if the activation point exists but its target is gone."""
        link = self.link_path
        if not (link.is_symlink() or _is_junction(link)):
            return False
        target = self.current_target()
        return target is None or not target.exists()

    def path_entries(self) -> List[Path]:
        """Directories to put on PATH for the active version."""
        if not self.link_path.exists():
            return []
        return [self.plugin.bin_dir(self.link_path)]

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def activate(self, install_path: Path) -> ActivationResult:
        """
        Point the activation point at install_path.

        Args:
            install_path: Install directory to expose

        Returns:
            ActivationResult

        Raises:
            ActivationFailed: If no strategy succeeded
        """
        install_path = Path(install_path).absolute()
        if not install_path.is_dir():
            raise ActivationFailed(
                f"Cannot activate {self.plugin.name}: {install_path} does not exist"
            )

        self.link_path.parent.mkdir(parents=True, exist_ok=True)
        previous = self.current_target()
        errors = []

        for strategy in self._candidates():
            try:
                if strategy is LinkStrategy.SYMLINK:
                    atomic = self._swap_symlink(install_path)
                elif strategy is LinkStrategy.JUNCTION:
                    atomic = self._replace_junction(install_path)
                else:
                    atomic = self._replace_copy(install_path)
            except (OSError, FilesystemError) as e:
                logger.debug(f"{strategy.value} activation failed: {e}")
                errors.append(f"{strategy.value}: {e}")
                continue

            if not atomic:
                logger.warning(
                    f"Activated {self.plugin.name} using {strategy.value}; the switch "
                    "was not atomic and concurrent shells may briefly see no "
                    f"{self.plugin.name}"
                )
            logger.info(f"Activated {self.plugin.name}: {self.link_path} -> {install_path}")
            return ActivationResult(
                strategy=strategy,
                atomic=atomic,
                link_path=self.link_path,
                target=install_path,
                previous_target=previous,
            )

        raise ActivationFailed(
            f"Could not activate {self.plugin.name} at {self.link_path}: "
            + "; ".join(errors)
        )

    def deactivate(self) -> bool:
        """Remove the activation point. Returns False if there was none."""
        link = self.link_path
        if not (link.exists() or link.is_symlink() or _is_junction(link)):
            return False
        self._remove_existing()
        logger.info(f"Deactivated {self.plugin.name}")
        return True

    def restore(self, target: Optional[Path]) -> None:
        """Put the activation point back to a previous target (or remove it)."""
        if target is None or not Path(target).is_dir():
            self.deactivate()
        else:
            self.activate(target)

    # -------------------------------------------------------------------------
    # Strategies
    # -------------------------------------------------------------------------

    def _temp_name(self) -> Path:
        return self.link_path.parent / f".{self.plugin.name}.{secrets.token_hex(4)}.tmp"

    def _remove_existing(self) -> None:
        link = self.link_path
        if _is_junction(link):
            os.rmdir(link)
        elif link.is_symlink() or link.is_file():
            link.unlink()
        elif link.is_dir():
            safe_rmtree(link, require_prefix=self.layout.current_dir)

    def _swap_symlink(self, install_path: Path) -> bool:
        temp_link = self._temp_name()
        os.symlink(install_path, temp_link, target_is_directory=True)
        try:
            link = self.link_path
            atomic = True
            if link.is_dir() and not link.is_symlink():
                # Replacing a copied or junction directory cannot be atomic
                self._remove_existing()
                atomic = False
            os.replace(temp_link, link)
        except OSError:
            if temp_link.is_symlink():
                temp_link.unlink()
            raise
        return atomic

    def _replace_junction(self, install_path: Path) -> bool:
        if not self.platform.is_windows:
            raise OSError("Junctions are only supported on Windows")

        import _winapi

        self._remove_existing()
        _winapi.CreateJunction(str(install_path), str(self.link_path))
        return False

    def _replace_copy(self, install_path: Path) -> bool:
        temp_dir = self._temp_name()
        recursive_copy(install_path, temp_dir)
        try:
            (temp_dir / COPY_MARKER).write_text(str(install_path), encoding="utf-8")
            self._remove_existing()
            os.rename(temp_dir, self.link_path)
        except OSError:
            safe_rmtree(temp_dir, require_prefix=self.layout.current_dir)
            raise
        return False


__all__ = ["Activator", "ActivationResult", "LinkStrategy", "COPY_MARKER"]
