"""
Version identifiers and user-supplied version tokens.

A VersionId is a parsed, comparable release number scoped to one runtime.
A VersionSpec classifies what a user typed (on the command line, in a pin
file, in an environment variable) before it is resolved to a VersionId.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional, Tuple

from runtimekit.core.exceptions import ResolutionError

if TYPE_CHECKING:
    from runtimekit.runtimes.base import RuntimePlugin


# Final releases outrank every pre-release of the same number
RELEASE_RANK = 3
PRE_RELEASE_RANKS = {"alpha": 0, "a": 0, "beta": 1, "b": 1, "rc": 2}

_VERSION_RE = re.compile(
    r"""^
    (?P<major>\d+)
    (?:\.(?P<minor>\d+))?
    (?:\.(?P<patch>\d+))?
    (?:[-.]?(?P<pre>alpha|beta|rc|a|b)\.?(?P<pre_num>\d+)?)?
    $""",
    re.VERBOSE | re.IGNORECASE,
)

_ALIAS_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_.\-]*$")


class VersionId:
    """
    Comparable release number of one runtime.

    Comparing VersionIds of different runtimes raises TypeError.

    Example:
        >>> a = VersionId.parse("node", "v18.17.0")
        >>> b = VersionId.parse("node", "20.10.0")
        >>> b > a
        True
        >>> str(a)
        '18.17.0'
    """

    __slots__ = ("runtime", "normalized", "key", "precision")

    def __init__(self, runtime: str, normalized: str, key: Tuple[int, ...], precision: int):
        self.runtime = runtime
        self.normalized = normalized
        self.key = key
        self.precision = precision

    @classmethod
    def parse(cls, runtime: str, text: str, strip_prefixes: Tuple[str, ...] = ("v",)) -> "VersionId":
        """
        Parse a version string.

        Args:
            runtime: Owning runtime name
            text: Version text (e.g. 'v18.17.0', '3.13.0rc1')
            strip_prefixes: Prefixes removed before parsing ('v', 'go')

        Returns:
            Parsed VersionId

        Raises:
            ValueError: If text is not a version number
        """
        normalized = text.strip()
        lowered = normalized.lower()
        for prefix in strip_prefixes:
            if lowered.startswith(prefix) and lowered[len(prefix):][:1].isdigit():
                normalized = normalized[len(prefix):]
                break

        match = _VERSION_RE.match(normalized)
        if not match:
            raise ValueError(f"Invalid {runtime} version: '{text}'")

        parts = [match.group("major"), match.group("minor"), match.group("patch")]
        precision = sum(1 for p in parts if p is not None)
        numbers = [int(p) if p is not None else 0 for p in parts]

        pre = match.group("pre")
        if pre:
            pre_rank = PRE_RELEASE_RANKS[pre.lower()]
            pre_num = int(match.group("pre_num") or 0)
        else:
            pre_rank, pre_num = RELEASE_RANK, 0

        return cls(runtime, normalized, (*numbers, pre_rank, pre_num), precision)

    @property
    def is_prerelease(self) -> bool:
        return self.key[3] != RELEASE_RANK

    @property
    def is_partial(self) -> bool:
        """True for tokens like '18' or '3.12' that name a release line."""
        return self.precision < 3 and not self.is_prerelease

    @property
    def numbers(self) -> Tuple[int, int, int]:
        return self.key[0], self.key[1], self.key[2]

    def matches_prefix(self, prefix: "VersionId") -> bool:
        """Check whether this version belongs to the release line of prefix."""
        self._check_runtime(prefix)
        return self.numbers[: prefix.precision] == prefix.numbers[: prefix.precision]

    def _check_runtime(self, other: "VersionId") -> None:
        if not isinstance(other, VersionId):
            raise TypeError(f"Cannot compare VersionId with {type(other).__name__}")
        if other.runtime != self.runtime:
            raise TypeError(
                f"Cannot compare {self.runtime} version with {other.runtime} version"
            )

    def __lt__(self, other: "VersionId") -> bool:
        self._check_runtime(other)
        return self.key < other.key

    def __le__(self, other: "VersionId") -> bool:
        self._check_runtime(other)
        return self.key <= other.key

    def __gt__(self, other: "VersionId") -> bool:
        self._check_runtime(other)
        return self.key > other.key

    def __ge__(self, other: "VersionId") -> bool:
        self._check_runtime(other)
        return self.key >= other.key

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, VersionId):
            return NotImplemented
        return self.runtime == other.runtime and self.key == other.key

    def __hash__(self) -> int:
        return hash((self.runtime, self.key))

    def __str__(self) -> str:
        return self.normalized

    def __repr__(self) -> str:
        return f"VersionId('{self.runtime}', '{self.normalized}')"


class TokenKind(Enum):
    CONCRETE = "concrete"
    PARTIAL = "partial"
    SYMBOLIC = "symbolic"
    ALIAS = "alias"


@dataclass(frozen=True)
class VersionSpec:
    """A classified version token."""

    kind: TokenKind
    raw: str
    version: Optional[VersionId] = None

    @property
    def is_symbolic(self) -> bool:
        return self.kind is TokenKind.SYMBOLIC

    def matches(self, version: VersionId) -> bool:
        """Check an available or installed version against this token."""
        if self.kind is TokenKind.CONCRETE:
            return version == self.version
        if self.kind is TokenKind.PARTIAL:
            return version.matches_prefix(self.version) and not version.is_prerelease
        return False


def parse_token(plugin: "RuntimePlugin", raw: str) -> VersionSpec:
    """
    Classify a user-supplied token for one runtime.

    Args:
        plugin: Runtime plugin (supplies version syntax and channel names)
        raw: Token as typed or read from a pin file

    Returns:
        VersionSpec of kind concrete, partial, symbolic or alias

    Raises:
        ResolutionError: If the token is empty or not a valid name

    Example:
        >>> parse_token(get_plugin("node"), "lts").kind
        <TokenKind.SYMBOLIC: 'symbolic'>
        >>> parse_token(get_plugin("python"), "3.12").kind
        <TokenKind.PARTIAL: 'partial'>
    """
    token = plugin.normalize_token((raw or "").strip())
    if not token:
        raise ResolutionError(f"Empty {plugin.name} version token")

    if plugin.is_symbolic(token):
        return VersionSpec(TokenKind.SYMBOLIC, token.lower())

    try:
        version = plugin.parse_version(token)
    except ValueError:
        version = None

    if version is not None:
        kind = TokenKind.PARTIAL if version.is_partial else TokenKind.CONCRETE
        return VersionSpec(kind, token, version)

    if _ALIAS_RE.match(token):
        return VersionSpec(TokenKind.ALIAS, token)

    raise ResolutionError(f"Invalid {plugin.name} version or alias name: '{raw}'")


def validate_alias_name(plugin: "RuntimePlugin", name: str) -> str:
    """
    Check that name can be used as an alias.

    Raises:
        ResolutionError: If the name parses as a version or symbolic token
    """
    spec = parse_token(plugin, name)
    if spec.kind is not TokenKind.ALIAS:
        raise ResolutionError(
            f"'{name}' cannot be used as an alias name: it is a {spec.kind.value} "
            f"{plugin.name} version token"
        )
    return spec.raw


__all__ = [
    "VersionId",
    "TokenKind",
    "VersionSpec",
    "parse_token",
    "validate_alias_name",
]
