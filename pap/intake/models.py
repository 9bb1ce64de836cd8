"""Data models for package admission."""

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Optional, Union


class PackageTree(Mapping[str, bytes]):
    """Immutable, normalized file tree of a package.

    Keys are POSIX relative paths, values are file contents. Iteration is
    always in sorted path order regardless of insertion order.
    """

    __slots__ = ("_files",)

    def __init__(self, files: Mapping[str, bytes]) -> None:
        self._files = {path: bytes(files[path]) for path in sorted(files)}

    def __getitem__(self, path: str) -> bytes:
        return self._files[path]

    def __iter__(self) -> Iterator[str]:
        return iter(self._files)

    def __len__(self) -> int:
        return len(self._files)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, PackageTree):
            return self._files == other._files
        return NotImplemented

    def __hash__(self) -> int:
        return hash(tuple(self._files.items()))

    def __repr__(self) -> str:
        return f"PackageTree({list(self._files)!r})"

    @property
    def total_size(self) -> int:
        return sum(len(content) for content in self._files.values())


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating a raw package."""

    ok: bool
    reason: Optional[str] = None
    normalized_tree: Optional[PackageTree] = None

    @classmethod
    def valid(cls, tree: PackageTree) -> "ValidationResult":
        return cls(ok=True, normalized_tree=tree)

    @classmethod
    def invalid(cls, reason: str) -> "ValidationResult":
        return cls(ok=False, reason=reason)


@dataclass(frozen=True)
class Malformed:
    """The package failed validation; nothing was recorded."""

    reason: str
    status = "malformed"


@dataclass(frozen=True)
class Duplicate:
    """The package content has been seen before."""

    hash: str
    status = "duplicate"


@dataclass(frozen=True)
class Accepted:
    """A new package was recorded and queued."""

    hash: str
    status = "queued"


AdmissionOutcome = Union[Malformed, Duplicate, Accepted]
