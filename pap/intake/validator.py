"""Validation of submitted ZIP packages.

A package is a ZIP archive laid out as::

    main.c            required, the program under analysis
    interface.h       optional, replaced by the platform's own copy
    input/<case>      required directory of passing test inputs
    crash/<case>      required directory of crashing test inputs
    README[.md|.txt|.pdf]  optional, never analysed

Everything the platform supplies itself or never looks at is left out of
the normalized tree, so it does not influence the package hash.
"""

import io
import re
import stat
import zipfile
import zlib
from typing import Protocol

from pap.core.config import Settings
from pap.intake.models import PackageTree, ValidationResult

PROGRAM_FILE = "main.c"
INTERFACE_FILE = "interface.h"
TEST_DIRS = ("input", "crash")
IGNORED_FILES = frozenset(
    {INTERFACE_FILE, "README", "README.md", "README.txt", "README.pdf"}
)

_DRIVE_PATTERN = re.compile(r"^[A-Za-z]:")


class ArchiveValidator(Protocol):
    """Validates raw bytes and extracts a normalized file tree."""

    def validate(self, raw: bytes) -> ValidationResult: ...


class ZipPackageValidator:
    """Validates packages against the ZIP safety and layout rules."""

    def __init__(
        self,
        max_archive_bytes: int = 8 * 1024 * 1024,
        max_entries: int = 512,
        max_uncompressed_bytes: int = 16 * 1024 * 1024,
        max_program_bytes: int = 256 * 1024,
        max_test_case_bytes: int = 1024,
    ) -> None:
        self.max_archive_bytes = max_archive_bytes
        self.max_entries = max_entries
        self.max_uncompressed_bytes = max_uncompressed_bytes
        self.max_program_bytes = max_program_bytes
        self.max_test_case_bytes = max_test_case_bytes

    @classmethod
    def from_settings(cls, settings: Settings) -> "ZipPackageValidator":
        return cls(
            max_archive_bytes=settings.MAX_ARCHIVE_BYTES,
            max_entries=settings.MAX_ARCHIVE_ENTRIES,
            max_uncompressed_bytes=settings.MAX_UNCOMPRESSED_BYTES,
            max_program_bytes=settings.MAX_PROGRAM_BYTES,
            max_test_case_bytes=settings.MAX_TEST_CASE_BYTES,
        )

    def validate(self, raw: bytes) -> ValidationResult:
        """Validate a raw package.

        Args:
            raw: Request body as received

        Returns:
            ValidationResult carrying either a reason or the normalized tree
        """
        if not raw:
            return ValidationResult.invalid("empty package")
        if len(raw) > self.max_archive_bytes:
            return ValidationResult.invalid(
                f"package is too big ({len(raw)} > {self.max_archive_bytes} bytes)"
            )

        try:
            archive = zipfile.ZipFile(io.BytesIO(raw))
        except (zipfile.BadZipFile, zipfile.LargeZipFile, ValueError, OSError) as e:
            return ValidationResult.invalid(
                f"unable to parse the package into a ZIP archive: {e}"
            )

        with archive:
            try:
                return self._validate_archive(archive)
            except (
                zipfile.BadZipFile,
                zlib.error,
                NotImplementedError,
                EOFError,
                RuntimeError,
                OSError,
            ) as e:
                return ValidationResult.invalid(f"corrupt ZIP archive: {e}")

    def _validate_archive(self, archive: zipfile.ZipFile) -> ValidationResult:
        infos = archive.infolist()
        if len(infos) > self.max_entries:
            return ValidationResult.invalid(
                f"too many archive entries ({len(infos)} > {self.max_entries})"
            )

        declared = sum(info.file_size for info in infos)
        if declared > self.max_uncompressed_bytes:
            return ValidationResult.invalid(
                f"package expands to {declared} bytes "
                f"(limit {self.max_uncompressed_bytes})"
            )

        seen: set[str] = set()
        present_dirs: set[str] = set()
        files: dict[str, bytes] = {}

        for info in infos:
            name = info.filename
            if reason := self._unsafe_name(info):
                return ValidationResult.invalid(reason)

            normalized = name.rstrip("/")
            if normalized in seen:
                return ValidationResult.invalid(f"duplicate archive entry: {normalized}")
            seen.add(normalized)

            parts = normalized.split("/")
            top = parts[0]

            if info.is_dir():
                if top in TEST_DIRS and len(parts) == 1:
                    present_dirs.add(top)
                    continue
                return ValidationResult.invalid(f"unrecognized directory: {normalized}")

            if top in TEST_DIRS:
                if len(parts) != 2:
                    return ValidationResult.invalid(f"{normalized} is invalid")
                present_dirs.add(top)
                content = self._read_bounded(
                    archive, info, self.max_test_case_bytes
                )
                if content is None:
                    return ValidationResult.invalid(f"{normalized} is too big")
                files[normalized] = content
            elif len(parts) == 1 and top == PROGRAM_FILE:
                content = self._read_bounded(archive, info, self.max_program_bytes)
                if content is None:
                    return ValidationResult.invalid(f"{PROGRAM_FILE} is too big")
                files[PROGRAM_FILE] = content
            elif len(parts) == 1 and top in IGNORED_FILES:
                continue
            else:
                return ValidationResult.invalid(f"unrecognized item: {top}")

        if PROGRAM_FILE not in files:
            return ValidationResult.invalid(f"{PROGRAM_FILE} is missing")
        for directory in TEST_DIRS:
            if directory not in present_dirs:
                return ValidationResult.invalid(f"{directory}/ is missing")

        return ValidationResult.valid(PackageTree(files))

    @staticmethod
    def _unsafe_name(info: zipfile.ZipInfo) -> str | None:
        """Return a rejection reason if the entry is unsafe to accept."""
        name = info.filename
        if "\x00" in info.orig_filename:
            return "archive entry name contains a NUL byte"
        if not name or name.startswith("/") or _DRIVE_PATTERN.match(name):
            return f"absolute path in archive: {name!r}"
        if "\\" in name:
            return f"backslash in archive path: {name!r}"
        parts = name.rstrip("/").split("/")
        if any(part in ("", ".", "..") for part in parts):
            return f"unsafe path in archive: {name!r}"
        if info.flag_bits & 0x1:
            return f"encrypted archive entry: {name}"
        mode = info.external_attr >> 16
        if mode and stat.S_ISLNK(mode):
            return f"symbolic link in archive: {name}"
        return None

    @staticmethod
    def _read_bounded(
        archive: zipfile.ZipFile, info: zipfile.ZipInfo, limit: int
    ) -> bytes | None:
        """Read an entry, returning None when it exceeds ``limit`` bytes."""
        if info.file_size > limit:
            return None
        with archive.open(info) as handle:
            content = handle.read(limit + 1)
        if len(content) > limit:
            return None
        return content
