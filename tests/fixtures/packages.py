"""Package archive fixtures for tests."""

import io
import stat
import warnings
import zipfile
from collections.abc import Callable, Mapping

import pytest

MAIN_C = b"#include \"interface.h\"\nint main(void) { return run_tests(); }\n"


def build_zip(
    entries: Mapping[str, bytes | str],
    compression: int = zipfile.ZIP_DEFLATED,
) -> bytes:
    """Write ``entries`` into an in-memory ZIP archive, in the given order.

    Names ending in ``/`` become directory entries. Duplicate names are
    written as-is (zipfile only warns), which lets tests build hostile
    archives.
    """
    buffer = io.BytesIO()
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", UserWarning)
        with zipfile.ZipFile(buffer, "w", compression=compression) as archive:
            for name, content in entries.items():
                archive.writestr(name, content)
    return buffer.getvalue()


def build_package(
    main: bytes = MAIN_C,
    inputs: Mapping[str, bytes] | None = None,
    crashes: Mapping[str, bytes] | None = None,
    extra: Mapping[str, bytes | str] | None = None,
    reverse: bool = False,
    compression: int = zipfile.ZIP_DEFLATED,
) -> bytes:
    """Build a well-formed package archive.

    Args:
        main: Contents of main.c
        inputs: Files placed under input/
        crashes: Files placed under crash/
        extra: Additional raw entries (README, interface.h, hostile names)
        reverse: Write entries in reverse order
        compression: ZIP compression method
    """
    inputs = {"basic": b"hello\n"} if inputs is None else inputs
    crashes = {"overflow": b"A" * 64} if crashes is None else crashes

    entries: list[tuple[str, bytes | str]] = [("main.c", main), ("input/", b""), ("crash/", b"")]
    entries += [(f"input/{name}", content) for name, content in inputs.items()]
    entries += [(f"crash/{name}", content) for name, content in crashes.items()]
    entries += list((extra or {}).items())
    if reverse:
        entries.reverse()
    return build_zip(dict(entries), compression=compression)


def build_symlink_zip() -> bytes:
    """Archive whose main.c entry is a symbolic link."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        info = zipfile.ZipInfo("main.c")
        info.external_attr = (stat.S_IFLNK | 0o777) << 16
        archive.writestr(info, "/etc/passwd")
        archive.writestr("input/", b"")
        archive.writestr("crash/", b"")
    return buffer.getvalue()


@pytest.fixture
def package_factory() -> Callable[..., bytes]:
    """Provide the package builder."""
    return build_package


@pytest.fixture
def valid_package() -> bytes:
    """A minimal well-formed package."""
    return build_package()
