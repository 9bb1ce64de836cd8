"""Content addressing for normalized packages.

The canonical encoding is a sequence of records, one per file, in sorted
path order::

    b"PAP1" | (u32 path length | path | u64 content length | content)*

Lengths are big-endian. Because the encoding depends only on paths and
contents, two archives with the same logical content produce the same
bytes and therefore the same hash.
"""

import hashlib
import re
import struct

from pap.intake.models import PackageTree

MAGIC = b"PAP1"

# SHA3-256 produces 64 hex characters
HASH_PATTERN = re.compile(r"^[a-f0-9]{64}$")

_PATH_LEN = struct.Struct(">I")
_CONTENT_LEN = struct.Struct(">Q")


def encode_tree(tree: PackageTree) -> bytes:
    """Encode a normalized tree into its canonical byte form."""
    parts = [MAGIC]
    for path in sorted(tree):
        raw_path = path.encode("utf-8")
        content = tree[path]
        parts.append(_PATH_LEN.pack(len(raw_path)))
        parts.append(raw_path)
        parts.append(_CONTENT_LEN.pack(len(content)))
        parts.append(content)
    return b"".join(parts)


def decode_tree(data: bytes) -> PackageTree:
    """Decode canonical bytes back into a tree.

    Raises:
        ValueError: If the data is not a canonical encoding
    """
    if not data.startswith(MAGIC):
        raise ValueError("Not a canonical package encoding")

    files: dict[str, bytes] = {}
    offset = len(MAGIC)
    while offset < len(data):
        try:
            (path_len,) = _PATH_LEN.unpack_from(data, offset)
            offset += _PATH_LEN.size
            path = data[offset : offset + path_len].decode("utf-8")
            offset += path_len
            (content_len,) = _CONTENT_LEN.unpack_from(data, offset)
            offset += _CONTENT_LEN.size
        except struct.error as e:
            raise ValueError(f"Truncated package encoding: {e}") from e
        content = data[offset : offset + content_len]
        if len(content) != content_len:
            raise ValueError("Truncated package encoding")
        offset += content_len
        if path in files:
            raise ValueError(f"Duplicate path in package encoding: {path}")
        files[path] = content
    return PackageTree(files)


def package_hash(normalized: bytes) -> str:
    """Generate the SHA3-256 hash of normalized package bytes.

    Args:
        normalized: Canonical encoding produced by :func:`encode_tree`

    Returns:
        Hex string of the digest
    """
    return hashlib.sha3_256(normalized).hexdigest()


def hash_tree(tree: PackageTree) -> str:
    """Shortcut for ``package_hash(encode_tree(tree))``."""
    return package_hash(encode_tree(tree))


def is_valid_hash(value: str) -> bool:
    """Check that a string looks like a package hash."""
    return bool(HASH_PATTERN.match(value))


def validate_hash(value: str) -> None:
    """Validate hash format for security.

    Raises:
        ValueError: If hash format is invalid
    """
    if not is_valid_hash(value):
        raise ValueError(
            f"Invalid hash format: expected 64 hex characters, got: {value[:80]}"
        )
