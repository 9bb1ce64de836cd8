"""Package intake: archive validation, normalization and content hashing.

Public API:
- ZipPackageValidator: Default validator for uploaded ZIP archives
- PackageTree: Normalized package contents
- package_hash / hash_tree: SHA3-256 identity of a normalized package
"""

from pap.intake.hashing import decode_tree, encode_tree, hash_tree, package_hash
from pap.intake.models import (
    Accepted,
    AdmissionOutcome,
    Duplicate,
    Malformed,
    PackageTree,
    ValidationResult,
)
from pap.intake.validator import ArchiveValidator, ZipPackageValidator

__all__ = [
    "Accepted",
    "AdmissionOutcome",
    "ArchiveValidator",
    "Duplicate",
    "Malformed",
    "PackageTree",
    "ValidationResult",
    "ZipPackageValidator",
    "decode_tree",
    "encode_tree",
    "hash_tree",
    "package_hash",
]
