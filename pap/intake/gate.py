"""Admission of raw packages into the pipeline."""

from pap.core.errors import AdmissionError
from pap.core.events import SUBMISSIONS_TOTAL
from pap.core.logging import get_logger
from pap.intake.hashing import encode_tree, package_hash
from pap.intake.models import (
    Accepted,
    AdmissionOutcome,
    Duplicate,
    Malformed,
    ValidationResult,
)
from pap.intake.validator import ArchiveValidator
from pap.queue.ledger import Ledger

logger = get_logger(__name__)


class AdmissionGate:
    """Validates, hashes and deduplicates incoming packages.

    Validation and hashing run without any lock. Only the
    check-create-enqueue step goes through the ledger, so concurrent
    submissions of the same content produce exactly one Accepted.
    """

    def __init__(self, ledger: Ledger, validator: ArchiveValidator) -> None:
        self.ledger = ledger
        self.validator = validator

    def admit(self, raw: bytes) -> AdmissionOutcome:
        """Admit a raw package.

        Args:
            raw: Package bytes as uploaded

        Returns:
            Malformed, Duplicate or Accepted

        Raises:
            LedgerBusy: If the ledger could not be locked in time
        """
        try:
            validation = self.validator.validate(raw)
        except AdmissionError as e:
            validation = ValidationResult.invalid(e.reason)
        if not validation.ok or validation.normalized_tree is None:
            return self.reject(
                validation.reason or "package rejected by validator", size=len(raw)
            )

        normalized = encode_tree(validation.normalized_tree)
        content_hash = package_hash(normalized)

        # Cheap pre-check; the authoritative one happens under the ledger lock
        if self.ledger.store.has_record(content_hash):
            return self._duplicate(content_hash)

        # Package bytes land on disk first so a Queued record is always dispatchable
        self.ledger.store.save_package(content_hash, normalized)

        if not self.ledger.admit(content_hash):
            return self._duplicate(content_hash)

        logger.info(
            "submission_accepted",
            hash=content_hash,
            files=len(validation.normalized_tree),
            size=len(normalized),
        )
        SUBMISSIONS_TOTAL.labels(outcome="accepted").inc()
        return Accepted(hash=content_hash)

    def _duplicate(self, content_hash: str) -> Duplicate:
        logger.info("submission_duplicate", hash=content_hash)
        SUBMISSIONS_TOTAL.labels(outcome="duplicate").inc()
        return Duplicate(hash=content_hash)

    def reject(self, reason: str, size: int | None = None) -> Malformed:
        """Turn a package away without touching the ledger."""
        logger.info("submission_malformed", reason=reason, size=size)
        SUBMISSIONS_TOTAL.labels(outcome="malformed").inc()
        return Malformed(reason=reason)
