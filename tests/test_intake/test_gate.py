"""Tests for the admission gate."""

import threading
from unittest.mock import Mock

import pytest

from pap.core.errors import AdmissionError, LedgerBusy
from pap.intake.gate import AdmissionGate
from pap.intake.hashing import hash_tree
from pap.intake.models import Accepted, Duplicate, Malformed
from pap.intake.validator import ZipPackageValidator
from pap.queue.ledger import Ledger
from pap.submissions.models import SubmissionState
from tests.fixtures.packages import build_package


@pytest.fixture
def gate(ledger) -> AdmissionGate:
    return AdmissionGate(ledger, ZipPackageValidator())


class TestAdmissionGate:
    """Test validation, deduplication and queueing of submissions."""

    def test_should_accept_new_package_and_queue_it(self, gate, ledger, valid_package):
        """A new package gets a Queued record and one queue entry."""
        outcome = gate.admit(valid_package)

        assert isinstance(outcome, Accepted)
        assert outcome.status == "queued"
        record = ledger.store.require(outcome.hash)
        assert record.state is SubmissionState.QUEUED
        assert record.attempts == 0
        assert ledger.queue.position_of(outcome.hash) == 1

    def test_should_turn_admission_error_into_malformed(self, ledger):
        """Validators may raise instead of returning a failed result."""
        validator = Mock()
        validator.validate.side_effect = AdmissionError("archive is a tarball")

        outcome = AdmissionGate(ledger, validator).admit(b"raw")

        assert outcome == Malformed(reason="archive is a tarball")
        assert len(ledger.queue) == 0

    def test_should_use_hash_of_normalized_tree(self, gate, valid_package):
        """The public identifier is the hash of the normalized package."""
        tree = ZipPackageValidator().validate(valid_package).normalized_tree

        outcome = gate.admit(valid_package)

        assert outcome.hash == hash_tree(tree)

    def test_should_store_normalized_package_for_dispatch(self, gate, ledger, valid_package):
        outcome = gate.admit(valid_package)

        assert ledger.store.load_package(outcome.hash).startswith(b"PAP1")

    def test_should_report_duplicate_for_same_content(self, gate, ledger, valid_package):
        """Resubmitting the same content never queues it again."""
        first = gate.admit(valid_package)
        second = gate.admit(valid_package)

        assert isinstance(second, Duplicate)
        assert second.status == "duplicate"
        assert second.hash == first.hash
        assert len(ledger.queue) == 1

    def test_should_treat_rearchived_content_as_duplicate(self, gate):
        """A different archive of the same files is the same package."""
        first = gate.admit(build_package())
        second = gate.admit(build_package(reverse=True, extra={"README": b"hi"}))

        assert isinstance(second, Duplicate)
        assert second.hash == first.hash

    def test_should_report_duplicate_after_completion(self, gate, ledger, valid_package):
        """A finished package is not analysed twice."""
        accepted = gate.admit(valid_package)
        ledger.claim_next()
        ledger.complete(accepted.hash, {"score": 1})

        outcome = gate.admit(valid_package)

        assert isinstance(outcome, Duplicate)
        assert ledger.store.require(accepted.hash).state is SubmissionState.COMPLETED
        assert len(ledger.queue) == 0

    def test_should_not_touch_ledger_for_malformed_package(self, gate, ledger):
        """Malformed input leaves no record, queue entry or package file."""
        outcome = gate.admit(b"not an archive")

        assert isinstance(outcome, Malformed)
        assert outcome.status == "malformed"
        assert "ZIP" in outcome.reason
        assert ledger.store.get_statistics()["total_submissions"] == 0
        assert len(ledger.queue) == 0
        assert not any(ledger.store.packages_path.rglob("*.pkg"))

    def test_should_propagate_ledger_busy(self, store, memory_queue, valid_package):
        """A busy ledger is surfaced instead of guessing the outcome."""
        lock = Mock()
        lock.acquire.return_value = False

        gate = AdmissionGate(
            Ledger(store, memory_queue, lock, lock_timeout=0.01), ZipPackageValidator()
        )

        with pytest.raises(LedgerBusy):
            gate.admit(valid_package)
        assert len(memory_queue) == 0

    def test_should_accept_exactly_once_under_concurrency(self, gate, ledger):
        """N identical concurrent submissions yield one Accepted and N-1 Duplicates."""
        raw = build_package(main=b"int main(void) { return 42; }")
        submitters = 16
        barrier = threading.Barrier(submitters)
        outcomes = []
        outcomes_lock = threading.Lock()

        def submit():
            barrier.wait()
            outcome = gate.admit(raw)
            with outcomes_lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=submit) for _ in range(submitters)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        accepted = [o for o in outcomes if isinstance(o, Accepted)]
        duplicates = [o for o in outcomes if isinstance(o, Duplicate)]
        assert len(outcomes) == submitters
        assert len(accepted) == 1
        assert len(duplicates) == submitters - 1
        assert {o.hash for o in outcomes} == {accepted[0].hash}
        assert ledger.store.get_statistics()["total_submissions"] == 1
        assert len(ledger.queue) == 1
