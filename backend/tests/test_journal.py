import dataclasses

import pytest

from sentiment_vault.infrastructure.journal import (
    GENESIS_HASH,
    TransitionJournal,
    merkle_root,
    value_commitment,
)


def _journal_with(n: int) -> TransitionJournal:
    journal = TransitionJournal()
    for i in range(n):
        journal.commit(journal.prepare(f"r{i}", "", "Unverified"))
    return journal


def test_empty_journal_is_valid():
    journal = TransitionJournal()
    report = journal.verify_integrity()
    assert report.is_valid
    assert report.chain_length == 0
    assert journal.merkle_root == GENESIS_HASH


def test_entries_are_chained():
    journal = _journal_with(3)
    entries = journal.entries
    assert entries[0].previous_hash == GENESIS_HASH
    assert entries[1].previous_hash == entries[0].entry_hash
    assert entries[2].previous_hash == entries[1].entry_hash
    assert journal.verify_integrity().is_valid


def test_prepare_does_not_append():
    journal = _journal_with(1)
    root = journal.merkle_root
    journal.prepare("r9", "", "Unverified")
    assert len(journal) == 1
    assert journal.merkle_root == root


def test_stale_entry_is_rejected():
    journal = TransitionJournal()
    first = journal.prepare("a", "", "Unverified")
    second = journal.prepare("b", "", "Unverified")
    journal.commit(first)
    with pytest.raises(ValueError):
        journal.commit(second)


def test_merkle_root_changes_with_each_commit():
    journal = _journal_with(2)
    before = journal.merkle_root
    journal.commit(journal.prepare("r2", "", "Unverified"))
    assert journal.merkle_root != before


def test_merkle_root_odd_leaf_is_paired_with_itself():
    leaves = ["a" * 64, "b" * 64, "c" * 64]
    padded = ["a" * 64, "b" * 64, "c" * 64, "c" * 64]
    assert merkle_root(leaves) == merkle_root(padded)
    assert merkle_root(["d" * 64]) == "d" * 64


def test_tampered_entry_detected():
    journal = _journal_with(3)
    entries = journal.entries
    entries[1] = dataclasses.replace(entries[1], record_id="forged")

    report = TransitionJournal(entries).verify_integrity()
    assert not report.is_valid
    assert report.first_invalid_index == 1
    assert "tampered" in report.error_message


def test_broken_chain_detected():
    journal = _journal_with(3)
    entries = journal.entries
    del entries[1]

    report = TransitionJournal(entries).verify_integrity()
    assert not report.is_valid
    assert report.first_invalid_index == 1
    assert "Chain break" in report.error_message


def test_value_commitment_hides_value_but_binds_it():
    c3 = value_commitment("r1", 3)
    assert c3 == value_commitment("r1", 3)
    assert c3 != value_commitment("r1", 4)
    assert c3 != value_commitment("r2", 3)
    assert len(c3) == 66
