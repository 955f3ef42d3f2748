"""Tests for SQLite persistence."""

import sqlite3
import sys
import threading
import unittest

sys.path.insert(0, '.')

from taxfiler.errors import DuplicateUserError
from taxfiler.models import (
    Address, Dependent, DocumentType, ExtractedDocument, FilingStatus, Payment,
    PaymentStatus, ReturnStatus, TaxProfile, W2Fields,
)
from taxfiler.storage import FilingStore


class PausingDependents(list):
    """Holds the dependent insert open until another thread has had its turn."""

    def __init__(self, items, writing, reader_done):
        super().__init__(items)
        self.writing = writing
        self.reader_done = reader_done

    def __iter__(self):
        self.writing.set()
        self.reader_done.wait(timeout=1)
        return super().__iter__()


class TestFilingStore(unittest.TestCase):
    def setUp(self):
        self.store = FilingStore(":memory:")
        self.user = self.store.create_user("Pat@Example.com", "Pat", "Doe")

    def tearDown(self):
        self.store.close()

    def _profile(self, dependents):
        return TaxProfile(
            filing_status=FilingStatus.HEAD_OF_HOUSEHOLD,
            ssn="123-45-6789",
            address=Address(street="1 Elm St", city="Salem", state="OR", zip_code="97301"),
            dependents=dependents,
        )

    def test_create_user(self):
        self.assertEqual(self.user.email, "pat@example.com")
        self.assertEqual(self.user.display_name, "Pat Doe")
        self.assertIsNotNone(self.store.get_user(self.user.id))
        self.assertIsNone(self.store.get_user(self.user.id + 100))

    def test_duplicate_email(self):
        with self.assertRaises(DuplicateUserError):
            self.store.create_user("pat@example.com", "Other", "Person")

    def test_profile_round_trip(self):
        self.store.save_tax_profile(self.user.id, self._profile([
            Dependent(name="Sam Doe", relationship="son", date_of_birth="2015-04-02"),
            Dependent(name="Alex Doe", relationship="daughter"),
        ]))
        profile = self.store.get_tax_profile(self.user.id)

        self.assertEqual(profile.filing_status, FilingStatus.HEAD_OF_HOUSEHOLD)
        self.assertEqual(profile.tax_classification, "individual")
        self.assertEqual(profile.address.zip_code, "97301")
        self.assertEqual([d.name for d in profile.dependents], ["Sam Doe", "Alex Doe"])
        self.assertEqual(profile.dependents[0].date_of_birth, "2015-04-02")

    def test_dependents_replaced_not_merged(self):
        self.store.save_tax_profile(self.user.id, self._profile([Dependent(name="A"), Dependent(name="B")]))
        self.store.save_tax_profile(self.user.id, self._profile([Dependent(name="C")]))

        names = [d.name for d in self.store.get_tax_profile(self.user.id).dependents]
        self.assertEqual(names, ["C"])

    def test_empty_dependents_clear_set(self):
        self.store.save_tax_profile(self.user.id, self._profile([Dependent(name="A")]))
        self.store.save_tax_profile(self.user.id, self._profile([]))

        self.assertEqual(self.store.get_tax_profile(self.user.id).dependents, [])

    def test_failed_dependent_insert_rolls_back(self):
        """A bad dependent leaves the previous profile and dependents intact."""
        self.store.save_tax_profile(self.user.id, self._profile([Dependent(name="A")]))

        replacement = self._profile([Dependent(name="B"), Dependent(name=None)])
        replacement.filing_status = FilingStatus.SINGLE
        with self.assertRaises(sqlite3.IntegrityError):
            self.store.save_tax_profile(self.user.id, replacement)

        profile = self.store.get_tax_profile(self.user.id)
        self.assertEqual(profile.filing_status, FilingStatus.HEAD_OF_HOUSEHOLD)
        self.assertEqual([d.name for d in profile.dependents], ["A"])

    def test_concurrent_reader_sees_whole_dependent_set(self):
        """A read from another thread waits for the dependent replace to commit."""
        self.store.save_tax_profile(self.user.id, self._profile([Dependent(name="A"), Dependent(name="B")]))
        writing, reader_done = threading.Event(), threading.Event()
        seen = []

        def read():
            writing.wait(timeout=5)
            seen.append([d.name for d in self.store.get_tax_profile(self.user.id).dependents])
            reader_done.set()

        reader = threading.Thread(target=read)
        reader.start()
        self.store.save_tax_profile(self.user.id, self._profile(
            PausingDependents([Dependent(name="C"), Dependent(name="D")], writing, reader_done)
        ))
        reader.join(timeout=5)

        self.assertEqual(seen, [["C", "D"]])

    def test_documents(self):
        first = self.store.add_document(self.user.id, ExtractedDocument(
            doc_type=DocumentType.W2, filename="a.pdf", fields=W2Fields(wages=1000.0),
        ))
        second = self.store.add_document(self.user.id, ExtractedDocument(
            doc_type=DocumentType.W2, filename="b.png",
            fields=W2Fields(wages=0.0, federal_tax_withheld=0.0),
            extraction_status="failed", error="Failed to extract data from document",
        ))

        docs = self.store.list_documents(self.user.id, DocumentType.W2)
        self.assertEqual([d.id for d in docs], [second.id, first.id])
        self.assertEqual(docs[0].error, "Failed to extract data from document")
        self.assertEqual(docs[0].extraction_status, "failed")
        self.assertEqual(docs[1].fields.wages, 1000.0)

        self.assertTrue(self.store.delete_document(self.user.id, first.id))
        self.assertFalse(self.store.delete_document(self.user.id, first.id))
        self.assertEqual(len(self.store.list_documents(self.user.id)), 1)

    def test_documents_scoped_to_user(self):
        other = self.store.create_user("other@example.com")
        doc = self.store.add_document(other.id, ExtractedDocument(
            doc_type=DocumentType.W2, filename="a.pdf", fields=W2Fields(wages=1.0),
        ))

        self.assertEqual(self.store.list_documents(self.user.id), [])
        self.assertFalse(self.store.delete_document(self.user.id, doc.id))

    def test_return_lifecycle(self):
        record = self.store.get_tax_return(self.user.id)
        self.assertEqual(record.status, ReturnStatus.DRAFT)
        self.assertIsNone(record.form_1040)
        self.assertFalse(self.store.mark_submitted(self.user.id))

        self.store.save_tax_return(self.user.id, {"formType": "1040", "taxYear": 2024})
        record = self.store.save_tax_return(self.user.id, {"formType": "1040", "taxYear": 2024, "v": 2})
        self.assertEqual(record.status, ReturnStatus.REVIEW)
        self.assertEqual(record.form_1040["v"], 2)

        self.assertTrue(self.store.mark_submitted(self.user.id))
        record = self.store.get_tax_return(self.user.id)
        self.assertEqual(record.status, ReturnStatus.SUBMITTED)
        self.assertIsNotNone(record.submission_date)
        self.assertFalse(self.store.mark_submitted(self.user.id))

    def test_submitted_return_is_not_overwritten(self):
        self.store.save_tax_return(self.user.id, {"formType": "1040", "v": 1})
        self.assertTrue(self.store.mark_submitted(self.user.id))

        self.assertIsNone(self.store.save_tax_return(self.user.id, {"formType": "1040", "v": 2}))
        record = self.store.get_tax_return(self.user.id)
        self.assertEqual(record.status, ReturnStatus.SUBMITTED)
        self.assertEqual(record.form_1040["v"], 1)
        self.assertIsNotNone(record.submission_date)

    def test_payments_newest_first(self):
        self.store.add_payment(self.user.id, Payment(49.99, "pi_1", PaymentStatus.FAILED))
        self.store.add_payment(self.user.id, Payment(49.99, "pi_2", PaymentStatus.COMPLETED))

        payments = self.store.list_payments(self.user.id)
        self.assertEqual([p.provider_reference for p in payments], ["pi_2", "pi_1"])
        self.assertTrue(payments[0].is_completed)


def test_file_database_persists(tmp_path):
    path = str(tmp_path / "data" / "filings.db")
    store = FilingStore(path)
    user = store.create_user("pat@example.com", "Pat", "Doe")
    store.close()

    reopened = FilingStore(path)
    assert reopened.get_user(user.id).email == "pat@example.com"
    reopened.close()


def test_non_finite_amounts_are_dropped():
    fields = W2Fields.from_field_map({
        "wages": "nan",
        "federalTaxWithheld": "inf",
        "medicareWages": float("-inf"),
        "socialSecurityWages": "1,200.50",
    })

    assert fields.wages is None
    assert fields.federal_tax_withheld is None
    assert fields.medicare_wages is None
    assert fields.social_security_wages == 1_200.50
