"""
SQLite persistence for users, tax profiles, documents, returns and payments.
"""

import json
import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .errors import DuplicateUserError
from .models import (
    Address, Dependent, DocumentType, ExtractedDocument, FilingStatus, Payment,
    PaymentStatus, ReturnStatus, TaxProfile, TaxReturnRecord, User, W2Fields,
)

logger = logging.getLogger(__name__)


def _timestamp(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


class FilingStore:
    """
    SQLite store for the filing workflow.

    Use ":memory:" as the path for a throwaway database.

    One connection is shared by every thread that uses the store (Flask
    serves requests on several). All access goes through ``_lock`` so a
    reader never sees another thread's transaction half done.
    """

    def __init__(self, database_path: str = "taxfiler.db"):
        self.database_path = database_path
        self._connection: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    @property
    def connection(self) -> sqlite3.Connection:
        """Get or create a database connection."""
        with self._lock:
            if self._connection is None:
                if self.database_path != ":memory:":
                    Path(self.database_path).parent.mkdir(parents=True, exist_ok=True)
                self._connection = sqlite3.connect(self.database_path, check_same_thread=False)
                self._connection.row_factory = sqlite3.Row
                self._connection.execute("PRAGMA foreign_keys = ON")
                self._create_tables()
            return self._connection

    def close(self) -> None:
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None

    def _create_tables(self) -> None:
        with self._connection:
            self._connection.executescript("""
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    email TEXT UNIQUE NOT NULL,
                    first_name TEXT NOT NULL DEFAULT '',
                    last_name TEXT NOT NULL DEFAULT '',
                    phone TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );

                CREATE TABLE IF NOT EXISTS tax_info (
                    user_id INTEGER PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
                    filing_status TEXT,
                    tax_classification TEXT NOT NULL DEFAULT 'individual',
                    ssn TEXT,
                    ein TEXT,
                    street_address TEXT,
                    city TEXT,
                    state TEXT,
                    zip_code TEXT,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );

                CREATE TABLE IF NOT EXISTS dependents (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    name TEXT NOT NULL,
                    ssn TEXT,
                    relationship TEXT,
                    date_of_birth TEXT
                );

                CREATE TABLE IF NOT EXISTS documents (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    document_type TEXT NOT NULL,
                    filename TEXT NOT NULL,
                    extracted_data TEXT NOT NULL,
                    extraction_status TEXT NOT NULL,
                    upload_date TIMESTAMP NOT NULL
                );

                CREATE TABLE IF NOT EXISTS tax_returns (
                    user_id INTEGER PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
                    form_1040_data TEXT,
                    status TEXT NOT NULL DEFAULT 'draft',
                    submission_date TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );

                CREATE TABLE IF NOT EXISTS payments (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    amount REAL NOT NULL,
                    provider_reference TEXT NOT NULL,
                    status TEXT NOT NULL,
                    created_at TIMESTAMP NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_documents_user ON documents(user_id, document_type);
                CREATE INDEX IF NOT EXISTS idx_payments_user ON payments(user_id);
            """)

    # ---- Users ----

    def create_user(self, email: str, first_name: str = "", last_name: str = "",
                    phone: Optional[str] = None) -> User:
        with self._lock:
            try:
                with self.connection:
                    cursor = self.connection.execute(
                        "INSERT INTO users (email, first_name, last_name, phone, created_at) "
                        "VALUES (?, ?, ?, ?, ?)",
                        (email.strip().lower(), first_name, last_name, phone, datetime.now().isoformat()),
                    )
            except sqlite3.IntegrityError:
                raise DuplicateUserError(f"User already exists with email {email}")
            return self.get_user(cursor.lastrowid)

    def get_user(self, user_id: int) -> Optional[User]:
        with self._lock:
            row = self.connection.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return User(
            id=row["id"],
            email=row["email"],
            first_name=row["first_name"],
            last_name=row["last_name"],
            phone=row["phone"],
            created_at=_timestamp(row["created_at"]),
        )

    # ---- Tax profile ----

    def save_tax_profile(self, user_id: int, profile: TaxProfile) -> None:
        """
        Upsert the profile and replace the dependent set in one transaction.

        If any dependent insert fails the previous profile and dependents
        stay in place.
        """
        with self._lock:
            conn = self.connection
            with conn:
                conn.execute(
                    """
                    INSERT INTO tax_info (
                        user_id, filing_status, tax_classification, ssn, ein,
                        street_address, city, state, zip_code, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(user_id) DO UPDATE SET
                        filing_status = excluded.filing_status,
                        tax_classification = excluded.tax_classification,
                        ssn = excluded.ssn,
                        ein = excluded.ein,
                        street_address = excluded.street_address,
                        city = excluded.city,
                        state = excluded.state,
                        zip_code = excluded.zip_code,
                        updated_at = excluded.updated_at
                    """,
                    (
                        user_id,
                        profile.filing_status.value if profile.filing_status else None,
                        profile.tax_classification or "individual",
                        profile.ssn,
                        profile.ein,
                        profile.address.street,
                        profile.address.city,
                        profile.address.state,
                        profile.address.zip_code,
                        datetime.now().isoformat(),
                    ),
                )
                conn.execute("DELETE FROM dependents WHERE user_id = ?", (user_id,))
                conn.executemany(
                    "INSERT INTO dependents (user_id, name, ssn, relationship, date_of_birth) "
                    "VALUES (?, ?, ?, ?, ?)",
                    [(user_id, d.name, d.ssn, d.relationship, d.date_of_birth) for d in profile.dependents],
                )
        logger.debug("Saved tax profile for user %s with %d dependents", user_id, len(profile.dependents))

    def get_tax_profile(self, user_id: int) -> Optional[TaxProfile]:
        with self._lock:
            row = self.connection.execute(
                "SELECT * FROM tax_info WHERE user_id = ?", (user_id,)
            ).fetchone()
            if row is None:
                return None
            dependent_rows = self.connection.execute(
                "SELECT * FROM dependents WHERE user_id = ? ORDER BY id", (user_id,)
            ).fetchall()
        return TaxProfile(
            filing_status=FilingStatus.parse(row["filing_status"]),
            tax_classification=row["tax_classification"],
            ssn=row["ssn"] or "",
            ein=row["ein"] or "",
            address=Address(
                street=row["street_address"] or "",
                city=row["city"] or "",
                state=row["state"] or "",
                zip_code=row["zip_code"] or "",
            ),
            dependents=[
                Dependent(
                    name=d["name"],
                    ssn=d["ssn"] or "",
                    relationship=d["relationship"] or "",
                    date_of_birth=d["date_of_birth"],
                )
                for d in dependent_rows
            ],
        )

    # ---- Documents ----

    def add_document(self, user_id: int, document: ExtractedDocument) -> ExtractedDocument:
        extracted = document.fields.to_field_map()
        if document.error:
            extracted["error"] = document.error
        upload_date = document.upload_date or datetime.now()
        with self._lock:
            with self.connection:
                cursor = self.connection.execute(
                    "INSERT INTO documents (user_id, document_type, filename, extracted_data, "
                    "extraction_status, upload_date) VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        user_id,
                        document.doc_type.value,
                        document.filename,
                        json.dumps(extracted),
                        document.extraction_status,
                        upload_date.isoformat(),
                    ),
                )
            row = self.connection.execute(
                "SELECT * FROM documents WHERE id = ?", (cursor.lastrowid,)
            ).fetchone()
        return self._row_to_document(row)

    def list_documents(self, user_id: int, doc_type: Optional[DocumentType] = None) -> List[ExtractedDocument]:
        """Documents for a user, newest first."""
        query = "SELECT * FROM documents WHERE user_id = ?"
        params: list = [user_id]
        if doc_type is not None:
            query += " AND document_type = ?"
            params.append(doc_type.value)
        query += " ORDER BY upload_date DESC, id DESC"
        with self._lock:
            rows = self.connection.execute(query, params).fetchall()
        return [self._row_to_document(row) for row in rows]

    def delete_document(self, user_id: int, document_id: int) -> bool:
        with self._lock:
            with self.connection:
                cursor = self.connection.execute(
                    "DELETE FROM documents WHERE user_id = ? AND id = ?", (user_id, document_id)
                )
            return cursor.rowcount > 0

    def _row_to_document(self, row: sqlite3.Row) -> ExtractedDocument:
        data = json.loads(row["extracted_data"])
        return ExtractedDocument(
            id=row["id"],
            doc_type=DocumentType(row["document_type"]),
            filename=row["filename"],
            fields=W2Fields.from_field_map(data),
            extraction_status=row["extraction_status"],
            error=data.get("error"),
            upload_date=_timestamp(row["upload_date"]),
        )

    # ---- Tax return ----

    def save_tax_return(self, user_id: int, form_1040: dict) -> Optional[TaxReturnRecord]:
        """
        Write the computed return; status always lands on review.

        A submitted return is never overwritten. Returns None when the
        stored return was already submitted and nothing was written.
        """
        with self._lock:
            with self.connection:
                cursor = self.connection.execute(
                    """
                    INSERT INTO tax_returns (user_id, form_1040_data, status, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(user_id) DO UPDATE SET
                        form_1040_data = excluded.form_1040_data,
                        status = excluded.status,
                        updated_at = excluded.updated_at
                    WHERE tax_returns.status != ?
                    """,
                    (user_id, json.dumps(form_1040), ReturnStatus.REVIEW.value, datetime.now().isoformat(),
                     ReturnStatus.SUBMITTED.value),
                )
            if cursor.rowcount == 0:
                return None
            return self.get_tax_return(user_id)

    def get_tax_return(self, user_id: int) -> TaxReturnRecord:
        """Stored return, or a draft placeholder when nothing was computed yet."""
        with self._lock:
            row = self.connection.execute(
                "SELECT * FROM tax_returns WHERE user_id = ?", (user_id,)
            ).fetchone()
        if row is None:
            return TaxReturnRecord(user_id=user_id)
        return TaxReturnRecord(
            user_id=user_id,
            form_1040=json.loads(row["form_1040_data"]) if row["form_1040_data"] else None,
            status=ReturnStatus(row["status"]),
            submission_date=_timestamp(row["submission_date"]),
        )

    def mark_submitted(self, user_id: int) -> bool:
        """Move a reviewed return to submitted. False if nothing was updated."""
        with self._lock:
            with self.connection:
                cursor = self.connection.execute(
                    "UPDATE tax_returns SET status = ?, submission_date = ?, updated_at = ? "
                    "WHERE user_id = ? AND status = ? AND form_1040_data IS NOT NULL",
                    (
                        ReturnStatus.SUBMITTED.value,
                        datetime.now().isoformat(),
                        datetime.now().isoformat(),
                        user_id,
                        ReturnStatus.REVIEW.value,
                    ),
                )
            return cursor.rowcount > 0

    # ---- Payments ----

    def add_payment(self, user_id: int, payment: Payment) -> Payment:
        created_at = payment.created_at or datetime.now()
        with self._lock:
            with self.connection:
                cursor = self.connection.execute(
                    "INSERT INTO payments (user_id, amount, provider_reference, status, created_at) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (user_id, payment.amount, payment.provider_reference, payment.status.value,
                     created_at.isoformat()),
                )
            payment_id = cursor.lastrowid
        return Payment(
            id=payment_id,
            amount=payment.amount,
            provider_reference=payment.provider_reference,
            status=payment.status,
            created_at=created_at,
        )

    def list_payments(self, user_id: int) -> List[Payment]:
        """Payment history, newest first."""
        with self._lock:
            rows = self.connection.execute(
                "SELECT * FROM payments WHERE user_id = ? ORDER BY created_at DESC, id DESC", (user_id,)
            ).fetchall()
        return [
            Payment(
                id=row["id"],
                amount=row["amount"],
                provider_reference=row["provider_reference"],
                status=PaymentStatus(row["status"]),
                created_at=_timestamp(row["created_at"]),
            )
            for row in rows
        ]
