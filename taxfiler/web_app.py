"""JSON API for the guided filing workflow.

The caller is identified by the ``X-User-Id`` header; an authentication layer
in front of the app is expected to set it.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from flask import Flask, current_app, g, jsonify, request
from werkzeug.exceptions import HTTPException

from .config_loader import AppSettings
from .data_extractor import TaxDataExtractor
from .document_parser import DocumentParser
from .errors import FilingError, UnsupportedDocumentError
from .models import DocumentType
from .storage import FilingStore
from .workflow import FilingWorkflow, PaymentVerifier

logger = logging.getLogger(__name__)

UPLOAD_EXTENSIONS = DocumentParser.supported_extensions()


def _workflow() -> FilingWorkflow:
    return current_app.extensions["taxfiler"]


def _current_user_id() -> Optional[int]:
    raw = request.headers.get("X-User-Id", "")
    try:
        user_id = int(raw)
    except ValueError:
        return None
    if _workflow().store.get_user(user_id) is None:
        return None
    return user_id


def _document_type(value: str) -> DocumentType:
    try:
        return DocumentType(value.lower())
    except ValueError:
        raise UnsupportedDocumentError(f"Unknown document type: {value}")


def create_app(settings: Optional[AppSettings] = None, store: Optional[FilingStore] = None,
               extractor: Optional[TaxDataExtractor] = None,
               payment_verifier: Optional[PaymentVerifier] = None) -> Flask:
    """Build the Flask app around a FilingWorkflow."""
    settings = settings or AppSettings.from_env()
    store = store or FilingStore(settings.database_path)
    if settings.upload_dir:
        os.makedirs(settings.upload_dir, exist_ok=True)

    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = settings.max_upload_bytes
    app.extensions["taxfiler"] = FilingWorkflow(
        store, extractor=extractor, settings=settings, payment_verifier=payment_verifier,
    )

    @app.errorhandler(FilingError)
    def handle_filing_error(e: FilingError):
        return jsonify({"error": e.__class__.__name__, "message": str(e)}), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        return jsonify({"error": e.name, "message": e.description}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected(e: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return jsonify({"error": "InternalError", "message": "Something went wrong. Please try again."}), 500

    @app.before_request
    def load_user():
        g.user_id = None
        if request.path.startswith("/api/") and request.path != "/api/auth/register":
            g.user_id = _current_user_id()
            if g.user_id is None:
                return jsonify({"error": "Unauthorized", "message": "Unknown or missing user."}), 401
        return None

    @app.route("/health")
    def health():
        return jsonify({"status": "OK", "taxYear": _workflow().tax_year})

    # ---- Users ----

    @app.route("/api/auth/register", methods=["POST"])
    def register():
        data = request.get_json(silent=True) or {}
        user = _workflow().register_user(
            data.get("email", ""),
            data.get("firstName", ""),
            data.get("lastName", ""),
            data.get("phone"),
        )
        return jsonify({"message": "User registered successfully", "user": user.to_dict()}), 201

    # ---- Tax info ----

    @app.route("/api/tax/info", methods=["GET"])
    def get_tax_info():
        profile = _workflow().get_tax_info(g.user_id)
        return jsonify({"taxInfo": profile.to_dict() if profile else None})

    @app.route("/api/tax/info", methods=["PUT", "POST"])
    def update_tax_info():
        profile = _workflow().update_tax_info(g.user_id, request.get_json(silent=True) or {})
        return jsonify({"message": "Tax information updated successfully", "taxInfo": profile.to_dict()})

    # ---- Documents ----

    @app.route("/api/upload/w2", methods=["POST"])
    def upload_w2():
        upload = request.files.get("w2Document")
        if upload is None or not upload.filename:
            raise UnsupportedDocumentError("No file uploaded")
        safe_name = Path(upload.filename).name or "upload"
        suffix = Path(safe_name).suffix.lower()
        if suffix not in UPLOAD_EXTENSIONS:
            raise UnsupportedDocumentError("Only PDF, JPEG, PNG, CSV and XLSX files are allowed")

        fd, temp_path = tempfile.mkstemp(suffix=suffix, dir=settings.upload_dir)
        os.close(fd)
        try:
            upload.save(temp_path)
            document, result = _workflow().upload_document(g.user_id, temp_path, safe_name)
        finally:
            try:
                os.unlink(temp_path)
            except OSError:
                logger.warning("Could not remove temp upload %s", temp_path)

        return jsonify({
            "message": "W-2 uploaded and processed successfully",
            "document": document.to_dict(),
            "extractedData": result.field_map(),
            "extraction": {
                "status": result.status.value,
                "confidence": result.confidence,
                "lowConfidence": result.low_confidence,
                "warnings": result.warnings,
            },
        }), 201

    @app.route("/api/upload/documents", methods=["GET"])
    def list_documents():
        documents = _workflow().list_documents(g.user_id)
        return jsonify({"documents": [d.to_dict() for d in documents]})

    @app.route("/api/upload/documents/<doc_type>", methods=["GET"])
    def list_documents_by_type(doc_type):
        documents = _workflow().list_documents(g.user_id, _document_type(doc_type))
        return jsonify({"documents": [d.to_dict() for d in documents]})

    @app.route("/api/upload/documents/<int:document_id>", methods=["DELETE"])
    def delete_document(document_id):
        _workflow().delete_document(g.user_id, document_id)
        return jsonify({"message": "Document deleted successfully"})

    # ---- Form 1040 ----

    @app.route("/api/tax/generate-1040", methods=["POST"])
    def generate_1040():
        result = _workflow().generate_return(g.user_id)
        return jsonify({"message": "Form 1040 generated successfully", "form1040": result.to_dict()})

    @app.route("/api/tax/form-1040", methods=["GET"])
    def get_form_1040():
        return jsonify(_workflow().get_return(g.user_id).to_dict())

    @app.route("/api/tax/submit", methods=["POST"])
    def submit():
        submission_id = _workflow().submit_return(g.user_id)
        return jsonify({
            "message": "Tax return submitted successfully",
            "submissionId": submission_id,
            "status": "submitted",
        })

    # ---- Payments ----

    @app.route("/api/payment/fee", methods=["GET"])
    def filing_fee():
        return jsonify({"amount": settings.filing_fee, "currency": "usd"})

    @app.route("/api/payment/confirm", methods=["POST"])
    def confirm_payment():
        data = request.get_json(silent=True) or {}
        payment = _workflow().record_payment(
            g.user_id,
            data.get("amount"),
            data.get("paymentIntentId", ""),
        )
        return jsonify({
            "message": "Payment recorded",
            "payment": payment.to_dict(),
            "paymentStatus": payment.status.value,
        }), 201

    @app.route("/api/payment/history", methods=["GET"])
    def payment_history():
        payments = _workflow().payment_history(g.user_id)
        return jsonify({"payments": [p.to_dict() for p in payments]})

    @app.route("/api/payment/stats/summary", methods=["GET"])
    def payment_summary():
        return jsonify(_workflow().payment_summary(g.user_id))

    @app.route("/api/progress", methods=["GET"])
    def progress():
        return jsonify(_workflow().progress(g.user_id).to_dict())

    return app


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    create_app().run(host="0.0.0.0", port=5000)
