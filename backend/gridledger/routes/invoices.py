# Overview: Flask API routes for received invoices; saves, status changes and invoice parsing.

from flask import Blueprint, current_app, jsonify, request

from ..decorators import current_context, envelope_response, json_body, with_user
from ..services import invoice_service
from ..services.inference_service import UpstreamFailure
from ..validation import MalformedInput


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


@invoices_bp.get("")
@with_user
def list_invoices_route():
    try:
        return jsonify({"items": invoice_service.list_invoices(current_context())})
    except Exception:
        current_app.logger.exception("Failed to list invoices")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("")
@with_user
def save_invoice_route():
    """
    Create or rewrite an invoice.

    Request body:
    {
        "id": "INV-0315101500",      // optional; rewrites keep the stored status
        "construction_id": "0000001-00",
        "supplier": "...", "date": "2024/03/15",
        "amount": 110000, "offset": 0, ...
    }
    """
    result = invoice_service.save_invoice(current_context(), json_body())
    return envelope_response(result)


@invoices_bp.post("/<invoice_id>/status")
@with_user
def update_status_route(invoice_id):
    data = json_body() or {}
    status = data.get("status", "") if isinstance(data, dict) else ""
    result = invoice_service.update_invoice_status(current_context(), invoice_id, status)
    return envelope_response(result)


@invoices_bp.get("/files")
@with_user
def list_files_route():
    try:
        return jsonify({"items": invoice_service.list_invoice_files(current_context())})
    except MalformedInput as e:
        return jsonify({"error": str(e)}), 400


@invoices_bp.post("/files/<name>/parse")
@with_user
def parse_file_route(name):
    """Parse one file from the invoice input folder."""
    try:
        return jsonify(invoice_service.parse_invoice_file(current_context(), name)), 200
    except (MalformedInput, invoice_service.UnsupportedInvoiceFile) as e:
        return jsonify({"error": str(e)}), 400
    except UpstreamFailure as e:
        return jsonify({"error": str(e)}), 502
    except Exception:
        current_app.logger.exception("Invoice parsing failed")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/parse")
@with_user
def parse_upload_route():
    """
    Parse an uploaded invoice.

    multipart/form-data with a "file" part (text, image or PDF), or a JSON
    body {"text": "..."} for a pasted text invoice.
    """
    upload = request.files.get("file")
    try:
        if upload is None:
            data = json_body() or {}
            content = data.get("text", "") if isinstance(data, dict) else ""
            return jsonify(invoice_service.parse_invoice_text(content)), 200

        raw = upload.read()
        mime = upload.mimetype or ""
        if "text" in mime or (upload.filename or "").lower().endswith(".txt"):
            return jsonify(invoice_service.parse_invoice_text(invoice_service.decode_text_bytes(raw))), 200
        if "image" in mime or "pdf" in mime:
            return jsonify(invoice_service.parse_invoice_image(current_context(), raw, mime)), 200
        return jsonify({"error": f"Unsupported file type: {mime}"}), 400
    except UpstreamFailure as e:
        return jsonify({"error": str(e)}), 502
    except Exception:
        current_app.logger.exception("Invoice parsing failed")
        return jsonify({"error": "Internal server error"}), 500
