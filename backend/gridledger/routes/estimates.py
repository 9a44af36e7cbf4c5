# Overview: Flask API routes for estimates; parses input and returns JSON responses.

"""
Estimate Routes

The acting user is taken from the X-User-Email header and recorded as the
creator of derived orders.

Write routes answer the envelope {success, message?, id?, ...}; the HTTP
status follows the envelope's failure reason (see decorators.REASON_STATUS).
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import current_context, envelope_response, json_body, with_user
from ..services import estimate_service
from ..services.inference_service import UpstreamFailure
from ..validation import MalformedInput


estimates_bp = Blueprint("estimates", __name__, url_prefix="/api/estimates")


@estimates_bp.get("")
@with_user
def list_estimates_route():
    """All estimates with line totals, newest first."""
    try:
        return jsonify({"items": estimate_service.list_drafts(current_context())})
    except Exception:
        current_app.logger.exception("Failed to list estimates")
        return jsonify({"error": "Internal server error"}), 500


@estimates_bp.get("/active")
@with_user
def active_projects_route():
    try:
        return jsonify({"items": estimate_service.list_active_projects(current_context())})
    except Exception:
        current_app.logger.exception("Failed to list active projects")
        return jsonify({"error": "Internal server error"}), 500


@estimates_bp.get("/history")
@with_user
def client_history_route():
    client = request.args.get("client", "")
    try:
        return jsonify({"items": estimate_service.client_history(current_context(), client)})
    except Exception:
        current_app.logger.exception("Failed to load client history")
        return jsonify({"error": "Internal server error"}), 500


@estimates_bp.get("/<estimate_id>")
@with_user
def get_estimate_route(estimate_id):
    estimate = estimate_service.get_estimate(current_context(), estimate_id)
    if estimate is None:
        return jsonify({"error": "Estimate not found"}), 404
    return jsonify(estimate)


@estimates_bp.post("")
@with_user
def save_estimate_route():
    """
    Create or rewrite an estimate.

    Request body:
    {
        "header": {"id": "0000001-00", "client": "...", "project": "...", ...},
        "items": [{"product": "...", "qty": 1, "cost": 100, "price": 150, "vendor": "..."}]
    }
    The pair may also be wrapped as {"estimate": {...}}.
    """
    payload = json_body()
    result = estimate_service.save_estimate(current_context(), payload, user_email=g.user_email)
    return envelope_response(result)


@estimates_bp.post("/document")
@with_user
def save_estimate_document_route():
    """Save the estimate, then publish its quote document; returns {url}."""
    payload = json_body()
    result = estimate_service.save_estimate_document(current_context(), payload, user_email=g.user_email)
    return envelope_response(result)


@estimates_bp.post("/<estimate_id>/bill")
@with_user
def issue_bill_route(estimate_id):
    result = estimate_service.issue_bill(current_context(), estimate_id)
    return envelope_response(result)


@estimates_bp.post("/predict-price")
@with_user
def predict_price_route():
    """Predict a unit price for {product, spec} from recent estimate lines."""
    data = json_body() or {}
    try:
        prediction = estimate_service.predict_unit_price(
            current_context(), data.get("product", ""), data.get("spec", "")
        )
        return jsonify(prediction), 200
    except MalformedInput as e:
        return jsonify({"error": str(e)}), 400
    except UpstreamFailure as e:
        return jsonify({"error": str(e)}), 502
    except Exception:
        current_app.logger.exception("Price prediction failed")
        return jsonify({"error": "Internal server error"}), 500
