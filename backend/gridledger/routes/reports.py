# Overview: Flask API routes for aggregate reports; project summaries, balances, analysis, ledgers and journals.

from flask import Blueprint, current_app, jsonify, request

from ..decorators import current_context, envelope_response, json_body, with_user
from ..services import aggregation_service, journal_service
from ..validation import MalformedInput, parse_flag


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


def _flag(name: str, default: bool = True) -> bool:
    return parse_flag(request.args.get(name), default, name=name)


@reports_bp.get("/projects")
@with_user
def project_summaries_route():
    try:
        return jsonify({"items": aggregation_service.project_summaries(current_context())})
    except Exception:
        current_app.logger.exception("Failed to build project summaries")
        return jsonify({"error": "Internal server error"}), 500


@reports_bp.get("/vendor-balance")
@with_user
def vendor_balance_route():
    """{total_order, total_paid, balance} for ?construction_id=&supplier=."""
    balance = aggregation_service.vendor_balance(
        current_context(),
        request.args.get("construction_id", ""),
        request.args.get("supplier", ""),
    )
    return jsonify(balance), 200


@reports_bp.get("/analysis/<year>")
@with_user
def analysis_route(year):
    try:
        return jsonify(aggregation_service.monthly_analysis(current_context(), year)), 200
    except MalformedInput as e:
        return jsonify({"error": str(e)}), 400


@reports_bp.get("/ledger/<estimate_id>")
@with_user
def ledger_route(estimate_id):
    try:
        return jsonify(aggregation_service.project_ledger(current_context(), estimate_id)), 200
    except Exception:
        current_app.logger.exception("Failed to build ledger")
        return jsonify({"error": "Internal server error"}), 500


@reports_bp.post("/ledger/<estimate_id>/document")
@with_user
def ledger_document_route(estimate_id):
    result = aggregation_service.publish_ledger(current_context(), estimate_id)
    return envelope_response(result)


@reports_bp.get("/journal/years")
@with_user
def journal_years_route():
    return jsonify({"items": journal_service.journal_years(current_context())})


@reports_bp.get("/journal/preview")
@with_user
def journal_preview_route():
    """
    Query parameters:
    - year, month: required
    - sales, purchases: include each side (default: true)
    """
    try:
        preview = journal_service.preview_journal(
            current_context(),
            request.args.get("year"),
            request.args.get("month"),
            include_sales=_flag("sales"),
            include_purchases=_flag("purchases"),
        )
        return jsonify(preview), 200
    except MalformedInput as e:
        return jsonify({"error": str(e)}), 400


@reports_bp.post("/journal/export")
@with_user
def journal_export_route():
    """
    Request body: {"year": 2024, "month": 3, "sales": true, "purchases": true}

    Returns {success, data (base64 CSV), filename, count}; an empty month
    answers success=false with message "対象データがありません".
    """
    data = json_body() or {}
    if not isinstance(data, dict):
        return jsonify({"error": "Invalid payload"}), 400
    try:
        result = journal_service.export_journal(
            current_context(),
            data.get("year"),
            data.get("month"),
            include_sales=parse_flag(data.get("sales"), True, name="sales"),
            include_purchases=parse_flag(data.get("purchases"), True, name="purchases"),
        )
    except MalformedInput as e:
        return jsonify({"error": str(e)}), 400
    return envelope_response(result)
