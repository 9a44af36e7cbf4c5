# Overview: Flask API routes for master data; clients, vendors, product catalog and estimate sets.

from flask import Blueprint, current_app, jsonify, request

from ..decorators import current_context, with_user
from ..services import master_service


masters_bp = Blueprint("masters", __name__, url_prefix="/api/masters")


@masters_bp.get("")
@with_user
def get_masters_route():
    """{clients: str[], sets: str[], vendors: Vendor[]}"""
    try:
        return jsonify(master_service.get_masters(current_context()))
    except Exception:
        current_app.logger.exception("Failed to load masters")
        return jsonify({"error": "Internal server error"}), 500


@masters_bp.get("/products")
@with_user
def products_route():
    try:
        return jsonify({"items": master_service.unified_products(current_context())})
    except Exception:
        current_app.logger.exception("Failed to load products")
        return jsonify({"error": "Internal server error"}), 500


@masters_bp.get("/sets")
@with_user
def search_sets_route():
    keyword = request.args.get("q", "")
    return jsonify({"items": master_service.search_sets(current_context(), keyword)})


@masters_bp.get("/sets/<path:name>")
@with_user
def set_details_route(name):
    return jsonify({"items": master_service.set_details(current_context(), name)})
