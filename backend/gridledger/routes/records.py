# Overview: Flask API route for deleting any grouped record by id.

from flask import Blueprint, request

from ..decorators import current_context, envelope_response, with_user
from ..services import record_service


records_bp = Blueprint("records", __name__, url_prefix="/api/records")


@records_bp.delete("/<record_id>")
@with_user
def delete_record_route(record_id):
    """
    Delete an estimate, order, invoice, deposit or payment by id.

    Query parameters:
    - type: estimate | order | invoice | deposit | payment (optional;
      without it every store is swept)

    Returns:
    - 200 {success: true, id}
    - 400 {success: false, message} for an unknown type
    - 404 {success: false, message: "Not found"}
    - 503 {success: false, message: "Busy"}
    """
    result = record_service.delete_record(current_context(), record_id, request.args.get("type"))
    return envelope_response(result)
