# crm/invoices.py
from __future__ import annotations

from flask import Blueprint, current_app, jsonify
from flask_login import login_required

from .services import invoicing
from .utils.guards import current_actor
from .utils.invoice_pdf import invoice_filename, render_invoice_pdf
from .utils.parsing import json_body

invoices_bp = Blueprint("invoices", __name__, url_prefix="/api")


# =========================================================
# Generate / List (client scoped)
# =========================================================
@invoices_bp.route("/clients/<int:client_id>/invoices/generate", methods=["POST"])
@login_required
def generate_invoice(client_id):
    data = json_body()
    invoice = invoicing.generate_invoice(
        client_id,
        data.get("dueDate"),
        data.get("notes"),
        data.get("selectedExpenseIds"),
        current_actor(),
    )
    return jsonify({
        "success": True,
        "message": "Invoice generated successfully",
        "data": invoice.to_dict(),
    }), 201


@invoices_bp.route("/clients/<int:client_id>/invoices", methods=["GET"])
@login_required
def list_client_invoices(client_id):
    rows = invoicing.list_client_invoices(client_id, current_actor())
    return jsonify({"success": True, "data": [inv.to_dict(with_expenses=False) for inv in rows]})


# =========================================================
# Single invoice
# =========================================================
@invoices_bp.route("/invoices/<int:invoice_id>", methods=["GET"])
@login_required
def get_invoice(invoice_id):
    invoice = invoicing.get_invoice(invoice_id, current_actor())
    return jsonify({"success": True, "data": invoice.to_dict()})


@invoices_bp.route("/invoices/<int:invoice_id>/status", methods=["PATCH"])
@login_required
def update_invoice_status(invoice_id):
    invoice = invoicing.update_status(invoice_id, json_body().get("status"), current_actor())
    return jsonify({
        "success": True,
        "message": "Invoice status updated successfully",
        "data": invoice.to_dict(),
    })


@invoices_bp.route("/invoices/<int:invoice_id>", methods=["DELETE"])
@login_required
def delete_invoice(invoice_id):
    invoicing.delete_invoice(invoice_id, current_actor())
    return jsonify({"success": True, "message": "Invoice deleted successfully"})


@invoices_bp.route("/invoices/<int:invoice_id>/download", methods=["GET"])
@login_required
def download_invoice(invoice_id):
    invoice = invoicing.get_invoice(invoice_id, current_actor())
    pdf = render_invoice_pdf(invoice, currency=current_app.config.get("CURRENCY_LABEL", "Rs"))

    return current_app.response_class(
        pdf,
        mimetype="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{invoice_filename(invoice)}"'},
    )


# =========================================================
# Administrative reset
# =========================================================
@invoices_bp.route("/clients/<int:client_id>/expenses/reset", methods=["POST"])
@login_required
def reset_invoiced_expenses(client_id):
    result = invoicing.reset_invoiced_expenses(client_id, current_actor())
    return jsonify({
        "success": True,
        "message": f"Reset {result['resetCount']} expenses and deleted {result['deletedInvoices']} invoices",
        "data": result,
    })
