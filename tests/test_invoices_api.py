"""
Invoice HTTP surface under /api: payload shapes, status codes and the PDF download.
"""
from datetime import date, timedelta

import pytest

DUE = (date.today() + timedelta(days=14)).isoformat()


@pytest.fixture
def billed_client(employee, make_client, make_expense):
    client_id = make_client(employee, name="Acme Ltd")
    a = make_expense(client_id, 100, employee, description="Discovery workshop")
    b = make_expense(client_id, 250, employee, description="Hosting (Q3)")
    return client_id, a, b


@pytest.fixture
def as_employee(api, login, employee):
    login(api, employee)
    return api


def _generate(http, client_id, **body):
    body.setdefault("dueDate", DUE)
    return http.post(f"/api/clients/{client_id}/invoices/generate", json=body)


class TestGenerateEndpoint:

    def test_requires_login(self, api, billed_client):
        resp = _generate(api, billed_client[0])

        assert resp.status_code == 401
        assert resp.get_json() == {"success": False, "message": "Access denied. Please log in."}

    def test_generates_invoice(self, as_employee, billed_client):
        client_id, a, b = billed_client

        resp = _generate(as_employee, client_id, notes="Thanks")

        assert resp.status_code == 201
        body = resp.get_json()
        assert body["success"] is True
        data = body["data"]
        assert data["invoiceNumber"] == "INV-000001"
        assert data["totalAmount"] == 350
        assert data["status"] == "draft"
        assert data["notes"] == "Thanks"
        assert data["clientId"]["name"] == "Acme Ltd"
        assert [e["_id"] for e in data["expenses"]] == [a, b]

    def test_second_run_has_nothing_to_bill(self, as_employee, billed_client):
        _generate(as_employee, billed_client[0])

        resp = _generate(as_employee, billed_client[0])

        assert resp.status_code == 400
        body = resp.get_json()
        assert body["success"] is False
        assert body["message"].startswith("No uninvoiced expenses found for this client")

    def test_missing_due_date(self, as_employee, billed_client):
        resp = as_employee.post(f"/api/clients/{billed_client[0]}/invoices/generate", json={})

        assert resp.status_code == 400
        assert resp.get_json()["message"] == "Due date is required"

    def test_other_employee_is_forbidden(self, api, login, other_employee, billed_client):
        login(api, other_employee)

        resp = _generate(api, billed_client[0])

        assert resp.status_code == 403
        assert resp.get_json()["success"] is False

    def test_selected_expenses(self, as_employee, billed_client):
        client_id, _, b = billed_client

        resp = _generate(as_employee, client_id, selectedExpenseIds=[b])

        assert resp.status_code == 201
        assert resp.get_json()["data"]["totalAmount"] == 250


class TestInvoiceEndpoints:

    @pytest.fixture
    def invoice_id(self, as_employee, billed_client):
        return _generate(as_employee, billed_client[0]).get_json()["data"]["_id"]

    def test_list_client_invoices(self, as_employee, billed_client, invoice_id):
        client_id, a, b = billed_client

        resp = as_employee.get(f"/api/clients/{client_id}/invoices")

        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert [inv["_id"] for inv in data] == [invoice_id]
        assert data[0]["expenses"] == [a, b]

    def test_get_invoice(self, as_employee, invoice_id):
        resp = as_employee.get(f"/api/invoices/{invoice_id}")

        assert resp.status_code == 200
        assert resp.get_json()["data"]["_id"] == invoice_id

    def test_get_unknown_invoice(self, as_employee):
        resp = as_employee.get("/api/invoices/9999")

        assert resp.status_code == 404
        assert resp.get_json() == {"success": False, "message": "Invoice not found"}

    def test_status_flow(self, as_employee, invoice_id):
        sent = as_employee.patch(f"/api/invoices/{invoice_id}/status", json={"status": "sent"})
        assert sent.status_code == 200
        assert sent.get_json()["data"]["status"] == "sent"

        back = as_employee.patch(f"/api/invoices/{invoice_id}/status", json={"status": "draft"})
        assert back.status_code == 400

        bogus = as_employee.patch(f"/api/invoices/{invoice_id}/status", json={"status": "void"})
        assert bogus.status_code == 400
        assert bogus.get_json()["message"] == "Invalid status"

    def test_delete_draft(self, as_employee, billed_client, invoice_id):
        resp = as_employee.delete(f"/api/invoices/{invoice_id}")

        assert resp.status_code == 200
        assert resp.get_json()["success"] is True

        expenses = as_employee.get(f"/api/clients/{billed_client[0]}/expenses").get_json()["data"]
        assert all(e["isInvoiced"] is False and e["invoiceId"] is None for e in expenses)

    def test_delete_sent_is_rejected(self, as_employee, invoice_id):
        as_employee.patch(f"/api/invoices/{invoice_id}/status", json={"status": "sent"})

        resp = as_employee.delete(f"/api/invoices/{invoice_id}")

        assert resp.status_code == 400
        assert resp.get_json()["message"] == "Only draft invoices can be deleted"

    def test_download_pdf(self, as_employee, invoice_id):
        resp = as_employee.get(f"/api/invoices/{invoice_id}/download")

        assert resp.status_code == 200
        assert resp.mimetype == "application/pdf"
        assert "attachment" in resp.headers["Content-Disposition"]
        assert 'filename="invoice-INV-000001.pdf"' in resp.headers["Content-Disposition"]
        assert resp.data.startswith(b"%PDF")

    def test_reset(self, as_employee, billed_client, invoice_id):
        client_id = billed_client[0]

        resp = as_employee.post(f"/api/clients/{client_id}/expenses/reset")

        assert resp.status_code == 200
        assert resp.get_json()["data"] == {"resetCount": 2, "deletedInvoices": 1}
        assert as_employee.get(f"/api/invoices/{invoice_id}").status_code == 404

        again = _generate(as_employee, client_id)
        assert again.status_code == 201
        assert again.get_json()["data"]["totalAmount"] == 350
