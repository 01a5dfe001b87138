# crm/config/company.py
from __future__ import annotations

"""
Company identity printed on generated documents (invoice PDFs).
Override with environment variables per deployment.
"""

import os

COMPANY_NAME = os.environ.get("COMPANY_NAME", "CRM System")

# Address lines, PDF-friendly (one entry per printed line)
COMPANY_ADDRESS_LINES = [
    line.strip()
    for line in os.environ.get(
        "COMPANY_ADDRESS", "123 Business Street|Business City, BC 12345"
    ).split("|")
    if line.strip()
]

COMPANY_EMAIL = os.environ.get("COMPANY_EMAIL", "contact@crmsystem.com")

INVOICE_FOOTER = "Thank you for your business!"


def company_context() -> dict:
    return {
        "COMPANY_NAME": COMPANY_NAME,
        "COMPANY_ADDRESS_LINES": list(COMPANY_ADDRESS_LINES),
        "COMPANY_EMAIL": COMPANY_EMAIL,
        "INVOICE_FOOTER": INVOICE_FOOTER,
    }
