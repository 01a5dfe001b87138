# crm/config/__init__.py
from __future__ import annotations

"""
crm.config is a PACKAGE.

- Company identity lives in: crm.config.company
- Runtime settings live in: crm.settings
"""

from .company import company_context

__all__ = ["company_context"]
