# crm/constants/roles.py
from __future__ import annotations

ROLE_MANAGER = "manager"
ROLE_EMPLOYEE = "employee"

ROLES = {
    ROLE_MANAGER: "Manager",
    ROLE_EMPLOYEE: "Employee",
}

# Roles allowed to act on every client, not only the ones assigned to them
ELEVATED_ROLES = {ROLE_MANAGER}


def normalize_role(role: str | None) -> str:
    return (role or "").strip().lower().replace("-", "_")
