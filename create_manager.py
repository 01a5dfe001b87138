import os

from crm import create_app
from crm.constants.roles import ROLE_MANAGER
from crm.extensions import db
from crm.models import User
from crm.utils.passwords import hash_password, normalize_email

EMAIL = normalize_email(os.environ.get("MANAGER_EMAIL", "manager@crmsystem.com"))
PASSWORD = os.environ.get("MANAGER_PASSWORD")
NAME = os.environ.get("MANAGER_NAME", "CRM Manager")

if not PASSWORD:
    raise SystemExit("Set MANAGER_PASSWORD before running this script.")

app = create_app()

with app.app_context():
    existing = User.query.filter_by(email=EMAIL).first()
    if existing:
        print("🔁 Promoting existing user to manager...")
        existing.role = ROLE_MANAGER
        existing.is_active = True
        existing.password_hash = hash_password(PASSWORD)
    else:
        print("🔐 Creating new manager user...")
        db.session.add(User(
            name=NAME,
            email=EMAIL,
            role=ROLE_MANAGER,
            password_hash=hash_password(PASSWORD),
        ))

    db.session.commit()

    print("✅ Manager ready:", EMAIL)
