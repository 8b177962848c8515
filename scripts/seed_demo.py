"""
Usuarios demo (admin + cliente) y una compra con features.
Idempotente: se puede correr varias veces.

    python -m scripts.seed_demo
"""
from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from clientdesk.db.session import SessionLocal
from clientdesk.models.auth import User, UserRole
from clientdesk.models.purchase import Purchase
from clientdesk.security.jwt import create_access_token
from clientdesk.services.directory_service import register_purchase

DEMO_FEATURES = ["Logo Design", "Brand Guidelines", "Landing Page"]


def _get_or_create_user(db: Session, email: str, full_name: str, role: UserRole) -> User:
    user = db.scalar(select(User).where(User.email == email))
    if user:
        return user
    user = User(email=email, full_name=full_name, role=role, is_active=True)
    db.add(user)
    db.flush()
    print(f"➕ Usuario creado: {email} ({role.value})")
    return user


def run() -> None:
    db: Session = SessionLocal()
    try:
        admin = _get_or_create_user(db, "admin@clientdesk.local", "Studio Admin", UserRole.admin)
        client = _get_or_create_user(db, "client@clientdesk.local", "Demo Client", UserRole.client)

        purchase = db.scalar(select(Purchase).where(Purchase.client_id == client.id))
        if not purchase:
            purchase = register_purchase(
                db, client_id=client.id, package_name="Brand Starter", features=DEMO_FEATURES
            )
            print(f"🛒 Compra creada: #{purchase.id} con {len(DEMO_FEATURES)} features")

        db.commit()
        print("✅ Seed listo.")
        print(f"   admin token : {create_access_token(admin.id)}")
        print(f"   client token: {create_access_token(client.id)}")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    run()
