import os
from typing import Optional

from sqlalchemy.orm import Session

from telecare import models
from telecare.config import get_settings
from telecare.core.logging import setup_logging
from telecare.database import create_db_engine, create_session_factory, create_tables


def get_env(name: str, default: Optional[str] = None, required: bool = False) -> str:
    val = os.getenv(name, default)
    if required and not val:
        raise RuntimeError(f"Missing required env var: {name}")
    return val or ""


def upsert_admin(db: Session, external_id: str, email: Optional[str] = None, name: Optional[str] = None) -> str:
    """Make the identity ``external_id`` an ADMIN account; returns "created" or "updated"."""
    account = db.query(models.Account).filter(models.Account.external_id == external_id).first()

    if account:
        account.role = models.AccountRole.ADMIN
        account.verification_status = None
        if email:
            account.email = email
        if name:
            account.name = name
        action = "updated"
    else:
        account = models.Account(
            external_id=external_id,
            email=email,
            name=name,
            role=models.AccountRole.ADMIN,
            credits=0,
        )
        db.add(account)
        action = "created"

    db.commit()
    return action


def main():
    settings = get_settings()
    logger = setup_logging(settings)

    external_id = get_env("ADMIN_EXTERNAL_ID", required=True)
    email = get_env("ADMIN_EMAIL") or None
    name = get_env("ADMIN_NAME", "Administrator")

    engine = create_db_engine(settings)
    try:
        create_tables(engine)
        db = create_session_factory(engine)()
        try:
            action = upsert_admin(db, external_id, email=email, name=name)
        finally:
            db.close()
    finally:
        engine.dispose()
    logger.info("admin_account_seeded", action=action, external_id=external_id)


if __name__ == "__main__":
    main()
