import structlog
from dotenv import load_dotenv

from forecasting.auth import hash_password
from forecasting.db import engine, Base, SessionLocal
from forecasting.logging_config import configure_logging
from forecasting import models
from forecasting.models import Role, MarketSegment

load_dotenv()

logger = structlog.get_logger()

DEFAULT_CONFIG = {
    "forecast_reminder_days": ("7", "Days before a submission deadline to remind contributors"),
    "max_projects_per_forecast": ("100", "Upper bound on projects in a single forecast"),
}


def create_db_and_admin(email: str, password: str, first_name: str = "System", last_name: str = "Administrator"):
    # create tables (SQLAlchemy)
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        for key, (value, description) in DEFAULT_CONFIG.items():
            if not db.query(models.SystemConfig).filter(models.SystemConfig.key == key).first():
                db.add(models.SystemConfig(key=key, value=value, description=description))
        db.commit()

        email = email.strip().lower()
        existing = db.query(models.User).filter(models.User.email == email).first()
        if existing:
            logger.info("admin_exists", email=email)
            return existing
        admin = models.User(
            email=email,
            first_name=first_name,
            last_name=last_name,
            password_hash=hash_password(password),
            role=Role.ADMIN,
            market_segments=[s.value for s in MarketSegment],
            is_active=True,
        )
        db.add(admin)
        db.commit()
        db.refresh(admin)
        logger.info("admin_created", email=admin.email, user_id=admin.id)
        return admin
    finally:
        db.close()


if __name__ == "__main__":
    import getpass
    configure_logging()
    email = input("Admin email to create (e.g. admin@example.com): ").strip() or "admin@example.com"
    pwd = getpass.getpass("Admin password: ")
    create_db_and_admin(email, pwd)
