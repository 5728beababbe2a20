import logging
import os

from flask_migrate import upgrade

from extensions import db
from seed import seed_admin

logger = logging.getLogger(__name__)


def deploy(app):
    """
    PRODUCTION DEPLOY SCRIPT
    1. Brings the schema up to date (migrations if present, else create_all)
    2. Seeds the admin (only if missing)
    """
    with app.app_context():
        # --- PART 1: SCHEMA ---
        migrations_dir = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'migrations')
        if os.path.isdir(migrations_dir):
            logger.info("🔄 Applying database migrations...")
            upgrade(directory=migrations_dir)
        else:
            logger.info("🔄 No migrations directory, creating tables...")
            db.create_all()

        # --- PART 2: SEED ADMIN (Conditional) ---
        _, created = seed_admin(db.session)
        logger.info("✅ Deploy complete (admin %s).", "created" if created else "already present")
        return created


if __name__ == "__main__":
    from app import create_app
    deploy(create_app())
