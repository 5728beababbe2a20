import logging

from models import User

logger = logging.getLogger(__name__)

ADMIN_EMAIL = 'admin@food-distribution.local'


def seed_admin(session, email=ADMIN_EMAIL):
    """ Creates the platform admin once. Returns (user, created). """
    # 1. Check if Admin exists
    existing = session.query(User).filter_by(email=email).first()
    if existing:
        logger.info("✅ Admin user already exists. Skipping.")
        return existing, False

    # 2. Create Admin if not found
    admin = User(
        email=email,
        first_name='Platform',
        last_name='Admin',
        organization='Food Distribution HQ',
        role='admin',
        is_verified=True,
        is_active=True,
        email_notifications=False,
    )
    session.add(admin)
    session.commit()
    logger.info("✅ Admin created: %s", email)
    return admin, True


if __name__ == "__main__":
    from app import create_app
    from extensions import db

    app = create_app()
    with app.app_context():
        db.create_all()
        seed_admin(db.session)
