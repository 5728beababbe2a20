from flask import Flask, jsonify
from flask_cors import CORS
import logging
import os
from dotenv import load_dotenv
from datetime import timedelta

from extensions import db, migrate, jwt, mail, socketio, scheduler, notifier, geocoder
from errors import PlatformError

load_dotenv()


def _env_flag(name, default):
    return os.getenv(name, default).lower() in ('1', 'true', 'yes')


def create_app(config_overrides=None):
    """
    The Application Factory.
    `config_overrides` is applied before the extensions bind, so tests can
    point the app at a throwaway database.
    """
    app = Flask(__name__)

    # --- CONFIGURATION ---
    app.config['SECRET_KEY'] = os.getenv('SECRET_KEY', 'default_secret_key')
    # Fix Postgres URL for SQLAlchemy
    database_url = os.getenv('DATABASE_URL', 'sqlite:///food_distribution.db')
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)
    app.config['SQLALCHEMY_DATABASE_URI'] = database_url
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['JWT_SECRET_KEY'] = os.getenv('JWT_SECRET_KEY', 'fallback-secret-key')
    app.config['JWT_ACCESS_TOKEN_EXPIRES'] = timedelta(minutes=25)

    # --- EMAIL CONFIGURATION ---
    app.config['MAIL_SERVER'] = os.getenv('MAIL_SERVER', 'smtp.gmail.com')
    app.config['MAIL_PORT'] = int(os.getenv('MAIL_PORT', 587))
    app.config['MAIL_USE_TLS'] = _env_flag('MAIL_USE_TLS', 'true')
    app.config['MAIL_USERNAME'] = os.getenv('MAIL_USERNAME')
    app.config['MAIL_PASSWORD'] = os.getenv('MAIL_PASSWORD')
    app.config['MAIL_DEFAULT_SENDER'] = os.getenv('MAIL_USERNAME') or 'noreply@food-distribution.local'

    # --- MATCHING & LIFECYCLE ---
    app.config['MATCH_RADIUS_MILES'] = float(os.getenv('MATCH_RADIUS_MILES', 50))
    app.config['MATCH_RECIPIENT_LIMIT'] = int(os.getenv('MATCH_RECIPIENT_LIMIT', 50))
    app.config['EXPIRY_SWEEP_MINUTES'] = int(os.getenv('EXPIRY_SWEEP_MINUTES', 5))
    app.config['PICKUP_REMINDER_HOUR'] = int(os.getenv('PICKUP_REMINDER_HOUR', 9))
    app.config['LISTING_MAX_LIMIT'] = int(os.getenv('LISTING_MAX_LIMIT', 100))
    app.config['LISTING_GEO_CAP'] = int(os.getenv('LISTING_GEO_CAP', 500))
    app.config['NOTIFICATIONS_ASYNC'] = _env_flag('NOTIFICATIONS_ASYNC', 'true')
    app.config['SCHEDULER_API_ENABLED'] = False

    # --- GEOCODER ---
    app.config['GEOCODER_URL'] = os.getenv('GEOCODER_URL', 'https://nominatim.openstreetmap.org')
    app.config['GEOCODER_USER_AGENT'] = os.getenv('GEOCODER_USER_AGENT', 'food-distribution-platform/1.0')
    app.config['GEOCODER_TIMEOUT'] = float(os.getenv('GEOCODER_TIMEOUT', 12))

    app.config['LOG_LEVEL'] = os.getenv('LOG_LEVEL', 'INFO').upper()

    if config_overrides:
        app.config.update(config_overrides)

    # --- LOGGING ---
    logging.basicConfig(format='%(asctime)s %(levelname)s [%(name)s] %(message)s')
    logging.getLogger().setLevel(app.config['LOG_LEVEL'])
    app.logger.setLevel(app.config['LOG_LEVEL'])

    # --- INITIALIZE EXTENSIONS ---
    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    mail.init_app(app)
    socketio.init_app(app)
    notifier.init_app(app)
    geocoder.init_app(app)
    # Note: We init scheduler here, but start it in __main__
    scheduler.init_app(app)

    # --- CORS CONFIGURATION ---
    CORS(app, resources={
        r"/api/*": {
            "origins": os.getenv('CORS_ORIGINS', 'http://localhost:3000').split(','),
            "methods": ["GET", "POST", "PATCH", "PUT", "DELETE", "OPTIONS"],
            "allow_headers": ["Content-Type", "Authorization", "X-Requested-With"],
            "supports_credentials": True
        }
    })

    # --- ERROR HANDLING ---
    @app.errorhandler(PlatformError)
    def handle_platform_error(error):
        return jsonify(error.to_dict()), error.status_code

    # --- REGISTER BLUEPRINTS ---
    # Import inside the function to avoid circular imports
    from routes.donations import donations_bp
    from routes.user import user_bp
    from routes.admin import admin_bp

    app.register_blueprint(donations_bp)
    app.register_blueprint(user_bp)
    app.register_blueprint(admin_bp)

    return app


# --- ENTRY POINT ---
# This only runs if you type 'python app.py'
if __name__ == "__main__":
    from scheduler import start_scheduler

    app = create_app()
    with app.app_context():
        db.create_all()

    # Start the Scheduler only when running the server (not during tests)
    start_scheduler(app)

    socketio.run(app, debug=os.getenv('FLASK_DEBUG') == '1')
