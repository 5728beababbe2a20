from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_jwt_extended import JWTManager
from flask_mail import Mail
from flask_socketio import SocketIO
from flask_apscheduler import APScheduler

from services.notifications import NotificationDispatcher
from services.geocoder import Geocoder

# Process-wide resources. Created once here, bound to the app in create_app().
db = SQLAlchemy()
migrate = Migrate()
jwt = JWTManager()
mail = Mail()
socketio = SocketIO(cors_allowed_origins="*", async_mode="threading")
scheduler = APScheduler()

# Collaborators handed to the lifecycle services
notifier = NotificationDispatcher(mail, socketio)
geocoder = Geocoder()
