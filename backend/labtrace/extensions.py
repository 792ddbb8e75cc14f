# Overview: Flask extension instances for database and migrations.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
migrate = Migrate()

# Keys under app.extensions for the external collaborator ports
DOCUMENT_GENERATOR_KEY = "labtrace.document_generator"
EMAIL_SENDER_KEY = "labtrace.email_sender"
