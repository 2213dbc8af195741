# Overview: Shared Flask extension instances; create_app binds them, models and services import db from here.

from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
migrate = Migrate()
