"""
NIA Excellence Hub
SQLAlchemy database handle shared by every model module.

Model modules import ``db`` from here; ``hub.create_app`` imports each
module so that ``db.create_all()`` and Alembic see the full metadata.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
