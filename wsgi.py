"""
WSGI and Flask-Migrate / Alembic entry point.

Usage:
    flask --app wsgi run
    flask --app wsgi issue-token <auth_id>
    flask --app wsgi run-survey-scheduler
"""

from hub import create_app

app = create_app()
