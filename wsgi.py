"""
WSGI / Flask-Migrate entry point.

Usage:
    gunicorn wsgi:app
    flask db init                      # once, creates migrations/
    flask db migrate -m "description"
    flask db upgrade
    flask create-admin --email admin@pmc.gov.in --password ...
"""

from pmcrms import create_app

app = create_app()
