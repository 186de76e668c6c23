"""
Flask CLI / Flask-Migrate entry point.

Usage:
    FLASK_APP=wsgi flask db upgrade
    FLASK_APP=wsgi flask audit
    FLASK_APP=wsgi flask run-job dedup_batch_cleanup
"""

from activity_core import create_app

app = create_app()
