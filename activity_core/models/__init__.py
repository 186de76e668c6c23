"""
Activity Core
SQLAlchemy database instance shared by all models.

Usage:
    from activity_core.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
