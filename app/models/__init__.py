"""
Deliverable Review Platform
Model package — owns the shared Flask-SQLAlchemy instance.

Every model module imports ``db`` from here:

    from app.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
