"""
Database models package.

``db`` is the single Flask-SQLAlchemy handle shared by every model module
and service. Model modules import it from here:

    from portfolio.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
