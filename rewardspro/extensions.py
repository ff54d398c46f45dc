"""
Flask extensions initialization.

Constraint names follow one convention so Alembic revisions can
reference and drop them on every backend.
"""
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from sqlalchemy import MetaData

NAMING_CONVENTION = {
    'ix': 'ix_%(column_0_label)s',
    'uq': 'uq_%(table_name)s_%(column_0_name)s',
    'fk': 'fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s',
    'pk': 'pk_%(table_name)s',
}

# Database
db = SQLAlchemy(metadata=MetaData(naming_convention=NAMING_CONVENTION))

# Migrations
migrate = Migrate()
