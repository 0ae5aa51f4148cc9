from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# JSONB on PostgreSQL, generic JSON elsewhere (SQLite in tests)
JsonType = JSON().with_variant(JSONB(), 'postgresql')
