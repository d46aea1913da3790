# backend/portal/db/base.py
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base for portal tables. Models import this module, never the reverse."""
