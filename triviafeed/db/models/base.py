"""Declarative base shared by all local-store models."""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass
