"""Declarative base for the content store tables."""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass
