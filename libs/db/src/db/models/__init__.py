"""Shared SQLAlchemy models registry for the transaction store.

Currently includes the finance tables read and annotated by ``spending_guard``.
"""

from .finance import Base, SgAccount, SgTransaction

__all__ = [
    "Base",
    "SgAccount",
    "SgTransaction",
]
