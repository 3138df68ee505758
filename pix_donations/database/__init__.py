"""Database package for the donation pipeline."""
from .connection import close_db, create_session_factory, get_session_factory, init_db
from .models import Base, DonationRecord, PartnerRecord

__all__ = [
    "Base",
    "DonationRecord",
    "PartnerRecord",
    "close_db",
    "create_session_factory",
    "get_session_factory",
    "init_db",
]
