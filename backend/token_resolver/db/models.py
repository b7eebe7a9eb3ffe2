# backend/token_resolver/db/models.py

import datetime

from sqlalchemy import Column, DateTime, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


class TokenIdentity(Base):
    __tablename__ = "token_identities"

    # Solana mints are case-sensitive base58; never lower-case the key
    address = Column(String, primary_key=True)
    symbol = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    image_url = Column(String)
    source = Column(String, nullable=False)
    last_updated = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f"<TokenIdentity(address='{self.address}', symbol='{self.symbol}')>"
