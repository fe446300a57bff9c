from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, func

from tinylink.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    external_id = Column(String(255), unique=True, index=True, nullable=False)
    display_name = Column(String(255), nullable=False)
    email = Column(String(320), nullable=False)


class Link(Base):
    __tablename__ = "links"

    id = Column(Integer, primary_key=True, index=True)
    destination = Column(Text, nullable=False)
    code = Column(String(32), unique=True, index=True, nullable=False)
    # NULL owner is the anonymous sentinel
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    clicks = Column(Integer, nullable=False, default=0, server_default="0")
