from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from smartlink_app.database.connection import Base


class URLVariant(Base):
    """A/B test variant of a short link. Weight is relative (0-100)."""
    __tablename__ = "url_variants"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    url_id = Column(Integer, ForeignKey("urls.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    target_url = Column(String, nullable=False)
    weight = Column(Integer, default=50, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    click_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    url = relationship("URL", back_populates="variants")
