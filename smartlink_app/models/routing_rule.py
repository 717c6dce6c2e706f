from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, JSON, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from smartlink_app.database.connection import Base


class RoutingRule(Base):
    """
    Smart routing rule attached to a short link.

    `conditions` is stored as JSON in the wire format
    ({"operator": "AND", "conditions": [{"type", "operator", "value"}]})
    and parsed back into routing.conditions types when a snapshot is built.
    """
    __tablename__ = "routing_rules"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    url_id = Column(Integer, ForeignKey("urls.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(100), nullable=False)
    target_url = Column(String, nullable=False)
    priority = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    conditions = Column(JSON, nullable=False)
    match_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    url = relationship("URL", back_populates="routing_rules")

    __table_args__ = (
        Index("ix_routing_rules_url_priority", "url_id", "priority", "is_active"),
    )
