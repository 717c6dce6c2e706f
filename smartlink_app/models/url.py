from sqlalchemy import Column, Integer, String, DateTime, Boolean
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from smartlink_app.database.connection import Base


class URL(Base):
    """
    Short link record.

    Holds the original destination plus the switches that decide how a visit
    is routed: smart routing (rules + default_url) and A/B testing (variants).
    Click analytics live in the separate click store, only aggregate counters
    are kept here.
    """
    __tablename__ = "urls"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    original_url = Column(String, nullable=False)
    # Nullable so the row can be flushed first and the code derived from its ID
    short_code = Column(String(16), unique=True, nullable=True, index=True)
    total_hits = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    is_smart_routing = Column(Boolean, default=False, nullable=False)
    default_url = Column(String, nullable=True)
    is_ab_test = Column(Boolean, default=False, nullable=False)

    # Stops redirecting after this moment; None means never
    expires_at = Column(DateTime(timezone=True), nullable=True)

    # Preset UTM values added to every redirect unless the visitor brings their own
    utm_source = Column(String(255), nullable=True)
    utm_medium = Column(String(255), nullable=True)
    utm_campaign = Column(String(255), nullable=True)
    utm_term = Column(String(255), nullable=True)
    utm_content = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    routing_rules = relationship(
        "RoutingRule",
        back_populates="url",
        cascade="all, delete-orphan",
        order_by="RoutingRule.id",
    )
    variants = relationship(
        "URLVariant",
        back_populates="url",
        cascade="all, delete-orphan",
        order_by="URLVariant.id",
    )
