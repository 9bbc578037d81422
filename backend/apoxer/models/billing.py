"""
Local mirror of Stripe subscriptions.
"""

from sqlalchemy import Column, Integer, String, Boolean, ForeignKey

from apoxer.db.base import Base, TimestampMixin, UTCDateTime


class Subscription(Base, TimestampMixin):
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    stripe_subscription_id = Column(String(100), nullable=False, unique=True)
    stripe_price_id = Column(String(100), nullable=True)
    status = Column(String(30), nullable=False)
    current_period_start = Column(UTCDateTime(), nullable=True)
    current_period_end = Column(UTCDateTime(), nullable=True)
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<Subscription(id={self.stripe_subscription_id}, user={self.user_id}, status={self.status})>"
