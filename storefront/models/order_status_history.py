from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text
from sqlalchemy.orm import relationship
from datetime import datetime
from storefront.db.base_class import Base


class OrderStatusHistory(Base):
    __tablename__ = "order_status_history"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)

    old_status = Column(String(20), nullable=True)
    new_status = Column(String(20), nullable=False)

    changed_by = Column(Integer, ForeignKey("users.id"), nullable=True)  # null for system changes
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    order = relationship("Order", back_populates="status_history")
    changer = relationship("User")
