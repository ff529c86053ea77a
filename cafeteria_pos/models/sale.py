"""Sale model."""
from sqlalchemy import Column, String, Numeric, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from cafeteria_pos.database import Base


class Sale(Base):
    """Sale (committed, never updated)."""
    
    __tablename__ = 'sale'
    
    id = Column(String(16), primary_key=True)
    cashier_id = Column(String(128), nullable=False, index=True)
    committed_at = Column(DateTime, nullable=False, index=True)
    subtotal = Column(Numeric(10, 2), nullable=False)
    tax = Column(Numeric(10, 2), nullable=False)
    total = Column(Numeric(10, 2), nullable=False)
    tax_rate = Column(Numeric(6, 4), nullable=False)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    
    # Relationships
    lines = relationship('SaleLine', back_populates='sale', cascade='all, delete-orphan',
                         order_by='SaleLine.position')

    def __repr__(self):
        return f"<Sale(id='{self.id}', total={self.total}, cashier_id='{self.cashier_id}')>"
