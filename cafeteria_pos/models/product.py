"""Product model."""
from sqlalchemy import Boolean, Column, String, Numeric, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from cafeteria_pos.database import Base


class Product(Base):
    """Product definition (name and price). Stock lives in ProductStock."""
    
    __tablename__ = 'product'
    
    id = Column(String(64), primary_key=True)
    name = Column(String, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    # Retired products keep their row so sale and stock move lines stay valid
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())
    
    # Cascade delete-orphan: the stock row goes away with its product
    stock = relationship('ProductStock', uselist=False, back_populates='product', cascade="all, delete-orphan")
    
    def __repr__(self):
        return f"<Product(id='{self.id}', name='{self.name}', unit_price={self.unit_price})>"
    
    @property
    def on_hand_qty(self):
        """Get on hand quantity from stock."""
        if self.stock:
            return self.stock.on_hand_qty
        return 0
