"""Product Stock model."""
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from cafeteria_pos.database import Base


class ProductStock(Base):
    """Product Stock - 1:1 with Product."""
    
    __tablename__ = 'product_stock'
    __table_args__ = (
        CheckConstraint('on_hand_qty >= 0', name='ck_product_stock_non_negative'),
    )
    
    product_id = Column(String(64), ForeignKey('product.id'), primary_key=True)
    on_hand_qty = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())
    
    # Relationship
    product = relationship('Product', back_populates='stock')
    
    def __repr__(self):
        return f"<ProductStock(product_id='{self.product_id}', on_hand_qty={self.on_hand_qty})>"
