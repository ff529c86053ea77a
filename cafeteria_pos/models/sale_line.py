"""Sale Line model."""
from sqlalchemy import BigInteger, Column, Integer, Numeric, String, ForeignKey
from sqlalchemy.orm import relationship
from cafeteria_pos.database import Base


class SaleLine(Base):
    """Sale Line (one product of a sale, price snapshotted)."""
    
    __tablename__ = 'sale_line'
    
    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    sale_id = Column(String(16), ForeignKey('sale.id'), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    product_id = Column(String(64), ForeignKey('product.id'), nullable=False)
    product_name = Column(String, nullable=False)
    qty = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    line_total = Column(Numeric(10, 2), nullable=False)
    
    # Relationships
    sale = relationship('Sale', back_populates='lines')
    product = relationship('Product')
    
    def __repr__(self):
        return f"<SaleLine(id={self.id}, product_id='{self.product_id}', qty={self.qty})>"
