"""Stock Move Line model."""
from sqlalchemy import BigInteger, Column, Integer, String, ForeignKey
from sqlalchemy.orm import relationship
from cafeteria_pos.database import Base


class StockMoveLine(Base):
    """Stock Move Line (signed quantity change for one product)."""
    
    __tablename__ = 'stock_move_line'
    
    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    stock_move_id = Column(String(20), ForeignKey('stock_move.id'), nullable=False)
    product_id = Column(String(64), ForeignKey('product.id'), nullable=False)
    qty = Column(Integer, nullable=False)
    
    # Relationships
    stock_move = relationship('StockMove', back_populates='lines')
    product = relationship('Product')
    
    def __repr__(self):
        return f"<StockMoveLine(id={self.id}, product_id='{self.product_id}', qty={self.qty})>"
