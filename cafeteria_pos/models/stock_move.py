"""Stock Move model."""
from sqlalchemy import Column, String, DateTime, Text, Enum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from cafeteria_pos.database import Base
from cafeteria_pos.entities import StockMoveType, StockReferenceType


class StockMove(Base):
    """Stock Move (one applied ledger mutation)."""
    
    __tablename__ = 'stock_move'
    
    id = Column(String(20), primary_key=True)
    date = Column(DateTime, nullable=False, server_default=func.now())
    type = Column(Enum(StockMoveType, name='stock_move_type'), nullable=False)
    reference_type = Column(Enum(StockReferenceType, name='stock_ref_type'), nullable=False)
    reference_id = Column(String(64), nullable=True)
    notes = Column(Text, nullable=True)
    
    # Relationships
    lines = relationship('StockMoveLine', back_populates='stock_move', cascade='all, delete-orphan')
    
    def __repr__(self):
        return f"<StockMove(id='{self.id}', type={self.type.value}, reference_type={self.reference_type.value})>"
