"""Models package - exports all SQLAlchemy models."""
from cafeteria_pos.models.product import Product
from cafeteria_pos.models.product_stock import ProductStock
from cafeteria_pos.models.sale import Sale
from cafeteria_pos.models.sale_line import SaleLine
from cafeteria_pos.models.stock_move import StockMove
from cafeteria_pos.models.stock_move_line import StockMoveLine
from cafeteria_pos.entities import StockMoveType, StockReferenceType

__all__ = [
    'Product', 'ProductStock',
    'Sale', 'SaleLine',
    'StockMove', 'StockMoveType', 'StockReferenceType', 'StockMoveLine',
]
