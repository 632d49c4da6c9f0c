from ksiegai.business.products.models import Product
from ksiegai.business.products.schemas import ProductCreate, ProductRead, ProductUpdate

__all__ = ["Product", "ProductCreate", "ProductRead", "ProductUpdate"]
