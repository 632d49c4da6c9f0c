from __future__ import annotations

from ksiegai.platform.security.repository import BaseRepository


class ProductRepository(BaseRepository):
    resource = "products.product"
