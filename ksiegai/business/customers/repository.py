from __future__ import annotations

from ksiegai.platform.security.repository import BaseRepository


class CustomerRepository(BaseRepository):
    resource = "customers.customer"
