from ksiegai.business.customers.models import Customer
from ksiegai.business.customers.schemas import CustomerCreate, CustomerRead, CustomerUpdate

__all__ = ["Customer", "CustomerCreate", "CustomerRead", "CustomerUpdate"]
