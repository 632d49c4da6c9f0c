from ksiegai.business.profiles.models import BusinessProfile
from ksiegai.business.profiles.schemas import BusinessProfileCreate, BusinessProfileRead, BusinessProfileUpdate

__all__ = [
    "BusinessProfile",
    "BusinessProfileCreate",
    "BusinessProfileRead",
    "BusinessProfileUpdate",
]
