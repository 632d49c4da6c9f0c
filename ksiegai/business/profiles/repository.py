from __future__ import annotations

from ksiegai.platform.security.repository import BaseRepository


class BusinessProfileRepository(BaseRepository):
    resource = "profiles.business_profile"
