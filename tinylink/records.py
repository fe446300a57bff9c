from dataclasses import dataclass
from datetime import datetime

# Owner id for links created without an authenticated user
ANONYMOUS_OWNER = None


@dataclass(frozen=True)
class User:
    id: int
    external_id: str
    display_name: str
    email: str


@dataclass(frozen=True)
class Link:
    id: int
    destination: str
    code: str
    owner_id: int | None
    is_active: bool
    created_at: datetime
    clicks: int = 0

    @property
    def is_anonymous(self) -> bool:
        return self.owner_id is ANONYMOUS_OWNER


@dataclass(frozen=True)
class Stats:
    total_links: int
    total_clicks: int
    average_clicks: float
