from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class LinkCreate(BaseModel):
    destination: str
    code: str | None = None
    active: bool = True


class LinkUpdate(BaseModel):
    destination: str | None = None
    code: str | None = None
    active: bool | None = None


class LinkOut(BaseModel):
    id: int
    destination: str
    code: str
    owner_id: int | None
    is_active: bool
    created_at: datetime
    clicks: int

    model_config = ConfigDict(from_attributes=True)


class PaginatedLinks(BaseModel):
    items: list[LinkOut]
    total: int
    skip: int
    limit: int


class Resolved(BaseModel):
    destination: str


class StatsOut(BaseModel):
    total_links: int
    total_clicks: int
    average_clicks: float

    model_config = ConfigDict(from_attributes=True)


class UserRegister(BaseModel):
    display_name: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=3, max_length=320)


class UserOut(BaseModel):
    id: int
    external_id: str
    display_name: str
    email: str

    model_config = ConfigDict(from_attributes=True)


class QRDataURL(BaseModel):
    data_url: str
