from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel


class DeliveryOut(BaseModel):
    id: str
    subscriber_id: str
    posting_id: str
    is_read: bool = False
    read_at: datetime | None = None
    created_at: datetime
    title: str
    position: str
    description: str | None = None
    location: str | None = None
    salary_range: str | None = None
    requirements: str | None = None
    application_deadline: date | None = None
    company_name: str
    company_logo: str | None = None
    company_website: str | None = None
    has_applied: bool = False


class UnreadCountOut(BaseModel):
    unread_count: int


class MarkReadOut(BaseModel):
    posting_id: str
    status: Literal["marked", "already_read"]
