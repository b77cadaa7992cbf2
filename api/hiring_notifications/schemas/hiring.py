from datetime import date, datetime

from pydantic import BaseModel, Field

from hiring_notifications.services.repository import PostingDraft


class PostingWriteRequest(BaseModel):
    title: str
    position: str
    target_career_ids: list[int] = Field(default_factory=list)
    description: str | None = None
    location: str | None = None
    salary_range: str | None = None
    requirements: str | None = None
    application_deadline: date | None = None

    def to_draft(self) -> PostingDraft:
        return PostingDraft(
            title=self.title,
            position=self.position,
            target_career_ids=list(self.target_career_ids),
            description=self.description,
            location=self.location,
            salary_range=self.salary_range,
            requirements=self.requirements,
            application_deadline=self.application_deadline,
        )


class PostingOut(BaseModel):
    id: str
    publisher_id: str
    title: str
    position: str
    target_career_ids: list[int] = Field(default_factory=list)
    description: str | None = None
    location: str | None = None
    salary_range: str | None = None
    requirements: str | None = None
    application_deadline: date | None = None
    is_active: bool = True
    created_at: datetime
    updated_at: datetime


class PublisherPostingOut(PostingOut):
    company_name: str | None = None
    company_logo: str | None = None
    application_count: int = 0
    target_student_count: int = 0


class CareerStudentCountOut(BaseModel):
    career_id: int
    career_name: str
    student_count: int
