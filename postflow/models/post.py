from pydantic import BaseModel, ConfigDict, Field, StringConstraints
from typing import Annotated, Optional
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


RequiredText = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class PostType(str, Enum):
    text = "text"
    image = "image"
    mixed = "mixed"


def derive_post_type(content: Optional[str], image: Optional[str]) -> PostType:
    if content and image:
        return PostType.mixed
    if image:
        return PostType.image
    return PostType.text


class Post(BaseModel):
    model_config = ConfigDict(validate_assignment=True, use_enum_values=True)

    id: Optional[str] = None
    username: RequiredText
    content: RequiredText
    image: Optional[str] = None
    postType: PostType = PostType.text
    userIP: Optional[str] = None
    userAgent: Optional[str] = None
    viewCount: int = Field(default=0, ge=0)
    lastViewedAt: Optional[datetime] = None
    createdAt: datetime = Field(default_factory=utcnow)
    updatedAt: datetime = Field(default_factory=utcnow)

    def refresh_post_type(self):
        self.postType = derive_post_type(self.content, self.image)

    def to_document(self) -> dict:
        return self.model_dump(exclude={"id"})

    @classmethod
    def from_document(cls, doc: dict) -> "Post":
        data = {k: v for k, v in doc.items() if k != "_id"}
        return cls(id=str(doc["_id"]), **data)
