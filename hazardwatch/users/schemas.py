from pydantic import BaseModel
from typing import List, Optional

from hazardwatch.core.schemas import CamelModel


class UserRecord(BaseModel):
    id: int
    supabase_id: Optional[str] = None
    username: str
    full_name: Optional[str] = None
    email: Optional[str] = None
    role: str = "citizen"
    avatar_url: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.full_name or self.username


# Sender / participant summary embedded in other responses
class UserSummary(CamelModel):
    id: int
    username: str
    display_name: str
    avatar_url: Optional[str] = None
    role: Optional[str] = None

    @classmethod
    def from_record(cls, user: UserRecord) -> "UserSummary":
        return cls(
            id=user.id,
            username=user.username,
            display_name=user.display_name,
            avatar_url=user.avatar_url,
            role=user.role,
        )


# User search
class UserSearchResult(CamelModel):
    id: str
    display_name: str
    email: Optional[str] = None
    role: str


class UserSearchResponseModel(CamelModel):
    query: str
    results: List[UserSearchResult]
    count: int
