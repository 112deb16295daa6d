from datetime import datetime
from typing import Annotated, Literal

from pydantic import BaseModel, Field, StringConstraints

from nostalgic.ids import PUBLIC_ID_PATTERN

PublicId = Annotated[str, StringConstraints(pattern=PUBLIC_ID_PATTERN.pattern)]
Label = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]
Count = Annotated[int, Field(ge=0)]


# --- Shared ---

class BaseEntity(BaseModel):
    id: PublicId
    url: str = Field(min_length=1, max_length=2048)
    created: datetime


class OwnerRecord(BaseModel):
    token_hash: str = Field(pattern=r"^[a-f0-9]{64}$")


class ClaimRecord(BaseModel):
    claimed_at: datetime


class OwnerCredentials(BaseModel):
    url: str
    token: str


# --- Counter ---

CounterKind = Literal["total", "today", "yesterday", "week", "month"]


class CounterEntity(BaseEntity):
    total_count: Count = 0
    last_visit: datetime | None = None


class CounterCreateParams(BaseModel):
    pass


class CounterData(BaseModel):
    id: str
    url: str
    total: Count
    today: Count
    yesterday: Count
    week: Count
    month: Count
    last_visit: datetime | None = None


class CounterSetValue(OwnerCredentials):
    value: Count


# --- Like ---

class LikeEntity(BaseEntity):
    total_likes: Count = 0
    last_like: datetime | None = None


class LikeCreateParams(BaseModel):
    pass


class LikeData(BaseModel):
    id: str
    url: str
    total: Count
    user_liked: bool = False
    last_like: datetime | None = None


class LikeSetValue(OwnerCredentials):
    value: Count


class LikeIncrement(OwnerCredentials):
    by: int = Field(1, ge=1)


# --- Ranking ---

class RankingEntity(BaseEntity):
    total_entries: Count = 0
    max_entries: int = Field(ge=1, le=10000)
    last_update: datetime | None = None


class RankingCreateParams(BaseModel):
    max_entries: int | None = Field(None, ge=1, le=10000)


class RankingEntry(BaseModel):
    rank: int = Field(ge=1)
    name: str
    score: int


class RankingScore(BaseModel):
    name: Label
    score: Count


class RankingData(BaseModel):
    id: str
    url: str
    entries: list[RankingEntry] = []
    total_entries: Count
    max_entries: int
    last_update: datetime | None = None


# --- BBS ---

class BBSSelectOption(BaseModel):
    label: Label
    options: list[Label] = Field(default_factory=list, max_length=50)


class BBSSettings(BaseModel):
    title: str = Field(max_length=100)
    max_messages: int = Field(ge=1, le=10000)
    messages_per_page: int = Field(ge=1, le=100)
    icons: list[str] = Field(default_factory=list, max_length=20)
    selects: list[BBSSelectOption] = Field(default_factory=list, max_length=3)


class BBSEntity(BaseEntity):
    total_messages: Count = 0
    last_message: datetime | None = None
    settings: BBSSettings


class BBSMessage(BaseModel):
    id: str
    author: Label
    message: str = Field(min_length=1, max_length=5000)
    timestamp: datetime
    updated: datetime | None = None
    icon: str | None = None
    selects: list[str] | None = None
    author_hash: str = Field(min_length=1)


class BBSPagination(BaseModel):
    page: int = Field(ge=1)
    total_pages: Count
    has_prev: bool
    has_next: bool


class BBSData(BaseModel):
    id: str
    url: str
    title: str
    messages: list[BBSMessage] = []
    total_messages: Count
    current_page: int = Field(ge=1)
    total_pages: Count
    pagination: BBSPagination
    settings: BBSSettings
    last_message: datetime | None = None


class BBSCreateParams(BaseModel):
    title: str | None = Field(None, max_length=100)
    max_messages: int | None = Field(None, ge=1, le=10000)
    messages_per_page: int | None = Field(None, ge=1, le=100)
    icons: list[str] | None = None
    selects: list[BBSSelectOption] | None = None


class BBSPostParams(BaseModel):
    author: Label
    message: str = Field(min_length=1, max_length=5000)
    icon: str | None = None
    selects: list[str] | None = None
    author_hash: str = Field(min_length=1)


class BBSUpdateParams(BaseModel):
    message_id: str = Field(min_length=1)
    author: Label
    message: str = Field(min_length=1, max_length=5000)
    icon: str | None = None
    selects: list[str] | None = None


class BBSSettingsUpdate(BaseModel):
    title: str | None = Field(None, max_length=100)
    max_messages: int | None = Field(None, ge=1, le=10000)
    messages_per_page: int | None = Field(None, ge=1, le=100)
    icons: list[str] | None = None
    selects: list[BBSSelectOption] | None = None


# --- Cleanup ---

class CleanupTarget(BaseModel):
    service: str
    id: str
    url: str
    last_activity: datetime


class CleanupReport(BaseModel):
    deleted: list[CleanupTarget] = []
    errors: list[str] = []


# --- HTTP request bodies ---

class RankingCreateRequest(OwnerCredentials, RankingCreateParams):
    pass


class RankingScoreRequest(OwnerCredentials):
    name: str
    score: int


class RankingNameRequest(OwnerCredentials):
    name: str


class BBSCreateRequest(OwnerCredentials, BBSCreateParams):
    pass


class BBSPostRequest(OwnerCredentials):
    author: str
    message: str
    icon: str | None = None
    selects: list[str] | None = None


class BBSUpdateRequest(BaseModel):
    url: str
    token: str | None = None
    message_id: str
    author: str
    message: str
    icon: str | None = None
    selects: list[str] | None = None


class BBSRemoveRequest(BaseModel):
    url: str
    token: str | None = None
    message_id: str


class BBSSettingsRequest(OwnerCredentials, BBSSettingsUpdate):
    pass
