from datetime import datetime, timezone
from typing import Annotated, Dict, List, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from docshare.references import BlockReference


def _as_utc(value: datetime) -> datetime:
    # Stored timestamps are naive UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


UTCDateTime = Annotated[datetime, AfterValidator(_as_utc)]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class UserCreate(CamelModel):
    username: str = Field(min_length=3, max_length=100)
    email: EmailStr
    password: str = Field(min_length=6, max_length=200)


class LoginRequest(CamelModel):
    username: str
    password: str


class UserResponse(CamelModel):
    id: str
    username: str
    email: str
    is_active: bool
    created_at: Optional[UTCDateTime] = None


class LoginResponse(CamelModel):
    token: str
    user: UserResponse


class AccessToken(BaseModel):
    access_token: str
    token_type: str


class ShareCreate(CamelModel):
    doc_id: str = Field(min_length=1, max_length=64)
    doc_title: str = Field(min_length=1, max_length=255)
    content: str = Field(min_length=1)
    require_password: bool = False
    password: str = ""
    expire_days: int = Field(ge=1, le=365)
    is_public: bool = True
    references: List[BlockReference] = []


class ShareCreateResponse(CamelModel):
    share_id: str
    share_url: str
    doc_id: str
    doc_title: str
    require_password: bool
    expire_at: UTCDateTime
    is_public: bool
    created_at: Optional[UTCDateTime] = None
    updated_at: Optional[UTCDateTime] = None
    reused: bool


class ShareItem(CamelModel):
    id: str
    doc_id: str
    doc_title: str
    require_password: bool
    expire_at: UTCDateTime
    is_public: bool
    view_count: int
    created_at: Optional[UTCDateTime] = None
    share_url: str


class ShareListResponse(CamelModel):
    items: List[ShareItem]
    page: int
    size: int
    total: int


class ShareViewResponse(CamelModel):
    id: str
    doc_title: str
    content: str
    require_password: bool
    expire_at: UTCDateTime
    view_count: int
    created_at: Optional[UTCDateTime] = None


class BatchDeleteRequest(CamelModel):
    share_ids: List[str] = []


class BatchDeleteResponse(CamelModel):
    deleted: Optional[List[str]] = None
    not_found: Optional[List[str]] = None
    failed: Optional[Dict[str, str]] = None
    deleted_all_count: Optional[int] = None


class TokenCreate(CamelModel):
    name: str = Field(min_length=1, max_length=100)


class TokenItem(CamelModel):
    id: str
    name: str
    revoked: bool
    last_used_at: Optional[UTCDateTime] = None
    created_at: Optional[UTCDateTime] = None


class TokenListResponse(CamelModel):
    items: List[TokenItem]


class IssuedTokenResponse(CamelModel):
    id: str
    name: str
    token: str
    created_at: Optional[UTCDateTime] = None


class MessageResponse(CamelModel):
    message: str
