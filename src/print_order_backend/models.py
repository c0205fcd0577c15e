from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Wire format is camelCase; Python attributes stay snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class FileRef(CamelModel):
    # Unknown keys (e.g. a legacy serverPath echo) are dropped, not persisted
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    name: str
    size: int = Field(ge=0)
    type: str
    path: str


class OrderCreate(CamelModel):
    """Client-supplied order fields. Unknown keys are rejected."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    full_name: str = Field(min_length=1)
    phone_number: str = Field(min_length=1)
    print_type: str = Field(min_length=1)
    binding_color_type: Optional[str] = None
    copies: Optional[int] = Field(default=None, ge=1)
    paper_size: Optional[str] = None
    print_side: Optional[str] = None
    selected_pages: Optional[str] = None
    color_pages: Optional[str] = None
    bw_pages: Optional[str] = None
    special_instructions: Optional[str] = None
    files: List[FileRef] = Field(default_factory=list)
    total_cost: float = 0


class Order(OrderCreate):
    # Stored documents may predate the strict create schema
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    order_id: str
    order_date: datetime
    status: OrderStatus = OrderStatus.PENDING


class CreateOrderResponse(CamelModel):
    order_id: str
    order: Order


class StatusUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: OrderStatus


class StatusUpdateResponse(BaseModel):
    success: bool = True
    order: Order


class UploadResponse(BaseModel):
    files: List[FileRef]


class LoginRequest(BaseModel):
    username: str
    password: str


class LoginResponse(CamelModel):
    success: bool = True
    token: str
    expires_at: datetime


class SuccessResponse(BaseModel):
    success: bool = True


class FileDeletionFailure(BaseModel):
    name: str
    error: str


class ClearFilesResult(BaseModel):
    """Outcome of a best-effort bulk deletion."""

    deleted: int = 0
    failures: List[FileDeletionFailure] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


class ClearFilesResponse(SuccessResponse):
    deleted: int
