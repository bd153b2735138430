"""Entity key allocation endpoint."""

from fastapi import APIRouter, status
from pydantic import BaseModel, Field

from src.api.dependencies import KeyAllocatorDep

router = APIRouter(prefix="/keys", tags=["keys"])


class KeyRequest(BaseModel):
    """Either a prefix or an issue type; the prefix wins when both are given."""

    prefix: str | None = Field(default=None, examples=["PROJ"])
    issue_type: str | None = Field(default=None, examples=["Epic"])


class KeyView(BaseModel):
    """An allocated key."""

    key: str = Field(..., examples=["PROJ-42"])


@router.post("", status_code=status.HTTP_201_CREATED, response_model=KeyView)
async def allocate_key(body: KeyRequest, allocator: KeyAllocatorDep) -> KeyView:
    """Allocate the next key for a prefix or issue type."""
    if body.prefix is not None or body.issue_type is None:
        key = await allocator.allocate(body.prefix or "")
    else:
        key = await allocator.allocate_for_issue_type(body.issue_type)
    return KeyView(key=key)
