from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class StoredObject(BaseModel):
    """One attachment or archive object as listed to clients (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True)

    content_type: str | None = Field(default=None, alias="contentType")
    attachment_id: str = Field(alias="attachmentId")
    created: datetime | None = None
    last_modified: datetime | None = Field(default=None, alias="lastModified")
    length: int
