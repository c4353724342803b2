from __future__ import annotations

from pydantic import BaseModel, Field


class ManualCheckRequest(BaseModel):
    user_id: int = Field(..., ge=1)


class AgentReportRequest(BaseModel):
    cpu: float | None = Field(None, ge=0, le=100)
    memory: float | None = Field(None, ge=0, le=100)
    disk: float | None = Field(None, ge=0, le=100)
    hostname: str | None = Field(None, max_length=255)
    ip_addresses: list[str] | None = None
    os: str | None = Field(None, max_length=255)
