from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class StatusResponse(BaseModel):
    ok: bool = True
    uptime: float


class EchoResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    you_sent: Any = Field(default=None, alias="youSent")


class RandomResponse(BaseModel):
    value: float


class ComputeResponse(BaseModel):
    result: int
