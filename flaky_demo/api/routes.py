from __future__ import annotations

import random
import time
from typing import Any

from fastapi import APIRouter, Body, Depends
from fastapi.responses import PlainTextResponse

from flaky_demo.errors import AppError
from flaky_demo.models.schemas import ComputeResponse, EchoResponse, RandomResponse, StatusResponse
from flaky_demo.services.failure_injector import maybe_fail

router = APIRouter(tags=["demo"])

_STARTED_AT = time.monotonic()


@router.get("/", response_class=PlainTextResponse)
async def hello() -> str:
    return "👋 Hello, world!"


@router.get("/status", response_model=StatusResponse)
async def status() -> StatusResponse:
    return StatusResponse(ok=True, uptime=time.monotonic() - _STARTED_AT)


@router.post("/echo", response_model=EchoResponse)
async def echo(payload: Any = Body(default=None)) -> EchoResponse:
    return EchoResponse(you_sent=payload)


@router.get("/random", response_model=RandomResponse, dependencies=[Depends(maybe_fail)])
async def random_value() -> RandomResponse:
    return RandomResponse(value=random.random())


@router.get("/compute", response_model=ComputeResponse, dependencies=[Depends(maybe_fail)])
async def compute() -> ComputeResponse:
    return ComputeResponse(result=42)


@router.get("/error")
async def always_fails() -> None:
    raise AppError("This endpoint always bombs")
