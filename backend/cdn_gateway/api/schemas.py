"""Pydantic schemas for the worker endpoints."""
from pydantic import BaseModel, ConfigDict


def _config_forbid(**kwargs):
    return ConfigDict(extra="forbid", **kwargs)


class NotifyRequest(BaseModel):
    model_config = _config_forbid()
    key: str
    bucket: str | None = None


class NotifyResponse(BaseModel):
    model_config = _config_forbid()
    success: bool
    message: str
    result: str


class HealthResponse(BaseModel):
    model_config = _config_forbid()
    status: str
    service: str = "event-handler"
