"""Pydantic schemas for the ID generation API."""

from pydantic import BaseModel, Field

from common.enums import HealthStatus

__all__ = ["GenerateRequest", "IdResponse", "IdBatchResponse", "BackendHealth", "HealthResponse"]


class GenerateRequest(BaseModel):
    # None asks for the largest batch a single allocation can return.
    count: int | None = Field(default=None, description="Number of IDs wanted")


class IdResponse(BaseModel):
    id: int
    timestamp_millis: int


class IdBatchResponse(BaseModel):
    ids: list[int]
    timestamp_millis: int
    count: int


class BackendHealth(BaseModel):
    backend: str
    status: HealthStatus


class HealthResponse(BaseModel):
    status: HealthStatus
    backends: list[BackendHealth] = []
    script_sha: str
