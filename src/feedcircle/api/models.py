"""Pydantic models for API responses."""

from pydantic import BaseModel, Field


class MessageResponse(BaseModel):
    """Response model for informational replies."""

    message: str = Field(description="Human-readable outcome")


class ErrorResponse(BaseModel):
    """Body of every error reply."""

    error: str = Field(description="What went wrong")


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str = Field(description="Health status")
    version: str = Field(description="Application version")
    crawling: bool = Field(description="Whether a crawl cycle is running")
