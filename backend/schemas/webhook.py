"""Pydantic schemas for webhook ingress and replay."""

from pydantic import BaseModel, ConfigDict


class WebhookAckResponse(BaseModel):
    received: bool = True


class WebhookRetryResponse(BaseModel):
    """Summary of a webhook replay run."""

    attempted: int
    succeeded: int
    failed: int

    model_config = ConfigDict(from_attributes=True)
