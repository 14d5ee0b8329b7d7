"""
Common Pydantic models for the allgood.click API
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    uptime: float
    version: str


class UrlResponse(BaseModel):
    url: str
    success: Optional[bool] = None
