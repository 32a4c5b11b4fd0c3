from pydantic import BaseModel
from typing import Optional

class HealthResponse(BaseModel):
    status: str = "OK"

class ErrorResponse(BaseModel):
    error: str
    detail: Optional[str] = None
