from __future__ import annotations
from pydantic import BaseModel

class ErrorBody(BaseModel):
    kind: str
    detail: str
