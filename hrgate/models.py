from pydantic import BaseModel, Field
from typing import List, Optional


class SignalRequest(BaseModel):
    session_id: str = Field(min_length=1)
    bpm: int = Field(ge=0)
    threshold_bpm: int = Field(ge=0)
    sample_ts: Optional[float] = None


class SignalResponse(BaseModel):
    published: bool
    debounced: bool = False
    hr_ok: Optional[bool] = None
    exp_unix: Optional[int] = None
    stale: bool = False
    failed_targets: List[str] = Field(default_factory=list)


class RefWriteRequest(BaseModel):
    ref: str = Field(min_length=1)
    filename: str = Field(min_length=1)
    content_b64: str
    message: str = "Update ref"


class RefContent(BaseModel):
    ref: str
    filename: str
    content_b64: str
