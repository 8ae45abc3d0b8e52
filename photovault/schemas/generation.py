from datetime import datetime

from pydantic import BaseModel, Field


class ThemeOut(BaseModel):
    id: str
    title: str
    prompt: str

    model_config = {"from_attributes": True}


class UploadOut(BaseModel):
    source_image_ref: str


class GenerateRequest(BaseModel):
    theme: str
    source_image_ref: str
    count: int = Field(ge=1)
    guidance: str | None = Field(default=None, max_length=1000)


class GenerateOut(BaseModel):
    photo_set_id: str
    outputs: list[str]
    state: str
    requested: int
    succeeded: int
    credits_charged: int
    credits_refunded: int


class PhotoSetOut(BaseModel):
    id: str
    theme: str
    credits_used: int
    created_at: datetime
    photo_urls: list[str]
