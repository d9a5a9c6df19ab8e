"""Pydantic schemas for X API responses

Every provider response is validated against one of these models before any
field is read. Auth responses are strict: a wrong type is a failure, never
coerced.
"""
from typing import List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from sharekit.core.exceptions import InvalidResponseFormatError

ModelT = TypeVar("ModelT", bound=BaseModel)


class TokenResponse(BaseModel):
    model_config = ConfigDict(strict=True, extra="ignore")

    access_token: str = Field(min_length=1)
    token_type: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = Field(default=None, gt=0)
    scope: Optional[str] = None

    def scope_set(self):
        if not self.scope:
            return None
        return set(self.scope.split())


class XUser(BaseModel):
    model_config = ConfigDict(strict=True, extra="ignore")

    id: str
    username: str
    name: Optional[str] = None


class UserResponse(BaseModel):
    model_config = ConfigDict(strict=True, extra="ignore")

    data: XUser


class ProcessingInfo(BaseModel):
    state: str  # pending | in_progress | succeeded | failed
    check_after_secs: Optional[int] = None
    progress_percent: Optional[int] = None
    error: Optional[dict] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in ("succeeded", "failed")


class MediaUploadResponse(BaseModel):
    media_id_string: str
    processing_info: Optional[ProcessingInfo] = None


class TweetData(BaseModel):
    id: str
    text: Optional[str] = None


class TweetResponse(BaseModel):
    data: TweetData


class XApiErrorDetail(BaseModel):
    code: Optional[int] = None
    message: Optional[str] = None


class XApiErrorBody(BaseModel):
    """Error body union of the v1.1 ({errors:[{code,message}]}) and v2 ({title,detail,reason}) shapes"""
    errors: List[XApiErrorDetail] = []
    title: Optional[str] = None
    detail: Optional[str] = None
    reason: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None


def parse_response(model: Type[ModelT], payload, what: str) -> ModelT:
    """Validate a decoded JSON payload, raising InvalidResponseFormatError on mismatch"""
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise InvalidResponseFormatError(f"Invalid {what} response format: {e.error_count()} error(s)")
