"""
models/request.py
Incoming note request + the body we send to Dify.
"""

from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

ResponseMode = Literal["blocking", "streaming"]


class CreateNoteRequest(BaseModel):
    """
    Required fields are Optional here on purpose: a missing field must
    come back as our 400 envelope, not FastAPI's 422.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    emotion: Optional[str] = Field(None, description="How the user feels")
    event: Optional[str] = Field(None, description="What happened")
    behavior: Optional[str] = Field(None, description="What the user did about it")
    user_name: Optional[str] = Field(None, alias="userName", description="Upstream user id")

    def is_complete(self) -> bool:
        return all((self.emotion, self.event, self.behavior))


class DifyInputs(BaseModel):
    user_emotion_input: str
    user_event_description: str
    user_behavior_input: str


class DifyWorkflowRequest(BaseModel):
    """POST body for /v1/workflows/run."""

    inputs: DifyInputs
    response_mode: ResponseMode
    user: str = Field(..., min_length=1)
