"""
Inbound Kie.ai callback payload shapes

Two shapes arrive on the same endpoint. Veo 3.1 nests its result in data.info;
the unified task API sends a flat data.state with resultJson as a JSON string.
Both may carry a top-level code, so the shape is decided structurally.
"""

from typing import List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore")


class _TaskData(_Lenient):
    taskId: str
    
    @field_validator("taskId", mode="before")
    @classmethod
    def _numeric_task_id(cls, value):
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class CallbackInfo(_Lenient):
    """Veo 3.1 result block"""
    resultUrls: Optional[List[str]] = None
    originUrls: Optional[List[str]] = None
    resolution: Optional[str] = None


class NestedInfoData(_TaskData):
    info: Optional[CallbackInfo] = None
    fallbackFlag: Optional[bool] = None


class NestedInfoCallback(_Lenient):
    """Veo 3.1 shape: {code, msg, data: {taskId, info: {resultUrls}}}"""
    code: Optional[int] = None
    msg: Optional[str] = None
    data: NestedInfoData


class FlatStateData(_TaskData):
    state: Optional[str] = None
    resultJson: Optional[str] = None
    failCode: Optional[Union[str, int]] = None
    failMsg: Optional[str] = None


class FlatStateCallback(_Lenient):
    """Unified task shape: {code, msg, data: {taskId, state, resultJson, failCode, failMsg}}"""
    code: Optional[int] = None
    msg: Optional[str] = None
    data: FlatStateData


KieCallback = Union[NestedInfoCallback, FlatStateCallback]


class WebhookAck(BaseModel):
    """Acknowledgement returned to the provider"""
    received: bool = True
    taskId: Optional[str] = None
    error: Optional[str] = Field(None, description="Set when internal processing failed")
