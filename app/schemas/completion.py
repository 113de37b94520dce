"""
Completion signal schemas shared by the webhook and the fallback poller
"""

from typing import List, Optional
from pydantic import BaseModel, Field


class Outcome:
    SUCCESS = "success"
    FAILURE = "failure"


class CompletionSignal(BaseModel):
    """A terminal outcome for one generation, from either completion path"""
    outcome: str = Field(..., description="success or failure")
    result_urls: List[str] = Field(default_factory=list, description="Result locations on success")
    error: Optional[str] = Field(None, description="Human-readable error on failure")
    source: str = Field("unknown", description="webhook, poller or timeout")
    
    @classmethod
    def success(cls, result_urls: List[str], source: str = "unknown") -> "CompletionSignal":
        return cls(outcome=Outcome.SUCCESS, result_urls=list(result_urls), source=source)
    
    @classmethod
    def failure(cls, error: str, source: str = "unknown") -> "CompletionSignal":
        return cls(outcome=Outcome.FAILURE, error=error, source=source)
    
    @property
    def is_success(self) -> bool:
        return self.outcome == Outcome.SUCCESS
