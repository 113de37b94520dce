"""
Webhook ingest for generation callbacks

Normalizes the provider's callback shapes into a CompletionSignal and hands it
to the reconciler. Once a payload is structurally valid the provider always
gets an acknowledgement, even when reconciliation fails, so it does not
retry-storm the endpoint.
"""

import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from app.core.exceptions import MalformedWebhookPayload
from app.schemas.completion import CompletionSignal
from app.schemas.webhook import FlatStateCallback, KieCallback, NestedInfoCallback, WebhookAck
from app.services.kie_service import NO_RESULT_URL_ERROR, parse_result_json

logger = logging.getLogger(__name__)


def parse_callback(raw: Any) -> KieCallback:
    """
    Classify and validate a raw callback body.
    
    Raises:
        MalformedWebhookPayload: Missing data.taskId, or a shape that is neither
            the nested info form nor the flat state form
    """
    if not isinstance(raw, dict) or not isinstance(raw.get("data"), dict) or not raw["data"].get("taskId"):
        raise MalformedWebhookPayload("Invalid callback data: missing data.taskId")
    
    data = raw["data"]
    has_info = "info" in data
    has_state = "state" in data
    
    try:
        if has_info and not has_state:
            return NestedInfoCallback.model_validate(raw)
        if has_state:
            return FlatStateCallback.model_validate(raw)
    except ValidationError as e:
        raise MalformedWebhookPayload(f"Invalid callback data: {e.error_count()} validation error(s)") from e
    
    logger.error(f"Unknown callback shape for task {data.get('taskId')}: keys={sorted(data.keys())}")
    raise MalformedWebhookPayload("Unknown callback shape")


def to_signal(callback: KieCallback) -> Optional[CompletionSignal]:
    """Translate a parsed callback into a signal; None while the task is still running"""
    if isinstance(callback, NestedInfoCallback):
        if callback.code == 200:
            urls = list((callback.data.info.resultUrls if callback.data.info else None) or [])
            if not urls:
                return CompletionSignal.failure(NO_RESULT_URL_ERROR, source="webhook")
            if callback.data.fallbackFlag:
                logger.info(f"Task {callback.data.taskId} completed on the fallback model")
            return CompletionSignal.success(urls, source="webhook")
        message = callback.msg or "Veo 3.1 generation failed"
        return CompletionSignal.failure(f"[Code {callback.code}] {message}", source="webhook")
    
    if isinstance(callback, FlatStateCallback):
        state = callback.data.state
        if state == "success":
            urls = parse_result_json(callback.data.resultJson)
            if not urls:
                return CompletionSignal.failure(NO_RESULT_URL_ERROR, source="webhook")
            return CompletionSignal.success(urls, source="webhook")
        if state in ("fail", "failed"):
            code = callback.data.failCode or "UNKNOWN_ERROR"
            message = callback.data.failMsg or "Generation failed"
            return CompletionSignal.failure(f"[{code}] {message}", source="webhook")
        return None
    
    raise MalformedWebhookPayload(f"Unhandled callback type {type(callback).__name__}")


class WebhookIngest:
    """Entry point for /api/webhook/kie-callback"""
    
    def __init__(self, store, reconciler, poller):
        self.store = store
        self.reconciler = reconciler
        self.poller = poller
    
    async def handle(self, raw: Dict[str, Any]) -> WebhookAck:
        """
        Process one callback.
        
        Raises:
            MalformedWebhookPayload: Before anything reaches the reconciler
        """
        callback = parse_callback(raw)
        task_id = callback.data.taskId
        logger.info(f"Received {type(callback).__name__} for task {task_id}")
        
        signal = to_signal(callback)
        if signal is None:
            logger.info(f"Task {task_id} still in progress (state: {callback.data.state})")
            return WebhookAck(taskId=task_id)
        
        try:
            job = await self.store.get_by_task_id(task_id)
            if job is None:
                logger.warning(f"No generation found for task {task_id}, ignoring callback")
                return WebhookAck(taskId=task_id)
            
            outcome = await self.reconciler.apply_completion(job.id, signal)
            if outcome.applied:
                self.poller.cancel(job.id)
        except Exception as e:
            logger.error(f"Error processing callback for task {task_id}: {e}", exc_info=True)
            return WebhookAck(taskId=task_id, error="Internal processing error")
        
        return WebhookAck(taskId=task_id)
