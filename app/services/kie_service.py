"""
Kie.ai generation provider gateway
Submits generation tasks and fetches their status. Endpoints differ per model
family; everything not on a dedicated endpoint goes through the unified
jobs/createTask + jobs/recordInfo pair.
"""

import json
import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field

from app.core.config import settings
from app.core.exceptions import ProviderError, ProviderTransientError

logger = logging.getLogger(__name__)


class TaskState:
    RUNNING = "running"
    SUCCESS = "success"
    FAILURE = "failure"


class TaskStatus(BaseModel):
    """Provider-side state of a task as seen by a status poll"""
    task_id: str
    state: str = Field(..., description="running, success or failure")
    result_urls: List[str] = Field(default_factory=list)
    error: Optional[str] = None


# (generate path, status path) for model families with dedicated endpoints
_DEDICATED_ENDPOINTS = {
    "gpt4o-image": ("/api/v1/gpt4o-image/generate", "/api/v1/gpt4o-image/record-info"),
    "flux-kontext": ("/api/v1/flux-kontext/generate", "/api/v1/flux-kontext/record-info"),
    "veo": ("/api/v1/veo/generate", "/api/v1/veo/record-info"),
    "runway": ("/api/v1/runway/generate", "/api/v1/runway/record-info"),
    "luma": ("/api/v1/luma/generate", "/api/v1/luma/record-info"),
}
_UNIFIED_ENDPOINTS = ("/api/v1/jobs/createTask", "/api/v1/jobs/recordInfo")

NO_RESULT_URL_ERROR = "No result URL returned"


def model_family(model_id: str) -> Optional[str]:
    """Dedicated endpoint family for a model, None for the unified API"""
    if model_id == "4o-image":
        return "gpt4o-image"
    if model_id.startswith("flux-kontext"):
        return "flux-kontext"
    if model_id.startswith("veo3") or model_id.startswith("veo-3"):
        return "veo"
    if model_id == "runway-gen3":
        return "runway"
    if model_id == "luma":
        return "luma"
    return None


def parse_result_json(result_json: Any) -> List[str]:
    """
    Extract result URLs from the unified API's resultJson.
    
    resultJson is a JSON string holding either resultUrls (list) or resultUrl.
    Unparseable input yields an empty list.
    """
    if not result_json:
        return []
    try:
        data = json.loads(result_json) if isinstance(result_json, str) else result_json
    except (TypeError, ValueError):
        logger.error(f"Failed to parse resultJson: {str(result_json)[:200]}")
        return []
    if not isinstance(data, dict):
        return []
    urls = data.get("resultUrls")
    if isinstance(urls, list):
        return [u for u in urls if isinstance(u, str) and u]
    url = data.get("resultUrl")
    return [url] if isinstance(url, str) and url else []


class KieService:
    """Client for the Kie.ai task API"""
    
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        callback_base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.api_key = api_key if api_key is not None else settings.KIE_API_KEY
        self.base_url = (base_url or settings.KIE_API_BASE).rstrip("/")
        callback_base = callback_base_url if callback_base_url is not None else settings.WEBHOOK_BASE_URL
        self.callback_url = f"{callback_base.rstrip('/')}/api/webhook/kie-callback" if callback_base else None
        self._client = client or httpx.AsyncClient(timeout=settings.KIE_REQUEST_TIMEOUT)
    
    def is_configured(self) -> bool:
        return bool(self.api_key)
    
    async def aclose(self) -> None:
        await self._client.aclose()
    
    def _headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise ProviderError("No active API key configured for the generation provider")
        return {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
    
    def build_request(self, model_id: str, prompt: str, params: Optional[Dict[str, Any]] = None) -> tuple:
        """
        Build (path, body) for a submission.
        
        Args:
            model_id: Provider model identifier
            prompt: Text prompt (may be empty for storyboard style models)
            params: Provider-specific input parameters, passed through
            
        Returns:
            Tuple of endpoint path and JSON body
        """
        params = dict(params or {})
        family = model_family(model_id)
        
        if family is None:
            body = {"model": model_id, "input": {"prompt": prompt, **params} if prompt else params}
            path = _UNIFIED_ENDPOINTS[0]
        else:
            body = {"prompt": prompt, **params}
            if family == "veo":
                body.setdefault("model", model_id)
                body.setdefault("aspectRatio", "16:9")
                body.setdefault("generationType", "TEXT_2_VIDEO")
                body.setdefault("enableTranslation", True)
            elif family == "flux-kontext":
                body["model"] = "flux-kontext-pro" if model_id == "flux-kontext" else model_id
            path = _DEDICATED_ENDPOINTS[family][0]
        
        if self.callback_url:
            body["callBackUrl"] = self.callback_url
        return path, body
    
    async def submit(self, model_id: str, prompt: str, params: Optional[Dict[str, Any]] = None) -> str:
        """
        Submit a generation task.
        
        Returns:
            Provider task id
            
        Raises:
            ProviderError: On transport failure, non-2xx or non-200 body code
        """
        path, body = self.build_request(model_id, prompt, params)
        logger.info(f"Submitting {model_id} task to {path}")
        
        try:
            response = await self._client.post(f"{self.base_url}{path}", json=body, headers=self._headers())
        except httpx.HTTPError as e:
            raise ProviderError(f"Generation provider unreachable: {e}") from e
        
        data = self._json(response)
        code = data.get("code")
        if response.status_code >= 300 or code != 200:
            logger.error(f"Provider rejected {model_id} submission: {data}")
            raise ProviderError(data.get("msg") or "Failed to generate content", code=code or response.status_code)
        
        task_id = (data.get("data") or {}).get("taskId")
        if not task_id:
            raise ProviderError("Provider response did not include a task id")
        return task_id
    
    async def poll(self, task_id: str, model_id: str) -> TaskStatus:
        """
        Fetch current task status.
        
        Raises:
            ProviderTransientError: On network errors, 5xx and 429; callers retry
        """
        family = model_family(model_id)
        path = _DEDICATED_ENDPOINTS[family][1] if family else _UNIFIED_ENDPOINTS[1]
        
        try:
            response = await self._client.get(
                f"{self.base_url}{path}", params={"taskId": task_id}, headers=self._headers()
            )
        except httpx.HTTPError as e:
            raise ProviderTransientError(f"Status check failed: {e}") from e
        
        if response.status_code >= 500 or response.status_code == 429:
            raise ProviderTransientError(f"Status check returned HTTP {response.status_code}", code=response.status_code)
        
        data = self._json(response)
        code = data.get("code")
        if response.status_code >= 300 or (code is not None and code != 200):
            if isinstance(code, int) and code >= 500:
                raise ProviderTransientError(data.get("msg") or "Status check failed", code=code)
            # Permanent provider-side rejection of the task
            return TaskStatus(
                task_id=task_id,
                state=TaskState.FAILURE,
                error=f"[Code {code or response.status_code}] {data.get('msg') or 'Failed to check status'}",
            )
        
        task = data.get("data") or {}
        if family is None:
            return self._parse_unified(task_id, task)
        return self._parse_success_flag(task_id, task)
    
    def _parse_unified(self, task_id: str, task: Dict[str, Any]) -> TaskStatus:
        state = task.get("state")
        if state == "success":
            urls = parse_result_json(task.get("resultJson"))
            if not urls:
                return TaskStatus(task_id=task_id, state=TaskState.FAILURE, error=NO_RESULT_URL_ERROR)
            return TaskStatus(task_id=task_id, state=TaskState.SUCCESS, result_urls=urls)
        if state in ("fail", "failed"):
            return TaskStatus(
                task_id=task_id,
                state=TaskState.FAILURE,
                error=task.get("failMsg") or "Generation failed",
            )
        return TaskStatus(task_id=task_id, state=TaskState.RUNNING)
    
    def _parse_success_flag(self, task_id: str, task: Dict[str, Any]) -> TaskStatus:
        # successFlag: 0 generating, 1 success, 2 failed, 3 error
        flag = task.get("successFlag")
        if flag == 1:
            urls = (task.get("response") or {}).get("resultUrls") or []
            if not urls:
                return TaskStatus(task_id=task_id, state=TaskState.FAILURE, error=NO_RESULT_URL_ERROR)
            return TaskStatus(task_id=task_id, state=TaskState.SUCCESS, result_urls=list(urls))
        if flag in (2, 3):
            return TaskStatus(
                task_id=task_id,
                state=TaskState.FAILURE,
                error=task.get("errorMessage") or task.get("msg") or "Generation failed",
            )
        return TaskStatus(task_id=task_id, state=TaskState.RUNNING)
    
    @staticmethod
    def _json(response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}
