import json

import httpx
import pytest

from app.core.exceptions import ProviderError, ProviderTransientError
from app.services.kie_service import KieService, TaskState, model_family, parse_result_json


def _service(handler, **kwargs):
    kwargs.setdefault("api_key", "kie_test")
    kwargs.setdefault("callback_base_url", "https://studio.example.com")
    return KieService(
        base_url="https://api.kie.ai",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        **kwargs,
    )


@pytest.mark.parametrize(
    "model_id, family",
    [
        ("veo3_fast", "veo"),
        ("veo3", "veo"),
        ("4o-image", "gpt4o-image"),
        ("flux-kontext-max", "flux-kontext"),
        ("runway-gen3", "runway"),
        ("luma", "luma"),
        ("google/nano-banana", None),
        ("kling/v2-1-pro", None),
    ],
)
def test_model_family(model_id, family):
    assert model_family(model_id) == family


def test_parse_result_json():
    assert parse_result_json('{"resultUrls": ["https://cdn/a.png", ""]}') == ["https://cdn/a.png"]
    assert parse_result_json('{"resultUrl": "https://cdn/a.png"}') == ["https://cdn/a.png"]
    assert parse_result_json("{broken") == []
    assert parse_result_json(None) == []


@pytest.mark.asyncio
async def test_submit_unified_task():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"code": 200, "msg": "success", "data": {"taskId": "task_abc"}})

    service = _service(handler)
    task_id = await service.submit("google/nano-banana", "a cat", {"output_format": "png"})
    await service.aclose()

    assert task_id == "task_abc"
    assert seen["path"] == "/api/v1/jobs/createTask"
    assert seen["auth"] == "Bearer kie_test"
    assert seen["body"] == {
        "model": "google/nano-banana",
        "input": {"prompt": "a cat", "output_format": "png"},
        "callBackUrl": "https://studio.example.com/api/webhook/kie-callback",
    }


@pytest.mark.asyncio
async def test_submit_veo_uses_dedicated_endpoint():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"code": 200, "data": {"taskId": "veo_1"}})

    service = _service(handler, callback_base_url="")
    await service.submit("veo3_fast", "a cat", {"aspectRatio": "9:16"})

    assert seen["path"] == "/api/v1/veo/generate"
    assert seen["body"]["model"] == "veo3_fast"
    assert seen["body"]["aspectRatio"] == "9:16"
    assert "callBackUrl" not in seen["body"]


@pytest.mark.asyncio
async def test_submit_rejection_raises():
    service = _service(lambda request: httpx.Response(200, json={"code": 402, "msg": "Insufficient credits"}))

    with pytest.raises(ProviderError) as exc_info:
        await service.submit("veo3_fast", "a cat")
    assert exc_info.value.code == 402
    assert str(exc_info.value) == "Insufficient credits"


@pytest.mark.asyncio
async def test_submit_network_error_raises():
    def handler(request):
        raise httpx.ConnectError("connection refused")

    with pytest.raises(ProviderError):
        await _service(handler).submit("veo3_fast", "a cat")


@pytest.mark.asyncio
async def test_submit_without_api_key_raises():
    with pytest.raises(ProviderError):
        await _service(lambda r: httpx.Response(200, json={}), api_key="").submit("veo3_fast", "a cat")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "task, state, urls, error",
    [
        ({"state": "waiting"}, TaskState.RUNNING, [], None),
        ({"state": "success", "resultJson": '{"resultUrls": ["https://cdn/a.png"]}'}, TaskState.SUCCESS, ["https://cdn/a.png"], None),
        ({"state": "success", "resultJson": "{}"}, TaskState.FAILURE, [], "No result URL returned"),
        ({"state": "fail", "failMsg": "NSFW content"}, TaskState.FAILURE, [], "NSFW content"),
    ],
)
async def test_poll_unified_states(task, state, urls, error):
    def handler(request):
        assert request.url.path == "/api/v1/jobs/recordInfo"
        assert request.url.params["taskId"] == "task_1"
        return httpx.Response(200, json={"code": 200, "data": {"taskId": "task_1", **task}})

    status = await _service(handler).poll("task_1", "google/nano-banana")

    assert status.state == state
    assert status.result_urls == urls
    assert status.error == error


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "task, state",
    [
        ({"successFlag": 0}, TaskState.RUNNING),
        ({"successFlag": 1, "response": {"resultUrls": ["https://cdn/v.mp4"]}}, TaskState.SUCCESS),
        ({"successFlag": 1, "response": {}}, TaskState.FAILURE),
        ({"successFlag": 2, "errorMessage": "failed"}, TaskState.FAILURE),
        ({"successFlag": 3}, TaskState.FAILURE),
    ],
)
async def test_poll_success_flag_states(task, state):
    def handler(request):
        assert request.url.path == "/api/v1/veo/record-info"
        return httpx.Response(200, json={"code": 200, "data": task})

    status = await _service(handler).poll("task_1", "veo3_fast")
    assert status.state == state


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(502, text="Bad Gateway"),
        httpx.Response(429, json={"code": 429, "msg": "Too many requests"}),
        httpx.Response(200, json={"code": 500, "msg": "Server error"}),
    ],
)
async def test_poll_transient_errors(response):
    with pytest.raises(ProviderTransientError):
        await _service(lambda request: response).poll("task_1", "veo3_fast")


@pytest.mark.asyncio
async def test_poll_network_error_is_transient():
    def handler(request):
        raise httpx.ReadTimeout("timed out")

    with pytest.raises(ProviderTransientError):
        await _service(handler).poll("task_1", "veo3_fast")


@pytest.mark.asyncio
async def test_poll_rejected_task_is_failure():
    service = _service(lambda request: httpx.Response(200, json={"code": 422, "msg": "Task not found"}))

    status = await service.poll("task_1", "veo3_fast")

    assert status.state == TaskState.FAILURE
    assert status.error == "[Code 422] Task not found"
