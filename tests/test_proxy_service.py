import json

import httpx
import pytest

from gemini_proxy.exceptions import InvalidRequestError
from gemini_proxy.models.http import InboundRequest
from gemini_proxy.models.registry import ALL_MODELS
from gemini_proxy.services.proxy_service import (
    handle_chat_completions,
    handle_health,
    handle_image_generation,
    handle_models,
    parse_chat_request,
    parse_image_request,
)
from gemini_proxy.services.stream_translator import collect_stream
from tests.conftest import data_url


def chat_inbound(body, key='key-1', request_id='rid-1'):
    headers = {'Content-Type': 'application/json'}
    if key:
        headers['Authorization'] = f'Bearer {key}'
    if not isinstance(body, str):
        body = json.dumps(body)
    return InboundRequest(method='POST', path='/v1/chat/completions', headers=headers, body=body,
                          request_id=request_id)


@pytest.mark.parametrize('body, code', [
    ('', 'empty_body'),
    ('   ', 'empty_body'),
    ('{not json', 'invalid_json'),
    ('[1, 2]', 'invalid_json'),
    ('{"model": "gpt-4", "messages": [{"role": "user", "content": "hi"}]}', 'model_not_supported'),
    ('{"model": "imagen-3.0-generate-001", "messages": [{"role": "user", "content": "hi"}]}',
     'model_not_supported'),
    ('{"model": "gemini-2.0-flash"}', 'invalid_messages'),
    ('{"model": "gemini-2.0-flash", "messages": []}', 'invalid_messages'),
    ('{"model": "gemini-2.0-flash", "messages": "hi"}', 'invalid_messages'),
    ('{"model": "gemini-2.0-flash", "messages": [{"role": "robot", "content": "hi"}]}', 'invalid_request'),
])
def test_parse_chat_request_rejects(body, code):
    with pytest.raises(InvalidRequestError) as exc_info:
        parse_chat_request(body)
    assert exc_info.value.code == code
    assert exc_info.value.status_code == 400


def test_parse_chat_request_defaults():
    request = parse_chat_request('{"messages": [{"role": "user", "content": "hi"}], "unknown": 1}')
    assert request.model == 'gemini-2.0-flash'
    assert request.temperature == 0.7
    assert request.max_tokens == 8000
    assert request.stream is False


@pytest.mark.parametrize('body, code', [
    ({'model': 'gemini-2.0-flash', 'prompt': 'cat'}, 'model_not_supported'),
    ({'prompt': '   '}, 'invalid_prompt'),
    ({'prompt': 'cat', 'size': '300x300'}, 'invalid_size'),
    ({'prompt': 'cat', 'n': 0}, 'invalid_n'),
    ({'prompt': 'cat', 'n': 5}, 'invalid_n'),
])
def test_parse_image_request_rejects(body, code):
    with pytest.raises(InvalidRequestError) as exc_info:
        parse_image_request(json.dumps(body))
    assert exc_info.value.code == code


def test_health_body():
    response = handle_health()
    body = json.loads(response.body)
    assert response.status_code == 200
    assert body['status'] == 'ok'
    assert body['service'] == 'gemini-proxy'
    assert body['models'] == len(ALL_MODELS)
    assert body['timestamp'].endswith('Z')
    assert set(body['features']) == {
        'streaming', 'cors', 'flexible_auth', 'function_calling', 'image_generation', 'vision'
    }
    assert response.headers['Access-Control-Allow-Origin'] == '*'


def test_models_body():
    body = json.loads(handle_models().body)
    assert [m['id'] for m in body['data']] == list(ALL_MODELS)
    first = body['data'][0]
    assert first['object'] == 'model'
    assert first['owned_by'] == 'google'
    assert first['permission'] == []
    assert first['root'] == first['id']
    assert first['parent'] is None


async def test_chat_json(gemini_client, fake_gemini):
    response = await handle_chat_completions(
        chat_inbound({'messages': [{'role': 'user', 'content': 'ping'}]}), gemini_client
    )
    assert response.status_code == 200
    assert response.headers['Content-Type'] == 'application/json'
    assert response.headers['X-Request-Id'] == 'rid-1'
    assert json.loads(response.body) == fake_gemini.completion


async def test_chat_stream(gemini_client):
    response = await handle_chat_completions(
        chat_inbound({'messages': [{'role': 'user', 'content': 'ping'}], 'stream': True}), gemini_client
    )
    assert response.is_stream
    assert response.headers['Content-Type'] == 'text/event-stream'
    assert response.headers['Cache-Control'] == 'no-cache'
    body = await collect_stream(response.body)
    assert body.count('data: ') == 4
    assert body.endswith('data: [DONE]\n\n')


async def test_chat_with_image_uses_native_api(gemini_client, fake_gemini):
    body = {'messages': [{'role': 'user', 'content': [
        {'type': 'text', 'text': '这是什么？'},
        {'type': 'image_url', 'image_url': {'url': data_url()}},
    ]}]}
    response = await handle_chat_completions(chat_inbound(body), gemini_client)

    assert response.status_code == 200
    assert fake_gemini.requests[-1].url.path.endswith(':generateContent')
    assert json.loads(response.body)['choices'][0]['message']['content'] == '一只猫'


async def test_chat_uses_default_key(gemini_client, fake_gemini):
    inbound = chat_inbound({'messages': [{'role': 'user', 'content': 'ping'}]}, key=None)
    response = await handle_chat_completions(inbound, gemini_client, default_api_key='env-key')
    assert response.status_code == 200
    assert fake_gemini.requests[-1].headers['Authorization'] == 'Bearer env-key'


async def test_chat_without_key_is_401(gemini_client, fake_gemini):
    inbound = chat_inbound({'messages': [{'role': 'user', 'content': 'ping'}]}, key=None)
    response = await handle_chat_completions(inbound, gemini_client)
    body = json.loads(response.body)
    assert response.status_code == 401
    assert body['error']['code'] == 'missing_api_key'
    assert 'request_id' not in body['error']
    assert fake_gemini.requests == []


async def test_chat_validation_error_is_400(gemini_client, fake_gemini):
    response = await handle_chat_completions(chat_inbound('{"model": "gpt-4", "messages": []}'), gemini_client)
    assert response.status_code == 400
    assert json.loads(response.body)['error']['type'] == 'invalid_request_error'
    assert fake_gemini.requests == []


async def test_chat_upstream_server_error_carries_request_id(gemini_client, fake_gemini):
    fake_gemini.error = httpx.Response(503, json={'error': {'message': 'overloaded'}})
    response = await handle_chat_completions(
        chat_inbound({'messages': [{'role': 'user', 'content': 'ping'}]}), gemini_client
    )
    body = json.loads(response.body)
    assert response.status_code == 500
    assert body['error']['type'] == 'internal_error'
    assert body['error']['request_id'] == 'rid-1'


async def test_chat_unexpected_error_is_generic_500(gemini_client, fake_gemini):
    def explode(request):
        raise ValueError('boom')

    fake_gemini.on_request = explode
    response = await handle_chat_completions(
        chat_inbound({'messages': [{'role': 'user', 'content': 'ping'}]}), gemini_client
    )
    body = json.loads(response.body)
    assert response.status_code == 500
    assert body['error']['code'] == 'server_error'
    assert 'boom' not in body['error']['message']


async def test_image_generation(gemini_client, fake_gemini):
    inbound = chat_inbound({'prompt': 'a red fox', 'size': '1792x1024', 'n': 1})
    response = await handle_image_generation(inbound, gemini_client)

    body = json.loads(response.body)
    assert response.status_code == 200
    assert body['data'] == [{'url': 'data:image/png;base64,aW1hZ2U=', 'revised_prompt': 'a red fox'}]
    assert fake_gemini.json_body()['parameters']['aspectRatio'] == '16:9'


async def test_image_generation_b64_json(gemini_client):
    inbound = chat_inbound({'prompt': 'a red fox', 'response_format': 'b64_json'})
    body = json.loads((await handle_image_generation(inbound, gemini_client)).body)
    assert body['data'] == [{'b64_json': 'aW1hZ2U=', 'revised_prompt': 'a red fox'}]


async def test_image_generation_upstream_error(gemini_client, fake_gemini):
    fake_gemini.error = httpx.Response(400, json={'error': {'message': 'bad prompt'}})
    response = await handle_image_generation(chat_inbound({'prompt': 'cat'}), gemini_client)
    body = json.loads(response.body)
    assert response.status_code == 500
    assert body['error']['code'] == 'image_generation_error'
