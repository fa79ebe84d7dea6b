import base64
import copy

import httpx
import pytest

from gemini_proxy.exceptions import ImageFetchError
from gemini_proxy.models.schemas import ChatMessage
from gemini_proxy.services.message_normalizer import (
    has_image_parts,
    last_user_text,
    normalize_messages,
    resolve_image_reference,
)
from gemini_proxy.utils.file_utils import (
    HttpxImageFetcher,
    guess_mime_type_from_url,
    normalize_content_type,
    parse_data_url,
)
from tests.conftest import PNG_BYTES, data_url


class FakeFetcher:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.urls = []

    async def __call__(self, url):
        self.urls.append(url)
        if self.fail:
            raise ImageFetchError(f'无法下载图片 {url}: HTTP 404')
        return 'cmVtb3Rl', 'image/webp'


async def test_string_content_is_unchanged():
    messages = [{'role': 'system', 'content': 'be brief'}, {'role': 'user', 'content': 'hi'}]
    result = await normalize_messages(messages, FakeFetcher())
    assert result == messages
    assert result[0] is not messages[0]


async def test_none_content_is_kept():
    message = ChatMessage(role='assistant', content=None, tool_calls=[{'id': 'call_1'}])
    result = await normalize_messages([message], FakeFetcher())
    assert result == [{'role': 'assistant', 'content': None, 'tool_calls': [{'id': 'call_1'}]}]


async def test_text_parts_are_joined_with_newline():
    messages = [{'role': 'user', 'content': [
        {'type': 'text', 'text': 'line one'},
        {'type': 'text', 'text': 'line two'},
    ]}]
    result = await normalize_messages(messages, FakeFetcher())
    assert result[0]['content'] == 'line one\nline two'
    assert not has_image_parts(result)


async def test_null_text_part_is_treated_as_empty():
    messages = [{'role': 'user', 'content': [
        {'type': 'text', 'text': None},
        {'type': 'text', 'text': 'hello'},
    ]}]
    result = await normalize_messages(messages, FakeFetcher())
    assert result[0]['content'] == '\nhello'


async def test_null_text_part_next_to_image():
    messages = [{'role': 'user', 'content': [
        {'type': 'text', 'text': None},
        {'type': 'image_url', 'image_url': {'url': data_url()}},
    ]}]
    result = await normalize_messages(messages, FakeFetcher())
    assert result[0]['content'][0] == {'text': ''}
    assert has_image_parts(result)


async def test_data_url_image_becomes_inline_data():
    url = data_url()
    messages = [{'role': 'user', 'content': [
        {'type': 'text', 'text': '这是什么？'},
        {'type': 'image_url', 'image_url': {'url': url}},
    ]}]
    result = await normalize_messages(messages, FakeFetcher())
    assert result[0]['content'] == [
        {'text': '这是什么？'},
        {'inline_data': {'mime_type': 'image/png', 'data': url.split(',', 1)[1]}},
    ]
    assert has_image_parts(result)


async def test_raw_base64_defaults_to_jpeg():
    raw = base64.b64encode(b'jpeg-bytes').decode('ascii')
    messages = [{'role': 'user', 'content': [{'type': 'image_url', 'image_url': raw}]}]
    result = await normalize_messages(messages, FakeFetcher())
    assert result[0]['content'] == [{'inline_data': {'mime_type': 'image/jpeg', 'data': raw}}]


async def test_remote_image_uses_fetcher_and_keeps_order():
    fetcher = FakeFetcher()
    messages = [{'role': 'user', 'content': [
        {'type': 'image_url', 'image_url': {'url': 'https://img.test/a.webp'}},
        {'type': 'text', 'text': 'middle'},
        {'type': 'image_url', 'image_url': {'url': data_url()}},
    ]}]
    result = await normalize_messages(messages, fetcher)
    parts = result[0]['content']
    assert fetcher.urls == ['https://img.test/a.webp']
    assert parts[0] == {'inline_data': {'mime_type': 'image/webp', 'data': 'cmVtb3Rl'}}
    assert parts[1] == {'text': 'middle'}
    assert parts[2]['inline_data']['mime_type'] == 'image/png'


async def test_failed_image_becomes_placeholder_and_processing_continues():
    messages = [{'role': 'user', 'content': [
        {'type': 'image_url', 'image_url': {'url': 'https://img.test/missing.png'}},
        {'type': 'image_url', 'image_url': {'url': data_url()}},
    ]}]
    result = await normalize_messages(messages, FakeFetcher(fail=True))
    parts = result[0]['content']
    assert parts[0]['text'].startswith('[图片处理失败:')
    assert 'inline_data' in parts[1]


async def test_all_images_failed_falls_back_to_text():
    messages = [{'role': 'user', 'content': [
        {'type': 'text', 'text': 'look'},
        {'type': 'image_url', 'image_url': {'url': 'https://img.test/missing.png'}},
    ]}]
    result = await normalize_messages(messages, FakeFetcher(fail=True))
    content = result[0]['content']
    assert isinstance(content, str)
    assert content.startswith('look\n[图片处理失败:')
    assert not has_image_parts(result)


async def test_input_is_not_mutated_and_output_is_stable():
    messages = [{'role': 'user', 'content': [
        {'type': 'text', 'text': 'a'},
        {'type': 'image_url', 'image_url': {'url': data_url()}},
    ]}]
    original = copy.deepcopy(messages)
    first = await normalize_messages(messages, FakeFetcher())
    second = await normalize_messages(messages, FakeFetcher())
    assert messages == original
    assert first == second
    # 已转换的结果再次转换保持不变
    assert await normalize_messages(first, FakeFetcher()) == first


async def test_empty_image_reference_is_an_error():
    with pytest.raises(ImageFetchError):
        await resolve_image_reference('  ', FakeFetcher())


def test_parse_data_url():
    assert parse_data_url('data:image/png;base64,AAAA,BBBB') == ('AAAA,BBBB', 'image/png')
    assert parse_data_url('data:;base64,AAAA') == ('AAAA', 'image/jpeg')
    with pytest.raises(ImageFetchError):
        parse_data_url('data:image/png;base64')


def test_guess_mime_type_from_url():
    assert guess_mime_type_from_url('https://x.test/cat.PNG') == 'image/png'
    assert guess_mime_type_from_url('https://x.test/cat.webp?size=2') == 'image/webp'
    assert guess_mime_type_from_url('https://x.test/cat') == 'image/jpeg'


def test_normalize_content_type():
    assert normalize_content_type('image/png; charset=binary') == 'image/png'
    assert normalize_content_type('') is None
    assert normalize_content_type(None) is None


def test_last_user_text():
    messages = [
        {'role': 'user', 'content': 'first'},
        {'role': 'assistant', 'content': 'reply'},
        {'role': 'user', 'content': 'second'},
    ]
    assert last_user_text(messages) == 'second'
    assert last_user_text([{'role': 'system', 'content': 'x'}]) is None


async def test_httpx_fetcher_downloads_and_encodes(http_client):
    fetcher = HttpxImageFetcher(http_client, timeout=5)
    data, mime_type = await fetcher('https://img.test/cat.png')
    assert base64.b64decode(data) == PNG_BYTES
    assert mime_type == 'image/png'


async def test_httpx_fetcher_raises_on_error_status(http_client):
    fetcher = HttpxImageFetcher(http_client, timeout=5)
    with pytest.raises(ImageFetchError, match='HTTP 404'):
        await fetcher('https://img.test/missing.png')


async def test_httpx_fetcher_raises_on_connection_error():
    def refuse(request):
        raise httpx.ConnectError('connection refused', request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(refuse)) as client:
        with pytest.raises(ImageFetchError):
            await HttpxImageFetcher(client)('https://img.test/cat.png')
