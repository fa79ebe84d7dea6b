"""
部署后的冒烟测试

对运行中的代理依次检查健康检查、模型列表、CORS 预检、404 和聊天接口，
每项输出一行结果，有失败时以非零状态退出。

    gemini-proxy-smoke --base-url http://127.0.0.1:8080 --api-key YOUR_KEY --stream
"""
import argparse
import json
import sys
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from gemini_proxy.models.registry import DEFAULT_CHAT_MODEL
from gemini_proxy.utils.logger import configure_root_logger, get_logger

logger = get_logger(__name__)

GREEN = "\033[32m"
RED = "\033[31m"
RESET = "\033[0m"

DEFAULT_TIMEOUT = (5, 60)  # (连接超时, 读取超时)


@dataclass
class CheckResult:
    name: str
    ok: bool
    detail: str = ''


class CheckFailed(Exception):
    pass


def _expect(condition: bool, detail: str) -> None:
    if not condition:
        raise CheckFailed(detail)


def _json_body(response) -> Dict[str, Any]:
    try:
        return response.json()
    except ValueError:
        raise CheckFailed(f"响应不是 JSON: {response.text[:200]!r}")


def _check_health(session, base_url: str, **_) -> str:
    response = session.get(f"{base_url}/health", timeout=DEFAULT_TIMEOUT)
    _expect(response.status_code == 200, f"状态码 {response.status_code}")
    body = _json_body(response)
    _expect(body.get('status') == 'ok', f"status={body.get('status')!r}")
    return f"{body.get('service')} {body.get('version')}, {body.get('models')} 个模型"


def _check_models(session, base_url: str, **_) -> str:
    response = session.get(f"{base_url}/v1/models", timeout=DEFAULT_TIMEOUT)
    _expect(response.status_code == 200, f"状态码 {response.status_code}")
    body = _json_body(response)
    data = body.get('data') or []
    _expect(body.get('object') == 'list' and len(data) > 0, "模型列表为空")
    return f"{len(data)} 个模型"


def _check_preflight(session, base_url: str, **_) -> str:
    response = session.options(f"{base_url}/v1/chat/completions", timeout=DEFAULT_TIMEOUT)
    _expect(response.status_code == 200, f"状态码 {response.status_code}")
    origin = response.headers.get('Access-Control-Allow-Origin')
    _expect(origin == '*', f"Access-Control-Allow-Origin={origin!r}")
    return "CORS 头正常"


def _check_not_found(session, base_url: str, **_) -> str:
    response = session.get(f"{base_url}/__smoke_not_found__", timeout=DEFAULT_TIMEOUT)
    _expect(response.status_code == 404, f"状态码 {response.status_code}")
    code = (_json_body(response).get('error') or {}).get('code')
    _expect(code == 'path_not_found', f"code={code!r}")
    return "404 正常"


def _check_chat(
    session,
    base_url: str,
    api_key: Optional[str] = None,
    model: str = DEFAULT_CHAT_MODEL,
    stream: bool = False,
) -> str:
    headers = {'Content-Type': 'application/json'}
    if api_key:
        headers['Authorization'] = f"Bearer {api_key}"
    payload = {
        'model': model,
        'messages': [{'role': 'user', 'content': 'Reply with the single word: pong'}],
        'max_tokens': 32,
        'stream': stream,
    }
    response = session.post(
        f"{base_url}/v1/chat/completions",
        headers=headers,
        json=payload,
        timeout=DEFAULT_TIMEOUT,
        stream=stream,
    )
    if response.status_code != 200:
        error = (_json_body(response).get('error') or {})
        raise CheckFailed(f"状态码 {response.status_code}: {error.get('code')} {error.get('message')}")

    if not stream:
        body = _json_body(response)
        choices = body.get('choices') or []
        _expect(len(choices) > 0, "choices 为空")
        content = (choices[0].get('message') or {}).get('content') or ''
        return f"回复: {content.strip()[:60]!r}"

    frames = []
    for line in response.iter_lines(decode_unicode=True):
        if line and line.startswith('data:'):
            frames.append(line[5:].strip())
    _expect(len(frames) >= 2, f"只收到 {len(frames)} 帧")
    _expect(frames[-1] == '[DONE]', f"最后一帧不是 [DONE]: {frames[-1][:60]!r}")
    text = ''
    for frame in frames[:-1]:
        try:
            chunk = json.loads(frame)
        except json.JSONDecodeError:
            raise CheckFailed(f"无效的 SSE 帧: {frame[:60]!r}")
        for choice in chunk.get('choices') or []:
            text += (choice.get('delta') or {}).get('content') or ''
    return f"{len(frames)} 帧, 回复: {text.strip()[:60]!r}"


CHECKS: List[tuple] = [
    ('health', _check_health),
    ('models', _check_models),
    ('cors_preflight', _check_preflight),
    ('not_found', _check_not_found),
    ('chat_completions', _check_chat),
]


def run_checks(
    session,
    base_url: str,
    api_key: Optional[str] = None,
    model: str = DEFAULT_CHAT_MODEL,
    stream: bool = False,
    skip_chat: bool = False,
) -> List[CheckResult]:
    """
    依次执行所有检查

    Args:
        session: requests.Session 或接口兼容的对象
        base_url: 代理地址
        api_key: Gemini API Key，不提供时依赖代理的默认 Key
        model: 聊天检查使用的模型
        stream: 聊天检查是否使用流式
        skip_chat: 跳过需要真实上游的聊天检查

    Returns:
        每项检查的结果
    """
    base_url = base_url.rstrip('/')
    results = []
    for name, check in CHECKS:
        if skip_chat and check is _check_chat:
            continue
        try:
            detail = check(session, base_url, api_key=api_key, model=model, stream=stream)
            results.append(CheckResult(name=name, ok=True, detail=detail))
        except CheckFailed as e:
            results.append(CheckResult(name=name, ok=False, detail=str(e)))
        except requests.exceptions.RequestException as e:
            results.append(CheckResult(name=name, ok=False, detail=f"请求失败: {e}"))
    return results


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Gemini Proxy 冒烟测试")
    parser.add_argument("--base-url", default="http://127.0.0.1:8080", help="代理地址")
    parser.add_argument("--api-key", default=None, help="Gemini API Key")
    parser.add_argument("--model", default=DEFAULT_CHAT_MODEL)
    parser.add_argument("--stream", action="store_true", help="聊天检查使用流式响应")
    parser.add_argument("--skip-chat", action="store_true", help="跳过聊天检查")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """命令行入口：gemini-proxy-smoke"""
    configure_root_logger(level="WARNING")
    args = parse_args(argv)

    with requests.Session() as session:
        results = run_checks(
            session,
            args.base_url,
            api_key=args.api_key,
            model=args.model,
            stream=args.stream,
            skip_chat=args.skip_chat,
        )

    for result in results:
        mark = f"{GREEN}✅ PASS{RESET}" if result.ok else f"{RED}❌ FAIL{RESET}"
        print(f"{mark} {result.name:<18} {result.detail}")

    failed = [r for r in results if not r.ok]
    if failed:
        logger.error(f"{len(failed)}/{len(results)} 项检查失败")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
