"""
LLM transport for the expert report and the consultation chat.

Both providers expose OpenAI-compatible chat-completion endpoints. Streaming
requests are sent with ``requests`` and the SSE body is decoded here; the
cached OpenAI client is kept for one-shot (non-streaming) calls such as the
endpoint probe.
"""
from __future__ import annotations

import codecs
import json
import os
import threading
import time
from functools import lru_cache
from pathlib import Path
from typing import Callable, List, Optional

import requests
from dotenv import load_dotenv
from openai import OpenAI
from pydantic import BaseModel

load_dotenv(dotenv_path=Path(__file__).resolve().parent / ".env")

PERF_LOG = os.getenv("PERF_LOG") == "1"

DEEPSEEK_API_URL = "https://api.deepseek.com/chat/completions"
ZHIPU_API_URL = "https://open.bigmodel.cn/api/paas/v4/chat/completions"
DEFAULT_TIMEOUT_SECONDS = 300.0

SSE_DATA_PREFIX = "data: "
SSE_DONE = "[DONE]"


def log_perf(message: str) -> None:
    if PERF_LOG:
        print(message, flush=True)


# --- Configuration ---

class ProviderConfig(BaseModel):
    """One OpenAI-compatible chat endpoint."""
    name: str
    url: str
    model: str
    api_key: str = ""

    @property
    def base_url(self) -> str:
        """Base URL for the OpenAI SDK (the endpoint without /chat/completions)."""
        return self.url.rsplit("/chat/completions", 1)[0]


class LLMConfig(BaseModel):
    deepseek: ProviderConfig
    zhipu: ProviderConfig
    timeout: float = DEFAULT_TIMEOUT_SECONDS

    def provider(self, name: str) -> ProviderConfig:
        if name not in ("deepseek", "zhipu"):
            raise KeyError(f"unknown provider: {name}")
        return getattr(self, name)


def _env_key(*names: str) -> str:
    for name in names:
        value = (os.getenv(name) or "").strip()
        if value and value != "replace_me":
            return value
    return ""


def load_llm_config() -> LLMConfig:
    """Build the provider configuration from the environment (.env supported)."""
    try:
        timeout = float(os.getenv("LLM_TIMEOUT_SECONDS") or DEFAULT_TIMEOUT_SECONDS)
    except ValueError:
        print("WARNING: LLM_TIMEOUT_SECONDS is not a number, using default.")
        timeout = DEFAULT_TIMEOUT_SECONDS

    return LLMConfig(
        deepseek=ProviderConfig(
            name="DeepSeek",
            url=os.getenv("DEEPSEEK_API_URL") or DEEPSEEK_API_URL,
            model="deepseek-chat",
            api_key=_env_key("DEEPSEEK_API_KEY", "VITE_DEEPSEEK_API_KEY"),
        ),
        zhipu=ProviderConfig(
            name="Zhipu (智谱)",
            url=os.getenv("ZHIPU_API_URL") or ZHIPU_API_URL,
            model="glm-4-plus",
            api_key=_env_key("ZHIPU_API_KEY", "VITE_ZHIPU_API_KEY"),
        ),
        timeout=timeout,
    )


@lru_cache(maxsize=8)
def get_llm_client(api_key: str, base_url: str) -> OpenAI:
    """Return a cached OpenAI client for a given key/base URL pair."""
    return OpenAI(api_key=api_key, base_url=base_url)


def probe_endpoint(provider: ProviderConfig, prompt: str = "Hello") -> str:
    """
    Send a single non-streaming message to check that a key and endpoint work.
    Returns the reply text; SDK errors propagate to the caller.
    """
    client = get_llm_client(provider.api_key, provider.base_url)
    start_time = time.monotonic()
    response = client.chat.completions.create(
        model=provider.model,
        messages=[{"role": "user", "content": prompt}],
        stream=False,
    )
    log_perf(f"[PERF] probe model={provider.model} total_ms={int((time.monotonic() - start_time) * 1000)}")
    return response.choices[0].message.content or ""


# --- Errors and cancellation ---

class TransportHTTPError(Exception):
    """Non-2xx reply from the chat endpoint."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code


class StreamCancelled(Exception):
    """The stream was aborted through its cancel token."""


class StreamTimeout(StreamCancelled):
    """The stream ran past its overall deadline."""


class CancelToken:
    """Abort handle checked by ``stream_chat`` at every suspension point."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


# --- SSE decoding ---

class SSELineDecoder:
    """
    Incremental UTF-8 line splitter for an SSE body.

    Bytes are fed as they arrive; only complete lines are returned. The
    unterminated tail is kept until the next chunk or until ``flush``.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> List[str]:
        self._buffer += self._decoder.decode(chunk)
        if "\n" not in self._buffer:
            return []
        *lines, self._buffer = self._buffer.split("\n")
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> List[str]:
        self._buffer += self._decoder.decode(b"", final=True)
        tail, self._buffer = self._buffer, ""
        tail = tail.rstrip("\r")
        return [tail] if tail else []


def parse_sse_line(line: str) -> Optional[str]:
    """
    Extract ``choices[0].delta.content`` from one SSE line.
    Returns None for non-data lines, the [DONE] marker and malformed frames.
    """
    if not line.startswith(SSE_DATA_PREFIX):
        return None
    data = line[len(SSE_DATA_PREFIX):]
    if data == SSE_DONE:
        return None
    try:
        parsed = json.loads(data)
        return parsed["choices"][0]["delta"].get("content") or None
    except (ValueError, KeyError, IndexError, TypeError, AttributeError):
        return None


def _error_message(response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = {}
    error = data.get("error") if isinstance(data, dict) else None
    message = error.get("message") if isinstance(error, dict) else None
    return message or f"HTTP error! status: {response.status_code}"


def stream_chat(
    url: str,
    key: str,
    body: dict,
    on_token: Callable[[str], None],
    on_complete: Callable[[str], None] = None,
    on_error: Callable[[Exception], None] = None,
    cancel_token: CancelToken = None,
    timeout: float = None,
    session: requests.Session = None,
) -> None:
    """
    POST a streaming chat-completion request and deliver tokens as they arrive.

    Args:
        url: Chat-completion endpoint.
        key: Bearer token.
        body: Request body; ``stream`` is forced to True.
        on_token: Called with each non-empty content delta, in order.
        on_complete: Called once with the concatenated content after a clean end.
        on_error: Called once with the exception on any failure, including
            HTTP errors, network errors, cancellation and timeout.
        cancel_token: Optional abort handle.
        timeout: Overall deadline in seconds (also used as the socket timeout).
        session: Optional ``requests.Session`` (or compatible object).
    """
    timeout = timeout or DEFAULT_TIMEOUT_SECONDS
    session = session or requests
    start_time = time.monotonic()
    deadline = start_time + timeout
    first_token_time = None
    token_count = 0

    def checkpoint() -> None:
        if cancel_token is not None and cancel_token.cancelled:
            raise StreamCancelled("请求已取消")
        if time.monotonic() > deadline:
            raise StreamTimeout(f"请求超时 ({timeout:g}s)")

    headers = {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {key}",
    }
    payload = {**body, "stream": True}

    try:
        checkpoint()
        response = session.post(url, headers=headers, json=payload, stream=True, timeout=timeout)
        try:
            checkpoint()
            if not response.ok:
                raise TransportHTTPError(response.status_code, _error_message(response))

            decoder = SSELineDecoder()
            full_content = ""

            def handle(lines: List[str]) -> None:
                nonlocal full_content, first_token_time, token_count
                for line in lines:
                    content = parse_sse_line(line)
                    if content:
                        if first_token_time is None:
                            first_token_time = time.monotonic()
                        full_content += content
                        token_count += 1
                        on_token(content)

            for chunk in response.iter_content(chunk_size=None):
                checkpoint()
                if chunk:
                    handle(decoder.feed(chunk))
            handle(decoder.flush())
        finally:
            response.close()
    except Exception as e:
        log_perf(
            f"[PERF] stream error model={body.get('model')} "
            f"total_ms={int((time.monotonic() - start_time) * 1000)} err={type(e).__name__}: {e}"
        )
        if on_error:
            on_error(e)
        else:
            print(f"ERROR: stream_chat failed: {e}")
        return

    log_perf(
        f"[PERF] stream model={body.get('model')} tokens={token_count} first_chunk_ms="
        f"{int((first_token_time - start_time) * 1000) if first_token_time else 'NA'} "
        f"total_ms={int((time.monotonic() - start_time) * 1000)}"
    )
    if on_complete:
        on_complete(full_content)
