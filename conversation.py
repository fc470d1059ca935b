"""
Session state and the orchestrator driving the expert report and the chat.

The orchestrator is the only writer of ``SessionState``; views read it and may
subscribe to orchestrator events to redraw while tokens stream in.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List

from llm_client import CancelToken, LLMConfig, StreamCancelled, load_llm_config, log_perf, stream_chat
from logic import build_chat_request, build_expert_request

VIEWS = ("chart", "text", "analysis", "chat")

EXPERT = "expert"
CHAT = "chat"

IDLE = "idle"
STREAMING = "streaming"
ERROR = "error"

EXPERT_ERROR_FALLBACK = "网络连接或 API Key 异常"
CHAT_ERROR_FALLBACK = "请重试"


@dataclass
class ChatMessage:
    role: str  # "user" or "assistant"
    content: str
    timestamp: int  # epoch ms


@dataclass
class SessionState:
    """Per-tab state observed by the view. Not cleared when the birth input changes."""
    expert_report: str = ""
    chat_log: List[ChatMessage] = field(default_factory=list)
    active_view: str = "chart"


def _error_text(err: Exception, fallback: str) -> str:
    return str(err) or fallback


def _stopped(partial: str, err: Exception) -> str:
    """Partial reply kept after a cancel or timeout, with a short stop note."""
    note = f"（已中止：{err}）" if str(err) else "（已中止）"
    return f"{partial}\n\n{note}" if partial else note


class ConversationOrchestrator:
    """
    Drives the two LLM modes against one SessionState.

    Each mode is a small state machine (idle -> streaming -> idle | error);
    a request is rejected while its mode is streaming.
    """

    def __init__(
        self,
        state: SessionState,
        config: LLMConfig = None,
        transport: Callable = stream_chat,
        listener: Callable[[str, SessionState], None] = None,
        clock: Callable[[], float] = None,
    ):
        self.state = state
        self.config = config or load_llm_config()
        self.transport = transport
        self.listener = listener
        self.clock = clock or time.time
        self.status: Dict[str, str] = {EXPERT: IDLE, CHAT: IDLE}
        self._cancel_tokens: Dict[str, CancelToken] = {}

    @property
    def expert_loading(self) -> bool:
        return self.status[EXPERT] == STREAMING

    @property
    def chat_loading(self) -> bool:
        return self.status[CHAT] == STREAMING

    def set_view(self, view: str) -> None:
        if view not in VIEWS:
            raise ValueError(f"unknown view: {view}")
        self.state.active_view = view

    def cancel(self, mode: str) -> None:
        """Abort the in-flight request of a mode, if any."""
        token = self._cancel_tokens.get(mode)
        if token is not None:
            token.cancel()

    def _emit(self, event: str) -> None:
        if self.listener:
            self.listener(event, self.state)

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    def _run(self, mode: str, provider, body: dict, on_token, on_error) -> None:
        token = CancelToken()
        self._cancel_tokens[mode] = token
        self.status[mode] = STREAMING

        def handle_complete(full_content: str) -> None:
            self.status[mode] = IDLE
            log_perf(f"[PERF] {mode} finished chars={len(full_content)}")
            self._emit(f"{mode}_finished")

        def handle_error(err: Exception) -> None:
            self.status[mode] = ERROR
            print(f"WARNING: {mode} request failed: {err}")
            on_error(err)
            self._emit(f"{mode}_failed")

        try:
            self.transport(
                provider.url,
                provider.api_key,
                body,
                on_token,
                handle_complete,
                handle_error,
                cancel_token=token,
                timeout=self.config.timeout,
            )
        finally:
            # Interrupted without a terminal callback (e.g. the page reran).
            if self.status[mode] == STREAMING:
                self.status[mode] = IDLE
            self._cancel_tokens.pop(mode, None)

    def run_expert_analysis(self, chart_text: str) -> bool:
        """
        Stream a fresh expert report for the chart text into ``expert_report``.
        Returns False without sending anything if a report is already streaming.
        """
        if self.expert_loading:
            return False

        provider = self.config.deepseek
        self.state.expert_report = ""
        self._emit("expert_started")

        def on_token(token: str) -> None:
            self.state.expert_report += token
            self._emit("expert_token")

        def on_error(err: Exception) -> None:
            if isinstance(err, StreamCancelled):
                self.state.expert_report = _stopped(self.state.expert_report, err)
            else:
                self.state.expert_report = f"分析失败: {_error_text(err, EXPERT_ERROR_FALLBACK)}"

        self._run(EXPERT, provider, build_expert_request(chart_text, model=provider.model), on_token, on_error)
        return True

    def send_message(self, user_text: str, chart_text: str) -> bool:
        """
        Send one chat turn. Appends the user message and an empty assistant
        message, then streams the reply into that assistant message.
        Returns False without changing state for blank input or while a reply is streaming.
        """
        if not user_text.strip() or self.chat_loading:
            return False

        provider = self.config.zhipu
        history = list(self.state.chat_log)
        now_ms = self._now_ms()
        assistant_msg = ChatMessage(role="assistant", content="", timestamp=now_ms)
        self.state.chat_log.append(ChatMessage(role="user", content=user_text, timestamp=now_ms))
        self.state.chat_log.append(assistant_msg)
        self._emit("chat_started")

        body = build_chat_request(
            chart_text,
            self.state.expert_report,
            history,
            user_text,
            today=datetime.fromtimestamp(self.clock()).date(),
            model=provider.model,
        )

        def on_token(token: str) -> None:
            assistant_msg.content += token
            self._emit("chat_token")

        def on_error(err: Exception) -> None:
            if isinstance(err, StreamCancelled):
                assistant_msg.content = _stopped(assistant_msg.content, err)
            else:
                assistant_msg.content = f"连接异常: {_error_text(err, CHAT_ERROR_FALLBACK)}"

        self._run(CHAT, provider, body, on_token, on_error)
        return True
