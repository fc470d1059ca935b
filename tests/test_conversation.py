from datetime import datetime

import pytest

from conversation import ERROR, IDLE, STREAMING, ConversationOrchestrator, SessionState
from llm_client import LLMConfig, ProviderConfig, StreamCancelled, StreamTimeout, TransportHTTPError

NOW = datetime(2026, 1, 5, 12, 0).timestamp()


def make_config():
    return LLMConfig(
        deepseek=ProviderConfig(name="DeepSeek", url="https://ds.test/chat/completions",
                                model="deepseek-chat", api_key="ds-key"),
        zhipu=ProviderConfig(name="Zhipu", url="https://zp.test/chat/completions",
                             model="glm-4-plus", api_key="zp-key"),
        timeout=30,
    )


class FakeTransport:
    """Replays scripted tokens, then completes or fails."""

    def __init__(self, tokens=(), error=None, during=None):
        self.tokens = list(tokens)
        self.error = error
        self.during = during
        self.calls = []

    def __call__(self, url, key, body, on_token, on_complete, on_error, cancel_token=None, timeout=None):
        self.calls.append({"url": url, "key": key, "body": body, "cancel_token": cancel_token, "timeout": timeout})
        for token in self.tokens:
            on_token(token)
        if self.during:
            self.during()
        if self.error is not None:
            on_error(self.error)
        else:
            on_complete("".join(self.tokens))


def make_orchestrator(transport, events=None):
    listener = (lambda event, state: events.append(event)) if events is not None else None
    return ConversationOrchestrator(SessionState(), config=make_config(), transport=transport,
                                    listener=listener, clock=lambda: NOW)


def test_expert_report_streams_into_state():
    events = []
    transport = FakeTransport(["命宫", "紫微"])
    orch = make_orchestrator(transport, events)

    assert orch.run_expert_analysis("CHART") is True
    assert orch.state.expert_report == "命宫紫微"
    assert orch.status["expert"] == IDLE
    assert not orch.expert_loading
    assert events == ["expert_started", "expert_token", "expert_token", "expert_finished"]

    call = transport.calls[0]
    assert call["url"] == "https://ds.test/chat/completions"
    assert call["key"] == "ds-key"
    assert call["timeout"] == 30
    assert call["body"]["messages"][1]["content"] == "CHART"


def test_expert_rerun_replaces_report():
    orch = make_orchestrator(FakeTransport(["旧"]))
    orch.run_expert_analysis("CHART")
    orch.transport = FakeTransport(["新"])
    orch.run_expert_analysis("CHART")
    assert orch.state.expert_report == "新"


def test_expert_error_message():
    events = []
    orch = make_orchestrator(FakeTransport(["半"], error=TransportHTTPError(401, "Authentication Fails")), events)

    orch.run_expert_analysis("CHART")
    assert orch.state.expert_report == "分析失败: Authentication Fails"
    assert orch.status["expert"] == ERROR
    assert not orch.expert_loading
    assert events[-1] == "expert_failed"


def test_expert_error_without_message_uses_fallback():
    orch = make_orchestrator(FakeTransport(error=Exception()))
    orch.run_expert_analysis("CHART")
    assert orch.state.expert_report == "分析失败: 网络连接或 API Key 异常"


def test_expert_rejected_while_streaming():
    results = []
    transport = FakeTransport(["x"])
    orch = make_orchestrator(transport)

    def reenter():
        assert orch.status["expert"] == STREAMING
        results.append(orch.run_expert_analysis("CHART"))

    transport.during = reenter
    orch.run_expert_analysis("CHART")

    assert results == [False]
    assert len(transport.calls) == 1


def test_cancel_reaches_transport():
    transport = FakeTransport()
    orch = make_orchestrator(transport)

    def cancel_and_fail():
        orch.cancel("expert")
        assert transport.calls[0]["cancel_token"].cancelled
        transport.error = StreamCancelled("请求已取消")

    transport.during = cancel_and_fail
    orch.run_expert_analysis("CHART")
    assert orch.state.expert_report == "（已中止：请求已取消）"
    assert orch.status["expert"] == ERROR


def test_cancelled_report_keeps_streamed_text():
    orch = make_orchestrator(FakeTransport(["命宫", "紫微"], error=StreamCancelled("请求已取消")))
    orch.run_expert_analysis("CHART")
    assert orch.state.expert_report == "命宫紫微\n\n（已中止：请求已取消）"


def test_cancelled_chat_reply_keeps_streamed_text():
    orch = make_orchestrator(FakeTransport(["部分", "回答"], error=StreamCancelled("请求已取消")))
    orch.send_message("问", "CHART")

    reply = orch.state.chat_log[-1]
    assert reply.role == "assistant"
    assert reply.content.startswith("部分回答")
    assert "连接异常" not in reply.content
    assert not orch.chat_loading


def test_timed_out_chat_reply_keeps_streamed_text():
    orch = make_orchestrator(FakeTransport(["流年"], error=StreamTimeout("请求超时 (30s)")))
    orch.send_message("今年如何？", "CHART")
    assert orch.state.chat_log[-1].content == "流年\n\n（已中止：请求超时 (30s)）"


def test_interrupted_transport_resets_status():
    def broken(*args, **kwargs):
        raise RuntimeError("rerun")

    orch = make_orchestrator(broken)
    with pytest.raises(RuntimeError):
        orch.run_expert_analysis("CHART")
    assert orch.status["expert"] == IDLE


def test_chat_turn_appends_user_and_assistant():
    events = []
    orch = make_orchestrator(FakeTransport(["财运", "亨通"]), events)

    assert orch.send_message("分析我未来三年的财运", "CHART") is True

    log = orch.state.chat_log
    assert [m.role for m in log] == ["user", "assistant"]
    assert log[0].content == "分析我未来三年的财运"
    assert log[1].content == "财运亨通"
    assert log[0].timestamp == log[1].timestamp == int(NOW * 1000)
    assert events[0] == "chat_started"
    assert events[-1] == "chat_finished"


def test_chat_history_and_report_in_request():
    transport = FakeTransport(["答"])
    orch = make_orchestrator(transport)
    orch.state.expert_report = "REPORT"

    orch.send_message("第一问", "CHART")
    orch.send_message("第二问", "CHART")

    messages = transport.calls[1]["body"]["messages"]
    assert messages[1]["content"] == "当前时间为2026/1/5"
    assert messages[2]["content"].endswith("此前的专家深度分析报告：\nREPORT")
    assert messages[3:] == [
        {"role": "user", "content": "第一问"},
        {"role": "assistant", "content": "答"},
        {"role": "user", "content": "第二问"},
    ]
    assert transport.calls[1]["key"] == "zp-key"
    assert len(orch.state.chat_log) == 4


def test_chat_error_replaces_assistant_content():
    orch = make_orchestrator(FakeTransport(["部分"], error=ConnectionError("timed out")))
    orch.send_message("婚姻如何？", "CHART")

    assert orch.state.chat_log[-1].content == "连接异常: timed out"
    assert orch.status["chat"] == ERROR
    assert not orch.chat_loading


def test_chat_rejects_blank_input():
    transport = FakeTransport(["x"])
    orch = make_orchestrator(transport)
    assert orch.send_message("   ", "CHART") is False
    assert orch.state.chat_log == []
    assert transport.calls == []


def test_chat_rejected_while_streaming():
    results = []
    transport = FakeTransport(["x"])
    orch = make_orchestrator(transport)
    transport.during = lambda: results.append(orch.send_message("再问", "CHART"))

    orch.send_message("先问", "CHART")

    assert results == [False]
    assert len(orch.state.chat_log) == 2


def test_modes_are_independent():
    transport = FakeTransport(["x"])
    orch = make_orchestrator(transport)
    transport.during = lambda: orch.send_message("并行提问", "CHART") if not orch.chat_loading else None

    orch.run_expert_analysis("CHART")
    assert len(orch.state.chat_log) == 2


def test_set_view():
    orch = make_orchestrator(FakeTransport())
    orch.set_view("chat")
    assert orch.state.active_view == "chat"
    with pytest.raises(ValueError):
        orch.set_view("settings")
