"""
Zi Wei Dou Shu Streamlit App.
"""
import streamlit as st
from datetime import date, datetime
from pathlib import Path
from dotenv import load_dotenv
from pydantic import ValidationError

from chart_models import Chart
from conversation import ConversationOrchestrator, SessionState, VIEWS
from llm_client import load_llm_config, probe_endpoint
from logic import (
    BirthInput,
    EphemerisUnavailable,
    MIN_BIRTH_DATE,
    SUGGESTED_QUESTIONS,
    compute_chart,
    default_birth_input,
    describe_lunar_birth,
    with_year,
    year_options,
)
from pdf_generator import generate_report_pdf
from tree_text import render_tree
from ziwei_utils import ZiweiChartGenerator

PROJECT_ROOT = Path(__file__).resolve().parent
load_dotenv(dotenv_path=PROJECT_ROOT / ".env")


def get_app_version() -> str:
    """Read the app version from VERSION file; fallback if missing."""
    try:
        return (PROJECT_ROOT / "VERSION").read_text(encoding="utf-8").strip()
    except Exception:
        return "v0.0.0"


VIEW_LABELS = {
    "chart": "🀄 命盘",
    "text": "📄 报告",
    "analysis": "✨ AI",
    "chat": "💬 咨询",
}
GENDER_LABELS = {"male": "乾造 (男)", "female": "坤造 (女)"}

# Page Configuration
st.set_page_config(
    page_title="紫微斗数 PRO",
    page_icon="🔮",
    layout="wide"
)

# Initialize session state
if "session" not in st.session_state:
    st.session_state.session = SessionState()
if "orchestrator" not in st.session_state:
    st.session_state.orchestrator = ConversationOrchestrator(st.session_state.session, config=load_llm_config())
if "birth_input" not in st.session_state:
    st.session_state.birth_input = default_birth_input()
if "input_gender" not in st.session_state:
    st.session_state.input_gender = st.session_state.birth_input.gender
if "input_date" not in st.session_state:
    st.session_state.input_date = st.session_state.birth_input.solar_date
if "input_time" not in st.session_state:
    st.session_state.input_time = datetime.strptime(st.session_state.birth_input.time, "%H:%M").time()

session: SessionState = st.session_state.session
orchestrator: ConversationOrchestrator = st.session_state.orchestrator

# Custom CSS for styling
st.markdown("""
<style>
    @import url('https://fonts.googleapis.com/css2?family=Noto+Serif+SC:wght@400;700&display=swap');

    .stApp {
        background: #F5F5F5;
    }

    h1 {
        font-family: 'Noto Serif SC', serif;
        color: #E65100;
        letter-spacing: 2px;
    }

    .sidebar-title {
        font-weight: 700;
        color: #424242;
        margin-bottom: 0.3rem;
    }

    .ziwei-chart-container {
        background: #FFFFFF;
        border: 1px solid #E0E0E0;
        border-radius: 8px;
        padding: 8px;
        overflow-x: auto;
    }

    .ziwei-chart-container svg {
        min-width: 680px;
        width: 100%;
        height: auto;
    }

    .info-card {
        background: #FFF3E0;
        border: 1px solid #FFE0B2;
        border-radius: 8px;
        padding: 10px 12px;
        font-size: 0.85rem;
        color: #6D4C41;
    }
</style>
""", unsafe_allow_html=True)


@st.cache_data(show_spinner=False)
def load_chart(solar_date: date, time_str: str, gender: str) -> Chart:
    """Chart for one birth input; recomputed whenever the input changes."""
    return compute_chart(BirthInput(solar_date=solar_date, time=time_str, gender=gender))


def set_to_current() -> None:
    now = datetime.now()
    st.session_state.input_date = now.date()
    st.session_state.input_time = now.time().replace(second=0, microsecond=0)


def on_year_change() -> None:
    current = st.session_state.birth_input
    moved = with_year(current.model_copy(update={"solar_date": st.session_state.input_date}),
                      st.session_state.input_year)
    st.session_state.input_date = min(moved.solar_date, date.today())


def use_suggestion(question: str) -> None:
    """Prefill the chat box with a suggested question."""
    st.session_state.chat_draft_box = question


# Sidebar: birth input form
with st.sidebar:
    col_title, col_now = st.columns([2, 1])
    with col_title:
        st.markdown('<p class="sidebar-title">⚙️ 基础信息</p>', unsafe_allow_html=True)
    with col_now:
        st.button("🕒 设为此时", on_click=set_to_current, use_container_width=True)

    st.radio(
        "性别",
        options=["male", "female"],
        format_func=lambda g: GENDER_LABELS[g],
        key="input_gender",
        horizontal=True,
    )

    st.session_state.input_year = st.session_state.input_date.year
    st.selectbox(
        "📅 快速年份",
        options=year_options(),
        format_func=lambda y: f"{y}年",
        key="input_year",
        on_change=on_year_change,
    )
    st.date_input(
        "详细公历日期",
        min_value=MIN_BIRTH_DATE,
        max_value=date.today(),
        key="input_date",
    )
    st.time_input("出生时辰", step=60, key="input_time")

    try:
        st.session_state.birth_input = BirthInput(
            solar_date=st.session_state.input_date,
            time=st.session_state.input_time.strftime("%H:%M"),
            gender=st.session_state.input_gender,
        )
    except ValidationError as e:
        st.error(f"输入有误: {e.errors()[0].get('msg', e)}")

    birth: BirthInput = st.session_state.birth_input
    st.caption(f"🌙 {describe_lunar_birth(birth)}")

    st.markdown("---")
    st.markdown(
        '<div class="info-card">ℹ️ <b>实时计算中</b><br>'
        '当前排盘基于 <b>iztro</b> 专业引擎计算。已启用专家级 AI 分析模式。</div>',
        unsafe_allow_html=True,
    )

    with st.expander("🔧 API 连接"):
        for name in ("deepseek", "zhipu"):
            provider = orchestrator.config.provider(name)
            st.caption(f"{provider.name} · {provider.model} · Key {'✅' if provider.api_key else '❌ 未设置'}")
            if st.button(f"测试 {provider.name}", key=f"probe_{name}", use_container_width=True):
                try:
                    with st.spinner("连接中..."):
                        reply = probe_endpoint(provider)
                    st.success(f"连接正常: {reply[:40]}")
                except Exception as e:
                    st.error(f"连接失败: {e}")

    st.caption(f"版本 {get_app_version()}")

# Chart calculation (session results are kept across input changes)
try:
    chart = load_chart(birth.solar_date, birth.time, birth.gender)
except EphemerisUnavailable as e:
    st.error(f"排盘失败: {e}")
    st.stop()

chart_text = render_tree(chart, birth)

# View navigation
st.title("紫微斗数 PRO")
view = st.radio(
    "视图",
    options=list(VIEWS),
    index=VIEWS.index(session.active_view),
    format_func=lambda v: VIEW_LABELS[v],
    horizontal=True,
    label_visibility="collapsed",
)
orchestrator.set_view(view)

if view == "chart":
    svg = ZiweiChartGenerator().generate_chart(chart, birth=birth, gender_label=birth.gender_char)
    st.markdown(f'<div class="ziwei-chart-container">{svg}</div>', unsafe_allow_html=True)

elif view == "text":
    st.markdown("#### 📄 结构化文本报告 (文墨标准)")
    st.code(chart_text, language=None)
    col_txt, col_pdf = st.columns(2)
    with col_txt:
        st.download_button(
            "⬇️ 下载文本",
            data=chart_text.encode("utf-8"),
            file_name=f"ziwei_{birth.solar_date.isoformat()}.txt",
            mime="text/plain",
            use_container_width=True,
        )
    with col_pdf:
        st.download_button(
            "⬇️ 导出 PDF 报告",
            data=generate_report_pdf(chart_text, session.expert_report, birth, session.chat_log),
            file_name=f"ziwei_report_{birth.solar_date.isoformat()}.pdf",
            mime="application/pdf",
            use_container_width=True,
        )

elif view == "analysis":
    st.markdown("#### 🤖 DeepSeek 专家级深度命理报告")
    button_label = "🔄 重新排盘分析" if session.expert_report else "✨ 开始专家分析"
    clicked = st.button(button_label, disabled=orchestrator.expert_loading)
    report_placeholder = st.empty()

    if clicked:
        report_placeholder.info("大师正在推演流年大限，请稍候...")

        def render_report(event: str, state: SessionState) -> None:
            if event in ("expert_token", "expert_finished", "expert_failed"):
                report_placeholder.markdown(state.expert_report)

        orchestrator.listener = render_report
        try:
            orchestrator.run_expert_analysis(chart_text)
        finally:
            orchestrator.listener = None
        st.rerun()
    elif session.expert_report:
        report_placeholder.markdown(session.expert_report)
    else:
        report_placeholder.caption("点击上方按钮，生成万字深度详批")

elif view == "chat":
    st.markdown("#### 💬 智谱 AI 命理解读")
    for msg in session.chat_log:
        with st.chat_message(msg.role):
            st.markdown(msg.content)

    if not session.chat_log:
        st.caption("命盘数据已加载，您可以咨询关于事业、财运、婚姻的详细流年运势")
        cols = st.columns(len(SUGGESTED_QUESTIONS))
        for col, suggestion in zip(cols, SUGGESTED_QUESTIONS):
            with col:
                st.button(suggestion, use_container_width=True, on_click=use_suggestion, args=(suggestion,))

    live_area = st.container()

    with st.form("chat_form", clear_on_submit=True):
        col_input, col_send = st.columns([5, 1])
        with col_input:
            draft = st.text_input(
                "问题",
                key="chat_draft_box",
                placeholder="输入您的问题...",
                label_visibility="collapsed",
            )
        with col_send:
            submitted = st.form_submit_button("发送", disabled=orchestrator.chat_loading, use_container_width=True)

    if submitted and draft.strip():
        with live_area:
            with st.chat_message("user"):
                st.markdown(draft)
            with st.chat_message("assistant"):
                reply_placeholder = st.empty()
                reply_placeholder.markdown("▌")

        def render_reply(event: str, state: SessionState) -> None:
            if event.startswith("chat_") and state.chat_log:
                cursor = "▌" if event == "chat_token" else ""
                reply_placeholder.markdown(state.chat_log[-1].content + cursor)

        orchestrator.listener = render_reply
        try:
            orchestrator.send_message(draft, chart_text)
        finally:
            orchestrator.listener = None
        st.rerun()
