"""
Zi Wei Dou Shu Logic Module.
Contains birth input handling, chart calculation and the LLM prompt builders.
"""
import os
from pathlib import Path
from datetime import date, datetime
from functools import lru_cache
from typing import Callable, List, Literal, Optional

from dotenv import load_dotenv
from lunar_python import Solar
from pydantic import BaseModel, Field, ValidationError, field_validator

from chart_models import Chart, Decadal, Palace, Star

load_dotenv(dotenv_path=Path(__file__).resolve().parent / ".env")

PERF_LOG = os.getenv("PERF_LOG") == "1"

# 最早可排盘日期
MIN_BIRTH_DATE = date(1900, 1, 1)

GENDER_CHARS = {"male": "男", "female": "女"}


class EphemerisUnavailable(RuntimeError):
    """The astrology engine failed to produce a chart for the given input."""


class BirthInput(BaseModel):
    """Birth data entered in the form."""
    solar_date: date = Field(..., description="Solar birth date (公历)")
    time: str = Field(..., pattern=r"^([01]\d|2[0-3]):[0-5]\d$", description="Local clock time HH:MM")
    gender: Literal["male", "female"] = Field("male", description="male (乾造) / female (坤造)")

    @field_validator("solar_date")
    @classmethod
    def check_date_range(cls, value: date) -> date:
        if value < MIN_BIRTH_DATE or value > date.today():
            raise ValueError(f"出生日期须在 {MIN_BIRTH_DATE.isoformat()} 与今天之间")
        return value

    @property
    def hour(self) -> int:
        return int(self.time.split(":")[0])

    @property
    def minute(self) -> int:
        return int(self.time.split(":")[1])

    @property
    def gender_char(self) -> str:
        return GENDER_CHARS[self.gender]


def default_birth_input(now: datetime = None, gender: str = "male") -> BirthInput:
    """Form default: the current date and minute."""
    now = now or datetime.now()
    return BirthInput(solar_date=now.date(), time=now.strftime("%H:%M"), gender=gender)


def year_options(today: date = None) -> List[int]:
    """Years for the quick-year selector, newest first."""
    current_year = (today or date.today()).year
    return list(range(current_year, MIN_BIRTH_DATE.year - 1, -1))


def with_year(birth: BirthInput, year: int) -> BirthInput:
    """
    Move the birth date to another year, keeping month and day.
    Feb 29 falls back to Feb 28 in non-leap years.
    """
    d = birth.solar_date
    try:
        new_date = d.replace(year=year)
    except ValueError:
        new_date = d.replace(year=year, day=28)
    return birth.model_copy(update={"solar_date": new_date})


def hour_to_branch_index(hour: int) -> int:
    """
    Map a clock hour to the twelve-branch (时辰) index used by the ephemeris.
    23:00 and 00:xx both belong to 子 (index 0).
    """
    assert 0 <= hour <= 23, f"hour out of range: {hour}"
    return 0 if hour == 23 else (hour + 1) // 2


def describe_lunar_birth(birth: BirthInput) -> str:
    """Lunar date preview of the form input, e.g. '农历二〇〇〇年正月初一 午时'."""
    solar = Solar.fromYmdHms(
        birth.solar_date.year, birth.solar_date.month, birth.solar_date.day,
        birth.hour, birth.minute, 0
    )
    lunar = solar.getLunar()
    return (
        f"农历{lunar.getYearInChinese()}年{lunar.getMonthInChinese()}月{lunar.getDayInChinese()} "
        f"{lunar.getTimeZhi()}时"
    )


# --- Chart Adapter ---

@lru_cache(maxsize=1)
def _get_astro():
    """Shared py-iztro engine; building it starts a JS runtime, so do it once."""
    from py_iztro import Astro
    return Astro()


def _iztro_by_solar(solar_date: str, time_index: int, gender: str, fix_leap: bool, language: str):
    return _get_astro().by_solar(
        solar_date,
        time_index=time_index,
        gender=gender,
        fix_leap=fix_leap,
        language=language,
    )


def _opt(value) -> Optional[str]:
    return value or None


def _star_from(raw) -> Star:
    return Star(
        name=raw.name,
        brightness=getattr(raw, "brightness", None) or "",
        mutagen=_opt(getattr(raw, "mutagen", None)),
        self_mutagen=_opt(getattr(raw, "self_mutagen", None)),
        xiang_xin_mutagen=_opt(getattr(raw, "xiang_xin_mutagen", None)),
    )


def _palace_from(raw) -> Palace:
    decadal = raw.decadal
    return Palace(
        name=raw.name,
        heavenly_stem=raw.heavenly_stem,
        earthly_branch=raw.earthly_branch,
        is_body_palace=bool(raw.is_body_palace),
        major_stars=[_star_from(s) for s in raw.major_stars or []],
        minor_stars=[_star_from(s) for s in raw.minor_stars or []],
        adjective_stars=[_star_from(s) for s in raw.adjective_stars or []],
        suiqian12=raw.suiqian12 or "",
        jiangqian12=raw.jiangqian12 or "",
        changsheng12=raw.changsheng12 or "",
        boshi12=raw.boshi12 or "",
        decadal=Decadal(
            range=tuple(decadal.range),
            heavenly_stem=getattr(decadal, "heavenly_stem", "") or "",
            earthly_branch=getattr(decadal, "earthly_branch", "") or "",
        ),
        ages=list(raw.ages or []),
    )


def chart_from_astrolabe(astrolabe) -> Chart:
    """Convert a py-iztro astrolabe into the project's Chart model."""
    return Chart(
        gender=astrolabe.gender,
        solar_date=str(astrolabe.solar_date),
        lunar_date=str(astrolabe.lunar_date),
        chinese_date=astrolabe.chinese_date,
        five_elements_class=astrolabe.five_elements_class,
        soul=astrolabe.soul,
        body=astrolabe.body,
        palaces=[_palace_from(p) for p in astrolabe.palaces],
    )


def compute_chart(birth: BirthInput, ephemeris: Callable = None) -> Chart:
    """
    Compute the twelve-palace chart for a birth input.

    Args:
        birth: Validated birth input.
        ephemeris: Callable with the py-iztro ``by_solar`` signature
            (solar_date, time_index, gender, fix_leap, language). Defaults to py-iztro.

    Raises:
        EphemerisUnavailable: if the engine raises or returns an invalid chart.
    """
    ephemeris = ephemeris or _iztro_by_solar
    d = birth.solar_date
    try:
        astrolabe = ephemeris(
            f"{d.year}-{d.month}-{d.day}",
            hour_to_branch_index(birth.hour),
            birth.gender_char,
            True,
            "zh-CN",
        )
    except Exception as e:
        raise EphemerisUnavailable(f"排盘引擎调用失败: {e}") from e

    try:
        return chart_from_astrolabe(astrolabe)
    except (ValidationError, AttributeError, TypeError) as e:
        raise EphemerisUnavailable(f"排盘结果不完整: {e}") from e


# --- Prompts ---

EXPERT_SYSTEM_PROMPT = """你现在是顶级紫微斗数及国学易经术数专家，拥有数十年的实战命理经验。请根据提供的文墨天机格式命盘数据，进行深度、精准且极具参考价值的挖掘分析。

### 核心分析要求：
1. **深度挖掘：** 不停留于表面星曜解释。需综合使用三合、飞星、钦天四化等核心技法。重点分析“生年四化”、“宫位自化（离心/向心）”以及“星曜组合”带来的深层影响。
2. **多维洞察：** 全面覆盖健康、学业、事业（含行业选择及职场机遇）、财运（正财/偏财/存财能力）、人际（贵人/小人位置）、婚姻（缘分强弱/配偶特征）及感情生活。
3. **精准时效：** 必须列出未来关键事件及其发生的时间跨度（误差控制在流月级别更好）、吉凶属性（吉、凶、平）及命主应对策略。
4. **流年大限全景：** 详细分析前八个大限的走势，并对每个大限内的所有流年进行逐年扫描，指出由于“限流叠宫”产生的重大转折点和具体注意事项。
5. **极具针对性的方案：** 拒绝套话。必须结合命主命格的“弱点”与“优势”，给出改运、规避风险、抓住机遇的实操性专家建议。
6. **主动与专业性：** 文风需体现深厚的国学底蕴，用词专业、严谨且富有洞察力。主动识别命盘中潜藏的特殊格局（如：杀破狼格、机月同临格等）并解读其现代意义。

*重要：结尾请务必告知用户：“以上分析基于术数理论，仅供国学研究及娱乐参考，人生掌握在自己手中。”*"""

# 咨询模式追加的交互准则
CHAT_GUIDELINES = """

### 交互解读准则：
1. **紧扣命盘：** 你的所有回答必须以提供的【命盘数据】和【前期分析结果】为唯一依据。严禁脱离实际数据空谈或给出通用的星座式建议。
2. **直击痛点：** 针对用户的问题，先从命盘中找到支撑数据（如：看事业先看官禄宫及三方四正），再给出详尽解答。
3. **拒绝说教与空话：** 回答要详尽、专业、客观。必须分析出用户未察觉的深层逻辑（如：为何某年财运好却存不住钱）。
4. **极致主动：**
   - 答完用户问题后，必须根据命盘现状主动指出：
     - a. 用户目前（当前流年）最应该关注的一件事。
     - b. 命盘中下一个即将到来的重大机遇或挑战的时间点。
     - c. 建议用户接下来可以深入咨询的命理方向。
5. **专家底蕴：** 回答要体现出“大师级”的全局观和细致观察。你已开启 glm-4-plus 联网搜索，可结合当前年份的宏观背景给出更务实的建议。"""

SUGGESTED_QUESTIONS = ["分析我未来三年的财运", "我的婚姻状况如何？", "今年工作有变动吗？"]

MODEL_TEMPERATURES = {
    "deepseek-chat": 0.7,
    "glm-4-plus": 0.7,
}

DEFAULT_MAX_TOKENS = 4096


def get_optimal_temperature(model: str) -> float:
    """Get the optimal temperature for a given model."""
    return MODEL_TEMPERATURES.get(model, 0.7)


def format_today(today: date = None) -> str:
    """Local date as the browser's zh-CN short form, e.g. '2026/1/5'."""
    today = today or date.today()
    return f"{today.year}/{today.month}/{today.day}"


def build_expert_request(chart_text: str, model: str = "deepseek-chat") -> dict:
    """Request body for the one-shot expert report."""
    return {
        "model": model,
        "messages": [
            {"role": "system", "content": EXPERT_SYSTEM_PROMPT},
            {"role": "user", "content": chart_text},
        ],
        "temperature": get_optimal_temperature(model),
        "max_tokens": DEFAULT_MAX_TOKENS,
    }


def build_chat_request(
    chart_text: str,
    expert_report: str,
    history: list,
    user_text: str,
    today: date = None,
    model: str = "glm-4-plus",
) -> dict:
    """
    Request body for one consultation turn.

    Args:
        chart_text: Canonical tree text of the current chart.
        expert_report: Expert report so far; appended to the chart message when non-empty.
        history: Prior chat messages (objects with ``role``/``content``), oldest first.
        user_text: The new question.
        today: Date announced to the model.
    """
    chart_message = f"这是我的命盘数据：\n{chart_text}"
    if expert_report:
        chart_message += f"\n\n此前的专家深度分析报告：\n{expert_report}"

    messages = [
        {"role": "system", "content": EXPERT_SYSTEM_PROMPT + CHAT_GUIDELINES},
        {"role": "system", "content": f"当前时间为{format_today(today)}"},
        {"role": "user", "content": chart_message},
    ]
    messages.extend({"role": m.role, "content": m.content} for m in history)
    messages.append({"role": "user", "content": user_text})

    return {
        "model": model,
        "messages": messages,
        "max_tokens": DEFAULT_MAX_TOKENS,
    }
