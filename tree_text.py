"""
Wenmo (文墨天机) tree text rendering of a chart.

The output is the document handed to the LLMs, which are prompted to read this
exact layout. Keep it byte-stable: the header block indents with a leading
space before the pipe while palace blocks do not, and the ages list is shown for
both 小限 and 流年.
"""
from __future__ import annotations

from typing import List

from chart_models import Chart, Star

API_VERSION = "1.1.1"
APP_VERSION = "2.5.3"
STAR_CODE = "C5VUC"

EMPTY = "无"


def mutagen_suffix(star: Star) -> str:
    """Birth-year mutagen wins over self mutagen, which wins over xiang-xin mutagen."""
    if star.mutagen:
        return f"[生年{star.mutagen}]"
    if star.self_mutagen:
        return f"(↓:{star.self_mutagen})"
    if star.xiang_xin_mutagen:
        return f"(↑:{star.xiang_xin_mutagen})"
    return ""


def format_star(star: Star) -> str:
    return f"{star.name}[{star.brightness}]{mutagen_suffix(star)}"


def _join_stars(stars: List[Star]) -> str:
    return ", ".join(format_star(s) for s in stars) or EMPTY


def _join_names(stars: List[Star]) -> str:
    return ", ".join(s.name for s in stars) or EMPTY


def render_tree(chart: Chart, birth) -> str:
    """
    Render the chart as the canonical tree document.

    Args:
        chart: Computed chart.
        birth: The BirthInput the chart was computed from (for the clock time).

    Returns:
        The tree text, without a trailing newline.
    """
    body_palace = chart.body_palace()
    body_branch = body_palace.earthly_branch if body_palace else ""

    lines = [
        "文墨天机紫微斗数命盘",
        "│",
        f"├API 版本 : {API_VERSION}",
        f"├App版本 : {APP_VERSION}",
        f"├安星码 : {STAR_CODE}",
        "├符号定义",
        "│ ├(↓:离心自化)",
        "│ ├(↑:向心自化，从对宫化入)",
        "│ ├(┏ : 生日前小限)",
        "│ └( ┓: 生日后小限)",
        "│",
        "├命主出生信息",
        "│ │",
        f" │ ├性别 : {chart.gender}",
        f" │ ├公历出生日期 : {chart.solar_date}",
        f" │ ├农历出生日期 : {chart.lunar_date}",
        f" │ ├出生时间(时:分) : {birth.time}",
        f" │ ├五行局数 : {chart.five_elements_class}",
        f" │ └身主:{chart.body}; 命主:{chart.soul}; 子年斗君:巳; 身宫:{body_branch}",
        "│",
        "├命盘十二宫",
        "│ │",
    ]

    for p in chart.palaces:
        ages = ",".join(str(a) for a in p.ages)
        start, end = p.decadal.range
        lines.extend([
            f" ├{p.name}宫[{p.heavenly_stem}{p.earthly_branch}]",
            f" │ ├主星 : {_join_stars(p.major_stars)}",
            f" │ ├辅星 : {_join_stars(p.minor_stars)}",
            f" │ ├小星 : {_join_names(p.adjective_stars)}",
            " │ ├神煞",
            f" │ │ ├岁前星 : {p.suiqian12}",
            f" │ │ ├将前星 : {p.jiangqian12}",
            f" │ │ ├十二长生 : {p.changsheng12}",
            f" │ │ └太岁煞禄 : {p.boshi12}",
            f" │ ├大限 : {start}~{end}虚岁",
            f" │ ├小限 : {ages}虚岁",
            f" │ ├流年 : {ages}虚岁",
            " │ └限流叠宫 : 无",
            " │",
        ])

    lines.append("├大限流年信息")
    lines.append("└[备注: 无]")
    return "\n".join(lines)
