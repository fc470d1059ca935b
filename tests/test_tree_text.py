from itertools import product

import pytest

from chart_models import Star
from tree_text import format_star, mutagen_suffix, render_tree


def test_header_block(chart, birth):
    lines = render_tree(chart, birth).split("\n")

    assert lines[:12] == [
        "文墨天机紫微斗数命盘",
        "│",
        "├API 版本 : 1.1.1",
        "├App版本 : 2.5.3",
        "├安星码 : C5VUC",
        "├符号定义",
        "│ ├(↓:离心自化)",
        "│ ├(↑:向心自化，从对宫化入)",
        "│ ├(┏ : 生日前小限)",
        "│ └( ┓: 生日后小限)",
        "│",
        "├命主出生信息",
    ]
    assert " │ ├性别 : 男" in lines
    assert " │ ├公历出生日期 : 2000-2-5" in lines
    assert " │ ├出生时间(时:分) : 12:00" in lines
    assert " │ ├五行局数 : 土五局" in lines
    assert " │ └身主:天相; 命主:武曲; 子年斗君:巳; 身宫:午" in lines


def test_palace_blocks(chart, birth):
    text = render_tree(chart, birth)
    lines = text.split("\n")

    assert text.count("宫[") == 12
    start = lines.index(" ├命宫宫[甲寅]")
    assert lines[start:start + 14] == [
        " ├命宫宫[甲寅]",
        " │ ├主星 : 紫微[庙][生年权]",
        " │ ├辅星 : 文昌[得](↓:科)",
        " │ ├小星 : 天喜, 红鸾",
        " │ ├神煞",
        " │ │ ├岁前星 : 岁建",
        " │ │ ├将前星 : 将星",
        " │ │ ├十二长生 : 长生",
        " │ │ └太岁煞禄 : 博士",
        " │ ├大限 : 2~11虚岁",
        " │ ├小限 : 1,13,25虚岁",
        " │ ├流年 : 1,13,25虚岁",
        " │ └限流叠宫 : 无",
        " │",
    ]


def test_empty_star_lists_render_placeholder(chart, birth):
    lines = render_tree(chart, birth).split("\n")
    start = lines.index(" ├兄弟宫[乙卯]")
    assert lines[start + 1] == " │ ├主星 : 无"
    assert lines[start + 2] == " │ ├辅星 : 无"
    assert lines[start + 3] == " │ ├小星 : 无"


def test_trailer_and_no_trailing_newline(chart, birth):
    text = render_tree(chart, birth)
    assert text.endswith("├大限流年信息\n└[备注: 无]")
    assert not text.endswith("\n")


def test_render_is_deterministic(chart, birth):
    assert render_tree(chart, birth) == render_tree(chart, birth)


def _expected_suffix(mutagen, self_mutagen, xiang_xin):
    if mutagen:
        return f"[生年{mutagen}]"
    if self_mutagen:
        return f"(↓:{self_mutagen})"
    if xiang_xin:
        return f"(↑:{xiang_xin})"
    return ""


@pytest.mark.parametrize("mutagen,self_mutagen,xiang_xin", list(product([None, "禄"], [None, "忌"], [None, "科"])))
def test_mutagen_precedence(mutagen, self_mutagen, xiang_xin):
    star = Star(name="天机", brightness="旺", mutagen=mutagen, self_mutagen=self_mutagen,
                xiang_xin_mutagen=xiang_xin)
    assert mutagen_suffix(star) == _expected_suffix(mutagen, self_mutagen, xiang_xin)


def test_format_star_without_brightness():
    assert format_star(Star(name="左辅")) == "左辅[]"
    assert format_star(Star(name="太阳", brightness="陷", xiang_xin_mutagen="禄")) == "太阳[陷](↑:禄)"
