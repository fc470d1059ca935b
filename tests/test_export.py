from datetime import datetime

import api_probe
from conversation import ChatMessage
from pdf_generator import generate_report_pdf
from text_utils import HEADER_MARKER, clean_text_for_pdf, format_timestamp, split_paragraphs
from tree_text import render_tree
from ziwei_utils import PALACE_GRID, ZiweiChartGenerator, decade_timeline, element_of


def test_svg_chart_contains_palaces(chart):
    svg = ZiweiChartGenerator().generate_chart(chart, gender_label="男")
    assert "<svg" in svg
    for palace in chart.palaces:
        assert palace.name in svg
    assert "·身" in svg
    assert "土五局" in svg


def test_decade_timeline_sorted_by_start_age(chart):
    shuffled = chart.model_copy(update={"palaces": list(reversed(chart.palaces))})
    timeline = decade_timeline(shuffled, 2000)

    assert len(timeline) == 12
    assert timeline[0] == ("甲寅", 2, 2001)
    assert timeline[-1] == ("乙丑", 112, 2111)
    assert [age for _, age, _ in timeline] == sorted(age for _, age, _ in timeline)


def test_svg_center_has_decades_and_footer(chart, birth):
    svg = ZiweiChartGenerator().generate_chart(chart, birth=birth, gender_label="男")
    assert "大运走势" in svg
    assert "2001" in svg
    assert "2岁" in svg
    assert "公历 2000-2-5 12:00 | 农历 二〇〇〇年正月初一" in svg


def test_palace_grid_covers_outer_ring():
    cells = set(PALACE_GRID.values())
    assert len(cells) == 12
    assert all(col in (0, 3) or row in (0, 3) for col, row in cells)
    assert element_of("甲") == "木"


def test_clean_text_for_pdf():
    text = clean_text_for_pdf("## ✨ 财运分析\n**财帛宫**有<b>武曲</b>\n- 第一点\n---\n")
    assert f"{HEADER_MARKER}财运分析" in text
    assert "**" not in text
    assert "<b>" not in text
    assert "· 第一点" in text
    assert "✨" not in text
    assert clean_text_for_pdf("") == ""


def test_split_paragraphs_escapes():
    paras = split_paragraphs(f"{HEADER_MARKER}标题\n\n甲 & 乙\n丙")
    assert paras == [(True, "标题"), (False, "甲 &amp; 乙<br/>丙")]


def test_format_timestamp():
    ts = int(datetime(2026, 1, 5, 9, 30).timestamp() * 1000)
    assert format_timestamp(ts) == "2026-01-05 09:30"


def test_pdf_report_bytes(chart, birth):
    chat_log = [
        ChatMessage(role="user", content="事业如何？", timestamp=1767600000000),
        ChatMessage(role="assistant", content="## 官禄\n**稳中有升**", timestamp=1767600000000),
    ]
    pdf = generate_report_pdf(render_tree(chart, birth), "### 总论\n命宫紫微坐守。", birth, chat_log,
                              generated_at=datetime(2026, 1, 5, 10, 0))
    assert pdf.startswith(b"%PDF")


def test_pdf_report_without_analysis(chart, birth):
    assert generate_report_pdf(render_tree(chart, birth), "", birth).startswith(b"%PDF")


def test_api_probe_exit_codes(monkeypatch, capsys):
    monkeypatch.setattr(api_probe, "probe_endpoint", lambda provider: "pong")
    assert api_probe.main(["deepseek"]) == 0
    assert "Success" in capsys.readouterr().out

    def fail(provider):
        raise RuntimeError("401 Unauthorized")

    monkeypatch.setattr(api_probe, "probe_endpoint", fail)
    assert api_probe.main(["deepseek", "zhipu"]) == 1
    assert "401 Unauthorized" in capsys.readouterr().out
