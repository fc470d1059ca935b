"""
紫微斗数工具类 - 文墨风格命盘 SVG 绘制
"""
from typing import List, Tuple

import svgwrite

from chart_models import Chart, Palace, Star

# 四行四列，中宫占 2x2；(列, 行)
PALACE_GRID = {
    "巳": (0, 0), "午": (1, 0), "未": (2, 0), "申": (3, 0),
    "辰": (0, 1), "酉": (3, 1),
    "卯": (0, 2), "戌": (3, 2),
    "寅": (0, 3), "丑": (1, 3), "子": (2, 3), "亥": (3, 3),
}

FIVE_ELEMENTS = {
    "甲": "木", "乙": "木", "寅": "木", "卯": "木",
    "丙": "火", "丁": "火", "巳": "火", "午": "火",
    "戊": "土", "己": "土", "辰": "土", "戌": "土", "丑": "土", "未": "土",
    "庚": "金", "辛": "金", "申": "金", "酉": "金",
    "壬": "水", "癸": "水", "子": "水", "亥": "水",
}

ELEMENT_COLORS = {
    "木": "#2E7D32",
    "火": "#D32F2F",
    "土": "#8D6E63",
    "金": "#757575",
    "水": "#0277BD",
}

MUTAGEN_COLORS = {
    "禄": "#388E3C",
    "权": "#D32F2F",
    "科": "#7B1FA2",
    "忌": "#1976D2",
}

PILLAR_LABELS = ["年", "月", "日", "时"]


def element_of(char: str) -> str:
    """五行 of a stem or branch character, '' if unknown."""
    return FIVE_ELEMENTS.get(char, "")


def element_color(char: str) -> str:
    return ELEMENT_COLORS.get(element_of(char), "#424242")


def brightness_color(brightness: str) -> str:
    if brightness in ("庙", "旺"):
        return "#D32F2F"
    if brightness in ("平", "得"):
        return "#333333"
    return "#1976D2"


def decade_timeline(chart: Chart, birth_year: int) -> List[Tuple[str, int, int]]:
    """
    大运走势：按起运虚岁排序的 (干支, 起运岁数, 起运年份)。
    起运年份 = 出生年 + 起运虚岁 - 1
    """
    palaces = sorted(chart.palaces, key=lambda p: p.decadal.range[0])
    return [
        (f"{p.heavenly_stem}{p.earthly_branch}", p.decadal.range[0], birth_year + p.decadal.range[0] - 1)
        for p in palaces
    ]


class ZiweiChartGenerator:
    """文墨天机风格十二宫命盘 SVG 生成器"""

    def __init__(self, cell_size: int = 170):
        self.cell = cell_size
        self.size = cell_size * 4
        self.colors = {
            "bg": "#FAFAFA",
            "cell_bg": "#FFFFFF",
            "border": "#BDBDBD",
            "divider": "#E0E0E0",
            "text_dark": "#212121",
            "text_muted": "#757575",
            "text_light": "#9E9E9E",
            "minor": "#424242",
            "name_badge": "#FF9800",
        }
        self.font = "SimHei, Microsoft YaHei, sans-serif"
        self.serif = "KaiTi, STKaiti, Noto Serif SC, serif"

    def generate_chart(self, chart: Chart, birth=None, gender_label: str = "",
                       filename: str = "ziwei_chart.svg") -> str:
        """
        生成十二宫命盘 SVG

        :param chart: 命盘数据
        :param birth: 排盘所用的 BirthInput，用于大运起始年份与底栏时间
        :param gender_label: 中宫显示的性别 ('男'/'女')，默认取命盘性别
        :return: SVG 字符串
        """
        dwg = svgwrite.Drawing(filename, size=(f"{self.size}px", f"{self.size}px"))
        dwg["viewBox"] = f"0 0 {self.size} {self.size}"
        dwg["preserveAspectRatio"] = "xMidYMid meet"
        dwg.add(dwg.rect(insert=(0, 0), size=(self.size, self.size), fill=self.colors["bg"],
                         stroke=self.colors["border"], stroke_width=1))

        for palace in chart.palaces:
            col, row = PALACE_GRID[palace.earthly_branch]
            self._draw_palace(dwg, palace, col * self.cell, row * self.cell)

        self._draw_center(dwg, chart, birth, gender_label or chart.gender)
        return dwg.tostring()

    def _draw_star(self, dwg, star: Star, x: float, y: float, kind: str) -> None:
        """竖排星曜：名称逐字向下，其后亮度、四化、自化标记"""
        if kind == "major":
            size, weight, fill = 15, "bold", brightness_color(star.brightness)
        elif kind == "minor":
            size, weight, fill = 13, "bold", self.colors["minor"]
        else:
            size, weight, fill = 11, "normal", self.colors["minor"]

        for char in star.name:
            y += size + 1
            dwg.add(dwg.text(char, insert=(x, y), text_anchor="middle", font_size=f"{size}px",
                             font_weight=weight, fill=fill, font_family=self.font))
        if kind == "adj":
            return

        if star.brightness:
            y += 11
            dwg.add(dwg.text(star.brightness, insert=(x, y), text_anchor="middle", font_size="9px",
                             fill=fill, opacity=0.8, font_family=self.font))
        if star.mutagen:
            y += 4
            dwg.add(dwg.rect(insert=(x - 6, y), size=(12, 12), rx=2, ry=2,
                             fill=MUTAGEN_COLORS.get(star.mutagen, self.colors["text_muted"])))
            y += 10
            dwg.add(dwg.text(star.mutagen, insert=(x, y), text_anchor="middle", font_size="9px",
                             font_weight="bold", fill="#FFFFFF", font_family=self.font))
        if star.self_mutagen:
            y += 12
            dwg.add(dwg.text(f"↓{star.self_mutagen}", insert=(x, y), text_anchor="middle",
                             font_size="10px", font_weight="bold", fill="#D32F2F", font_family=self.font))
        if star.xiang_xin_mutagen:
            y += 12
            dwg.add(dwg.text(f"↑{star.xiang_xin_mutagen}", insert=(x, y), text_anchor="middle",
                             font_size="10px", font_weight="bold", fill="#388E3C", font_family=self.font))

    def _draw_palace(self, dwg, palace: Palace, x0: float, y0: float) -> None:
        c = self.cell
        dwg.add(dwg.rect(insert=(x0, y0), size=(c, c), fill=self.colors["cell_bg"],
                         stroke=self.colors["border"], stroke_width=1))

        # 星曜流式排列（每颗星占一列）
        col_x = x0 + 10
        for kind, stars in (("major", palace.major_stars), ("minor", palace.minor_stars),
                            ("adj", palace.adjective_stars)):
            for star in stars:
                if col_x > x0 + c - 22:
                    break
                self._draw_star(dwg, star, col_x, y0 + 2, kind)
                col_x += 17

        # 长生十二神竖排于右侧
        for i, char in enumerate(palace.changsheng12):
            dwg.add(dwg.text(char, insert=(x0 + c - 8, y0 + c * 0.45 + i * 12), text_anchor="middle",
                             font_size="11px", fill=self.colors["text_muted"], font_family=self.font))

        # 神煞与小限
        shen_sha = " ".join(s for s in (palace.boshi12, palace.jiangqian12, palace.suiqian12) if s)
        dwg.add(dwg.text(shen_sha, insert=(x0 + 5, y0 + c - 42), font_size="10px",
                         fill=self.colors["text_muted"], font_family=self.font))
        ages = " ".join(str(a) for a in palace.ages[:6])
        dwg.add(dwg.text(f"小限: {ages}", insert=(x0 + 5, y0 + c - 28), font_size="9px",
                         fill=self.colors["text_muted"], font_family=self.font))

        # 底栏：大限 / 干支 / 宫名
        dwg.add(dwg.line(start=(x0 + 4, y0 + c - 22), end=(x0 + c - 4, y0 + c - 22),
                         stroke=self.colors["divider"], stroke_width=1))
        start, end = palace.decadal.range
        dwg.add(dwg.text(f"{start} - {end}", insert=(x0 + 5, y0 + c - 7), font_size="12px",
                         font_weight="bold", fill=self.colors["text_dark"], font_family=self.font))
        dwg.add(dwg.text(f"{palace.heavenly_stem}{palace.earthly_branch}", insert=(x0 + c - 62, y0 + c - 7),
                         text_anchor="end", font_size="11px", font_weight="bold",
                         fill=self.colors["text_light"], font_family=self.font))
        dwg.add(dwg.rect(insert=(x0 + c - 58, y0 + c - 20), size=(54, 17), rx=3, ry=3,
                         fill=self.colors["name_badge"]))
        label = palace.name + ("·身" if palace.is_body_palace else "")
        dwg.add(dwg.text(label, insert=(x0 + c - 31, y0 + c - 7), text_anchor="middle", font_size="11px",
                         font_weight="bold", fill="#FFFFFF", font_family=self.font))

    def _draw_center(self, dwg, chart: Chart, birth, gender_label: str) -> None:
        c = self.cell
        x0, y0 = c, c
        dwg.add(dwg.rect(insert=(x0, y0), size=(2 * c, 2 * c), fill=self.colors["cell_bg"],
                         stroke=self.colors["border"], stroke_width=1))

        # 四柱
        col_w = 2 * c / 4
        for i, pillar in enumerate(chart.pillars()):
            cx = x0 + col_w * i + col_w / 2
            for j, char in enumerate(pillar):
                dwg.add(dwg.text(char, insert=(cx, y0 + 48 + j * 30), text_anchor="middle",
                                 font_size="24px", font_weight="bold", fill=element_color(char),
                                 font_family=self.serif))
            dwg.add(dwg.text(PILLAR_LABELS[i], insert=(cx, y0 + 100), text_anchor="middle",
                             font_size="11px", fill=self.colors["text_light"], font_family=self.font))

        # 基本信息
        info = [
            ("局数", chart.five_elements_class),
            ("性别", gender_label),
            ("命主", chart.soul),
            ("身主", chart.body),
        ]
        for i, (label, value) in enumerate(info):
            x = x0 + 40 + (i % 2) * c
            y = y0 + 130 + (i // 2) * 22
            dwg.add(dwg.text(label, insert=(x, y), font_size="12px",
                             fill=self.colors["text_light"], font_family=self.font))
            dwg.add(dwg.text(value, insert=(x + c - 80, y), text_anchor="end", font_size="12px",
                             font_weight="bold", fill=self.colors["text_dark"], font_family=self.font))

        # 大运走势
        birth_year = birth.solar_date.year if birth is not None else int(chart.solar_date.split("-")[0])
        dwg.add(dwg.text("大运走势", insert=(x0 + c, y0 + 192), text_anchor="middle", font_size="10px",
                         fill=self.colors["text_light"], font_family=self.font))
        step = (2 * c - 16) / 12
        for i, (stem_branch, start_age, start_year) in enumerate(decade_timeline(chart, birth_year)):
            cx = x0 + 8 + step * i + step / 2
            dwg.add(dwg.text(stem_branch, insert=(cx, y0 + 214), text_anchor="middle", font_size="11px",
                             font_weight="bold", fill=element_color(stem_branch[:1]), font_family=self.font))
            dwg.add(dwg.text(f"{start_age}岁", insert=(cx, y0 + 230), text_anchor="middle", font_size="9px",
                             fill=self.colors["text_muted"], font_family=self.font))
            dwg.add(dwg.text(str(start_year), insert=(cx, y0 + 244), text_anchor="middle", font_size="8px",
                             fill=self.colors["text_light"], font_family=self.font))

        # 底栏
        dwg.add(dwg.line(start=(x0 + 12, y0 + 2 * c - 52), end=(x0 + 2 * c - 12, y0 + 2 * c - 52),
                         stroke=self.colors["divider"], stroke_width=1))
        clock = f" {birth.time}" if birth is not None else ""
        dwg.add(dwg.text(f"公历 {chart.solar_date}{clock} | 农历 {chart.lunar_date}",
                         insert=(x0 + c, y0 + 2 * c - 34), text_anchor="middle", font_size="10px",
                         font_style="italic", fill=self.colors["text_light"], font_family=self.font))
        dwg.add(dwg.text("文墨天机 · 紫微斗数", insert=(x0 + c, y0 + 2 * c - 14), text_anchor="middle",
                         font_size="11px", fill=self.colors["text_light"], font_family=self.font))
