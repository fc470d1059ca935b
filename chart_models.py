"""
Chart data models shared by the chart adapter, the tree serializer and the API.

These are the project's own types: the ephemeris result is converted into them
so the rest of the code never depends on the astrology library's classes.
"""
from __future__ import annotations

from typing import List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator, model_validator

EARTHLY_BRANCHES = ["子", "丑", "寅", "卯", "辰", "巳", "午", "未", "申", "酉", "戌", "亥"]
MUTAGENS = ["禄", "权", "科", "忌"]


class Star(BaseModel):
    """A single star (星曜) placed in a palace."""
    name: str
    brightness: str = Field("", description="Brightness (庙/旺/得/利/平/不/陷)")
    mutagen: Optional[str] = Field(None, description="Birth-year mutagen (生年四化)")
    self_mutagen: Optional[str] = Field(None, description="Centrifugal self mutagen (离心自化)")
    xiang_xin_mutagen: Optional[str] = Field(None, description="Centripetal mutagen from the opposite palace (向心自化)")


class Decadal(BaseModel):
    """Ten-year period (大限) of a palace."""
    range: Tuple[int, int] = Field(..., description="[start_age, end_age] in 虚岁")
    heavenly_stem: str = ""
    earthly_branch: str = ""

    @field_validator("range")
    @classmethod
    def check_order(cls, value):
        if value[0] > value[1]:
            raise ValueError(f"decadal range out of order: {value}")
        return value


class Palace(BaseModel):
    """One of the twelve palaces (宫)."""
    name: str
    heavenly_stem: str
    earthly_branch: str
    is_body_palace: bool = False
    major_stars: List[Star] = Field(default_factory=list)
    minor_stars: List[Star] = Field(default_factory=list)
    adjective_stars: List[Star] = Field(default_factory=list)
    suiqian12: str = ""
    jiangqian12: str = ""
    changsheng12: str = ""
    boshi12: str = ""
    decadal: Decadal
    ages: List[int] = Field(default_factory=list, description="Small-limit ages (小限)")


class Chart(BaseModel):
    """A computed Zi Wei Dou Shu chart (命盘)."""
    gender: str
    solar_date: str
    lunar_date: str
    chinese_date: str = Field(..., description="Four pillars, e.g. '庚午 戊寅 丙子 甲午'")
    five_elements_class: str
    soul: str
    body: str
    palaces: List[Palace]

    @field_validator("chinese_date")
    @classmethod
    def check_pillars(cls, value):
        pillars = value.split(" ")
        if len(pillars) != 4 or any(len(p) != 2 for p in pillars):
            raise ValueError(f"chinese_date must hold four two-character pillars: {value!r}")
        return value

    @model_validator(mode="after")
    def check_palaces(self):
        if len(self.palaces) != 12:
            raise ValueError(f"expected 12 palaces, got {len(self.palaces)}")
        branches = {p.earthly_branch for p in self.palaces}
        if branches != set(EARTHLY_BRANCHES):
            raise ValueError("palaces must cover each earthly branch exactly once")
        body_count = sum(1 for p in self.palaces if p.is_body_palace)
        if body_count != 1:
            raise ValueError(f"expected exactly one body palace, got {body_count}")
        return self

    def body_palace(self) -> Optional[Palace]:
        return next((p for p in self.palaces if p.is_body_palace), None)

    def pillars(self) -> List[str]:
        """Year / month / day / hour pillars."""
        return self.chinese_date.split(" ")
