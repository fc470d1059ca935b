import os
import sys
from datetime import date
from types import SimpleNamespace

import pytest

# Add project root to path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from chart_models import EARTHLY_BRANCHES
from logic import BirthInput, chart_from_astrolabe

PALACE_NAMES = ["命宫", "兄弟", "夫妻", "子女", "财帛", "疾厄", "迁移", "仆役", "官禄", "田宅", "福德", "父母"]
HEAVENLY_STEMS = "甲乙丙丁戊己庚辛壬癸"


def make_star(name, brightness="", mutagen="", self_mutagen="", xiang_xin_mutagen=""):
    return SimpleNamespace(
        name=name,
        brightness=brightness,
        mutagen=mutagen,
        self_mutagen=self_mutagen,
        xiang_xin_mutagen=xiang_xin_mutagen,
    )


def make_astrolabe(body_index=4, palace_count=12):
    """An object shaped like a py-iztro astrolabe; 命宫 sits in 寅."""
    palaces = []
    for i, name in enumerate(PALACE_NAMES[:palace_count]):
        branch = EARTHLY_BRANCHES[(2 + i) % 12]
        first = i == 0
        palaces.append(SimpleNamespace(
            name=name,
            heavenly_stem=HEAVENLY_STEMS[i % 10],
            earthly_branch=branch,
            is_body_palace=i == body_index,
            major_stars=[make_star("紫微", "庙", mutagen="权")] if first else [],
            minor_stars=[make_star("文昌", "得", self_mutagen="科")] if first else [],
            adjective_stars=[make_star("天喜"), make_star("红鸾")] if first else [],
            suiqian12="岁建",
            jiangqian12="将星",
            changsheng12="长生",
            boshi12="博士",
            decadal=SimpleNamespace(
                range=[2 + 10 * i, 11 + 10 * i],
                heavenly_stem=HEAVENLY_STEMS[i % 10],
                earthly_branch=branch,
            ),
            ages=[1 + i, 13 + i, 25 + i],
        ))
    return SimpleNamespace(
        gender="男",
        solar_date="2000-2-5",
        lunar_date="二〇〇〇年正月初一",
        chinese_date="庚辰 戊寅 庚午 壬午",
        five_elements_class="土五局",
        soul="武曲",
        body="天相",
        palaces=palaces,
    )


@pytest.fixture
def astrolabe():
    return make_astrolabe()


@pytest.fixture
def chart(astrolabe):
    return chart_from_astrolabe(astrolabe)


@pytest.fixture
def birth():
    return BirthInput(solar_date=date(2000, 2, 5), time="12:00", gender="male")
