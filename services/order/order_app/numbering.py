"""
Order Service — 注文番号の採番

形式は ORD-AC-##### (ランダム5桁)。一意性はストレージ側の UNIQUE 制約で
担保し、衝突したら commands.create_order が上限回数までリトライする。
"""

import random
import re

from .constants import ORDER_NUMBER_PREFIX

ORDER_NUMBER_PATTERN = re.compile(r"^ORD-AC-\d{5}$")

_rng = random.SystemRandom()


def generate_order_number(rng: random.Random | None = None) -> str:
    digits = (rng or _rng).randint(10000, 99999)
    return f"{ORDER_NUMBER_PREFIX}{digits}"


def candidate_numbers(max_attempts: int, rng: random.Random | None = None):
    """最大 max_attempts 個の候補番号を順に返す。"""
    for _ in range(max_attempts):
        yield generate_order_number(rng)
