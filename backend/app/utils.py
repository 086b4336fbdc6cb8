import math
import random
import string
import time
from typing import Collection


def now_ts() -> float:
    return time.time()


def clock() -> float:
    """Monotonic reading shared by every submission in the process."""
    return time.monotonic()


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def generate_player_name(taken: Collection[str]) -> str:
    # five letters then three digits, e.g. "hKpWq042"
    while True:
        name = "".join(random.choices(string.ascii_letters, k=5)) + "".join(random.choices(string.digits, k=3))
        if name not in taken:
            return name


def sort_leaderboard(entries: list[dict]) -> list[dict]:
    # sorted() is stable, so equal scores keep the order they came in (join order)
    return sorted(entries, key=lambda e: -e.get("score", 0))
