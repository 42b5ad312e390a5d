"""Word pool and team helpers. Pure functions, no session state."""

import math
import random
from typing import Iterable, List, Optional, Sequence, Tuple, TypeVar

T = TypeVar('T')


def shuffle(items: Iterable[T], rng: Optional[random.Random] = None) -> List[T]:
    """Return a Fisher-Yates shuffled copy of ``items``; the input is untouched."""
    rng = rng or random
    shuffled = list(items)
    for i in range(len(shuffled) - 1, 0, -1):
        j = rng.randint(0, i)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


def clean_word(word: str) -> str:
    return (word or '').strip()


def pool_words(players) -> List[str]:
    """Concatenate every player's words in roster order."""
    words: List[str] = []
    for p in players:
        words.extend(p.words)
    return words


def split_teams(players: Sequence[T], rng: Optional[random.Random] = None) -> Tuple[List[T], List[T]]:
    """Shuffle ``players`` and cut them in two.

    Team A takes the first ``ceil(n / 2)`` of the shuffled order, so with an
    odd count team A is the larger one.
    """
    shuffled = shuffle(players, rng)
    half = math.ceil(len(shuffled) / 2)
    return shuffled[:half], shuffled[half:]
