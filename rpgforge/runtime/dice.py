# rpgforge/runtime/dice.py
from __future__ import annotations

import random
import re
from dataclasses import dataclass, field

from rpgforge.app.globals import config

__all__ = ["DiceNotationError", "DiceTerm", "DiceRoll", "DiceRoller", "defaultDiceRoller"]



# One signed term: "+2d6kh1", "-3", "d20", "4d6kl3"
_TERM_RE = re.compile(
    r"(?P<sign>[+-])?\s*(?:"
    r"(?P<count>\d*)d(?P<sides>\d+|%)(?:k(?P<keep>[hl])(?P<keepCount>\d+))?"
    r"|(?P<const>\d+)"
    r")",
    re.IGNORECASE,
)

MAX_DICE = 1000
MAX_SIDES = 100_000



class DiceNotationError(ValueError):
    pass



@dataclass(frozen=True, slots=True)
class DiceTerm:
    sign: int
    text: str
    rolls: tuple[int, ...] = ()
    kept: tuple[int, ...] = ()
    constant: int = 0

    @property
    def value(self) -> int:
        return self.sign * (sum(self.kept) if self.rolls else self.constant)



@dataclass(frozen=True, slots=True)
class DiceRoll:
    notation: str
    terms: tuple[DiceTerm, ...] = field(default_factory=tuple)

    @property
    def total(self) -> int:
        return sum(term.value for term in self.terms)

    def __str__(self) -> str:
        parts = []
        for term in self.terms:
            body = f"[{', '.join(str(r) for r in term.rolls)}]" if term.rolls else str(term.constant)
            parts.append(("-" if term.sign < 0 else "+") + body)
        return f"{self.notation}: {' '.join(parts).lstrip('+')} = {self.total}"



class DiceRoller:
    """
    Rolls standard dice notation:

        "d20", "2d6+3", "4d6kh3" (keep highest 3), "2d20kl1" (keep lowest), "1d8+1d6-1", "d%"

    The random source is injectable so rolls can be reproduced.
    """

    def __init__(self, rng: random.Random | None = None, *, seed: int | str | None = None) -> None:
        self._rng = rng if rng is not None else random.Random(seed)

    def _rollTerm(self, sign: int, text: str, count: int, sides: int, keep: str | None, keepCount: int | None) -> DiceTerm:
        if count < 1 or count > MAX_DICE:
            raise DiceNotationError(f"Dice count must be within 1..{MAX_DICE} in {text!r}")
        if sides < 1 or sides > MAX_SIDES:
            raise DiceNotationError(f"Dice sides must be within 1..{MAX_SIDES} in {text!r}")
        rolls = tuple(self._rng.randint(1, sides) for _ in range(count))
        kept = rolls
        if keep is not None:
            keepCount = max(0, min(count, keepCount or 0))
            ordered = sorted(rolls, reverse=(keep == "h"))
            kept = tuple(ordered[:keepCount])
        return DiceTerm(sign=sign, text=text, rolls=rolls, kept=kept)

    def roll(self, notation: str) -> DiceRoll:
        if not isinstance(notation, str) or not notation.strip():
            raise DiceNotationError("Dice notation must be a non-empty string")
        text = notation.strip()
        compact = re.sub(r"\s+", "", text)

        terms: list[DiceTerm] = []
        pos = 0
        while pos < len(compact):
            mtch = _TERM_RE.match(compact, pos)
            if not mtch or mtch.end() == pos:
                raise DiceNotationError(f"Invalid dice notation {notation!r} at position {pos}")
            # Every term after the first needs an explicit sign
            if terms and not mtch.group("sign"):
                raise DiceNotationError(f"Missing operator in dice notation {notation!r} at position {pos}")
            sign = -1 if mtch.group("sign") == "-" else 1
            termText = mtch.group(0)
            if mtch.group("const") is not None:
                terms.append(DiceTerm(sign=sign, text=termText, constant=int(mtch.group("const"))))
            else:
                sidesRaw = mtch.group("sides")
                sides = 100 if sidesRaw == "%" else int(sidesRaw)
                count = int(mtch.group("count")) if mtch.group("count") else 1
                keep = mtch.group("keep").lower() if mtch.group("keep") else None
                keepCount = int(mtch.group("keepCount")) if mtch.group("keepCount") else None
                terms.append(self._rollTerm(sign, termText, count, sides, keep, keepCount))
            pos = mtch.end()

        return DiceRoll(notation=text, terms=tuple(terms))

    def total(self, notation: str) -> int:
        return self.roll(notation).total



def defaultDiceRoller() -> DiceRoller:
    """A roller seeded from config `dice.seed` (unseeded when not set)."""
    return DiceRoller(seed=config("dice.seed", None))
