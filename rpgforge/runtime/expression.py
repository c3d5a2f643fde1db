# rpgforge/runtime/expression.py
"""
Formula evaluation for rulesets.

Formulas are single Python-style expressions evaluated by simpleeval against a
closed, character-scoped environment:

    level, xp, stats, resources, derived, flags, collections, notes
    min, max, floor, ceil, round, abs, clamp, lookup, roll, hook

Dotted access (`stats.power`, `resources.energy.max`) reads mapping keys only;
there is no attribute access on Python objects and no method calls. `^` is power.

Evaluation is fail-soft: a formula that does not parse, references an unknown
name, or produces something that is not a finite number evaluates to 0.
"""
from __future__ import annotations

import ast
import logging
import math
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from simpleeval import DEFAULT_OPERATORS, FeatureNotAvailable, SimpleEval, safe_power

from rpgforge.app.globals import configBool
from rpgforge.content.models import ResolvedRuleset
from rpgforge.runtime.dice import DiceNotationError, DiceRoller, defaultDiceRoller
from rpgforge.runtime.hooks import callHook, toNumber

if TYPE_CHECKING:
    from rpgforge.runtime.character import CharacterDocument

logger = logging.getLogger(__name__)

__all__ = [
    "FormulaEvaluator",
    "normalizeNumber",
    "clamp",
    "lookup",
    "makeScope",
    "evaluate",
    "evalNumber",
]



_OPERATORS = dict(DEFAULT_OPERATORS)
_OPERATORS[ast.BitXor] = safe_power

_CONSTANTS: dict[str, Any] = {
    "True": True, "False": False, "None": None,
    "true": True, "false": False, "null": None,
}



def normalizeNumber(value: Any) -> float | int:
    """Finite number, with integral floats presented as ints. Everything else is 0."""
    num = toNumber(value)
    if isinstance(num, float) and num.is_integer():
        return int(num)
    return num



# ------------------------------------------------------------------ #
# Helpers exposed to formulas
# ------------------------------------------------------------------ #

def clamp(value: Any, lo: Any, hi: Any) -> float | int:
    return max(toNumber(lo), min(toNumber(hi), toNumber(value)))



def _min(*args: Any) -> float | int:
    return min((toNumber(arg) for arg in args), default=0)



def _max(*args: Any) -> float | int:
    return max((toNumber(arg) for arg in args), default=0)



def _round(value: Any) -> int:
    # Half up, so round(2.5) == 3 and round(-2.5) == -2
    return math.floor(toNumber(value) + 0.5)



def _lookupKey(key: Any) -> str:
    if isinstance(key, bool):
        return "true" if key else "false"
    if isinstance(key, float) and key.is_integer():
        return str(int(key))
    return str(key)



def lookup(tables: Mapping[str, Mapping[str, Any]] | None, table: Any, key: Any) -> float | int:
    """
    Exact row match on the key's text form, else the row with the highest numeric
    key that is <= the numeric key, else 0.
    """
    rows = (tables or {}).get(str(table))
    if not rows:
        return 0
    text = _lookupKey(key)
    if text in rows:
        return normalizeNumber(rows[text])
    try:
        wanted = float(text)
    except ValueError:
        return 0
    if not math.isfinite(wanted):
        return 0

    best = -math.inf
    value: Any = 0
    for rowKey, rowValue in rows.items():
        try:
            rowNum = float(rowKey)
        except ValueError:
            continue
        if math.isfinite(rowNum) and best < rowNum <= wanted:
            best = rowNum
            value = rowValue
    return normalizeNumber(value)



# ------------------------------------------------------------------ #
# Evaluator
# ------------------------------------------------------------------ #

class FormulaEvaluator(SimpleEval):
    """
    SimpleEval restricted to mapping-key attribute access and name-only calls.
    """

    def __init__(self, names: Mapping[str, Any], functions: Mapping[str, Any]) -> None:
        super().__init__(operators=_OPERATORS, functions=dict(functions), names={**_CONSTANTS, **names})

    def _eval_attribute(self, node: ast.Attribute) -> Any:
        container = self._eval(node.value)
        if isinstance(container, Mapping):
            if node.attr in container:
                return container[node.attr]
            raise KeyError(node.attr)
        raise FeatureNotAvailable(f"Attribute access on {type(container).__name__} is not allowed")

    def _eval_call(self, node: ast.Call) -> Any:
        if not isinstance(node.func, ast.Name):
            raise FeatureNotAvailable("Only helper functions can be called")
        return super()._eval_call(node)



def makeScope(
    doc: CharacterDocument,
    ruleset: ResolvedRuleset,
    *,
    dice: DiceRoller | None = None,
    derived: Mapping[str, Any] | None = None,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """
    Build the (names, functions) pair a formula sees for `doc`.

    `stats` and `resources` are the effective values when they have been computed,
    otherwise the base values. `derived` can be replaced by an in-progress map.
    """
    components = doc.components
    stats = components.effectiveStats or components.stats
    resources = components.effectiveResources or components.resources
    roller = dice if dice is not None else defaultDiceRoller()
    lookups = ruleset.lookups
    hooks = ruleset.hooks

    def roll(notation: Any) -> int:
        try:
            return roller.total(str(notation))
        except DiceNotationError as err:
            logger.debug("Bad dice notation %r: %s", notation, err)
            return 0

    names = {
        "level": doc.core.level,
        "xp": doc.core.xp,
        "stats": dict(stats),
        "resources": {key: res.model_dump() for key, res in resources.items()},
        "derived": dict(derived if derived is not None else doc.derived),
        "flags": dict(doc.stateFlags),
        "collections": doc.collections,
        "notes": doc.core.notes,
    }
    functions = {
        "min": _min,
        "max": _max,
        "floor": lambda x: math.floor(toNumber(x)),
        "ceil": lambda x: math.ceil(toNumber(x)),
        "round": _round,
        "abs": lambda x: abs(toNumber(x)),
        "clamp": clamp,
        "lookup": lambda table, key: lookup(lookups, table, key),
        "roll": roll,
        "hook": lambda name, *args: callHook(hooks, name, *args),
    }
    return names, functions



def evaluate(expr: str, names: Mapping[str, Any], functions: Mapping[str, Any]) -> Any:
    """Raw evaluation; errors propagate."""
    return FormulaEvaluator(names, functions).eval(expr)



def _logFailure(expr: str, err: Exception) -> None:
    level = logging.WARNING if configBool("formulas.logFailures", False) else logging.DEBUG
    logger.log(level, "Formula %r failed: %s: %s", expr, type(err).__name__, err)



def evalNumber(
    expr: str | None,
    doc: CharacterDocument,
    ruleset: ResolvedRuleset,
    *,
    dice: DiceRoller | None = None,
    derived: Mapping[str, Any] | None = None,
) -> float | int:
    """Evaluate `expr` to a finite number; any failure yields 0."""
    if not expr or not str(expr).strip():
        return 0
    names, functions = makeScope(doc, ruleset, dice=dice, derived=derived)
    try:
        result = evaluate(str(expr).strip(), names, functions)
    except Exception as err:
        _logFailure(str(expr), err)
        return 0
    return normalizeNumber(result)
