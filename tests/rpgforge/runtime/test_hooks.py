# tests/rpgforge/runtime/test_hooks.py
from __future__ import annotations

import pytest

from rpgforge.runtime.hooks import BuiltinHook, callHook, toNumber


@pytest.mark.parametrize(
    "hook, args, expected",
    [
        (BuiltinHook.CLAMP, (15, 0, 10), 10),
        (BuiltinHook.CLAMP, (-3, 0, 10), 0),
        (BuiltinHook.CLAMP, (4, 0, 10), 4),
        (BuiltinHook.MIN, (3, 1, 2), 1),
        (BuiltinHook.MAX, (3, 1, 2), 3),
        (BuiltinHook.SUM, (1, 2, 3.5), 6.5),
        (BuiltinHook.COUNT, (9, 9, 9), 3),
        (BuiltinHook.MIN, (), 0),
        (BuiltinHook.SUM, (), 0),
    ],
)
def test_builtin_hooks(hook, args, expected):
    assert hook.apply(*args) == expected


def test_hook_arguments_are_coerced():
    assert BuiltinHook.SUM.apply("2", True, None, "x") == 3


def test_from_binding():
    assert BuiltinHook.fromBinding("builtin:sum") is BuiltinHook.SUM
    assert BuiltinHook.fromBinding("builtin:nope") is None
    assert BuiltinHook.fromBinding(None) is None


def test_call_hook_through_bindings():
    bindings = {"cap": "builtin:clamp", "total": "builtin:sum"}
    assert callHook(bindings, "cap", 25, 0, 20) == 20
    assert callHook(bindings, "total", 1, 2) == 3


@pytest.mark.parametrize("bindings", [None, {}, {"other": "builtin:sum"}, {"weird": "custom:thing"}])
def test_unbound_or_unknown_hooks_are_zero(bindings):
    assert callHook(bindings, "weird", 10) == 0


@pytest.mark.parametrize(
    "value, expected",
    [(True, 1), (False, 0), (3, 3), (2.5, 2.5), ("4", 4), ("1.5", 1.5), ("nan", 0), (float("inf"), 0), (None, 0), ([1], 0)],
)
def test_to_number(value, expected):
    assert toNumber(value) == expected
