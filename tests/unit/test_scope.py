import re

import pytest

from saas_provisioner.core.scope import Scope
from saas_provisioner.errors import ConcurrentApplyError, KindMismatchError


def test_create_generates_unique_names() -> None:
    a = Scope.create("it")
    b = Scope.create("it")
    assert re.fullmatch(r"it-[0-9a-f]{8}", a.name)
    assert a.name != b.name


def test_empty_name_rejected() -> None:
    with pytest.raises(ValueError):
        Scope("")


def test_child_scope_naming() -> None:
    parent = Scope("suite")
    child = parent.child("case")
    assert child.name == "suite/case"
    assert child.parent is parent
    assert parent.children == [child]


def test_child_name_cannot_contain_separator() -> None:
    with pytest.raises(ValueError):
        Scope("suite").child("a/b")


def test_contains() -> None:
    scope = Scope("suite")
    assert scope.contains("suite")
    assert scope.contains("suite/case")
    assert not scope.contains("suite-2")
    assert not scope.contains("other")


def test_declared_keeps_order() -> None:
    scope = Scope("run")
    scope.declare("acme::Team", "b")
    scope.declare("acme::Team", "a")
    scope.declare("acme::Team", "b")
    assert scope.declared == [("acme::Team", "b"), ("acme::Team", "a")]
    assert scope.is_declared("a")


def test_begin_rejects_concurrent_and_kind_change() -> None:
    scope = Scope("run")
    scope.begin("acme::Team", "x")
    with pytest.raises(ConcurrentApplyError):
        scope.begin("acme::Team", "x")
    scope.end("x")

    scope.declare("acme::Team", "x")
    with pytest.raises(KindMismatchError):
        scope.begin("acme::ApiKey", "x")


def test_failures_propagate_to_parent() -> None:
    parent = Scope("suite")
    child = parent.child("case")
    assert parent.clean

    child.mark_failed("db")

    assert not child.clean
    assert child.failed == {"db"}
    assert parent.failed == {"suite/case/db"}


def test_clearing_a_failure_restores_clean_up_the_chain() -> None:
    suite = Scope("suite")
    case = suite.child("case")
    step = case.child("step")

    step.mark_failed("db")
    step.mark_failed("cache")
    assert suite.failed == {"suite/case/step/db", "suite/case/step/cache"}

    step.clear_failed("db")
    assert step.failed == {"cache"}
    assert case.failed == {"suite/case/step/cache"}
    assert not suite.clean

    step.clear_failed("cache")
    assert step.clean
    assert case.clean
    assert suite.clean
