from pathlib import Path

import pytest

from conftest import ROOT, event
from hotrefresh.config import ScopeConfig
from hotrefresh.errors import ResolutionError
from hotrefresh.targets import Target, TargetResolver


def test_resolves_class_file_to_dotted_unit(resolver):
    target = resolver.resolve(event("modified", "com/acme/Service.class", 1.0))

    assert target == Target(scope_id="app", unit_id="com.acme.Service")


def test_same_path_always_resolves_to_equal_target(resolver):
    first = resolver.resolve(event("created", "com/acme/A.class", 1.0))
    second = resolver.resolve(event("deleted", "com/acme/A.class", 9.0))

    assert first == second
    assert hash(first) == hash(second)


def test_nested_units_collapse_into_owner(resolver):
    target = resolver.resolve(event("modified", "com/acme/A$Inner$1.class", 1.0))

    assert target.unit_id == "com.acme.A"


def test_nested_units_kept_when_collapse_disabled():
    resolver = TargetResolver([ScopeConfig(scope_id="app", paths=[ROOT])])

    target = resolver.resolve(event("modified", "A$Inner.class", 1.0))

    assert target.unit_id == "A$Inner"


def test_paths_outside_scopes_are_ignored(resolver):
    assert resolver.resolve(event("modified", "A.class", 1.0, root=Path("/elsewhere"))) is None


def test_unmatched_suffix_is_ignored(resolver):
    assert resolver.resolve(event("modified", "com/acme/notes.txt", 1.0)) is None


def test_longest_root_wins():
    resolver = TargetResolver(
        [
            ScopeConfig(scope_id="app", paths=[ROOT]),
            ScopeConfig(scope_id="plugin", paths=[ROOT / "plugins"]),
        ]
    )

    target = resolver.resolve(event("modified", "plugins/Hook.class", 1.0))

    assert target == Target(scope_id="plugin", unit_id="Hook")


def test_python_packages_resolve_to_module_names():
    src = Path("/work/src")
    resolver = TargetResolver([ScopeConfig(scope_id="py", paths=[src], suffixes=(".py",))])

    assert resolver.resolve_path(src / "pkg" / "__init__.py") == Target("py", "pkg")
    assert resolver.resolve_path(src / "pkg" / "mod.py") == Target("py", "pkg.mod")


def test_malformed_unit_raises(resolver):
    with pytest.raises(ResolutionError):
        resolver.resolve(event("modified", "com/.class", 1.0))

    with pytest.raises(ResolutionError):
        resolver.resolve(event("modified", "com.acme/A.class", 1.0))
