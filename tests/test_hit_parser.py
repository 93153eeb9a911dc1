from __future__ import annotations

from pathlib import Path

import pytest
from hypothesis import given, strategies as st

from shellcov.contracts.error import DirectoryStackUnderflow
from shellcov.xtrace.emitter import TraceEmitterConfig
from shellcov.xtrace.parser import (
    DirectoryContext,
    DirectoryFrame,
    EventKind,
    Hit,
    HitParser,
    Malformed,
    Unattributed,
)

EMITTER = TraceEmitterConfig(delimiter="c0ffee42")

_SEGMENT = st.text(alphabet="abcdefghij_.-", min_size=1, max_size=8).filter(
    lambda s: s not in {".", ".."}
)
_ABS_DIR = st.lists(_SEGMENT, min_size=1, max_size=4).map(lambda parts: "/" + "/".join(parts))


def _parser(existing: set[str] | None = None) -> HitParser:
    files = existing or set()
    return HitParser(EMITTER, is_file=files.__contains__)


def test_absolute_source_hit() -> None:
    result = _parser().parse(("12", "/src/a.sh", "/work", ""))
    assert result == Hit("/src/a.sh", 12, EventKind.HIT)


def test_relative_source_resolves_against_top() -> None:
    result = _parser().parse(("3", "./bin/../a.sh", "/work", "/"))
    assert result == Hit("/work/a.sh", 3)


def test_relative_source_prefers_existing_file_deeper_in_stack() -> None:
    parser = _parser({"/work/run.sh"})
    parser.parse(("1", "run.sh", "/work", "/"))
    result = parser.parse(("2", "run.sh", "/work/sub", "/work"))
    assert result == Hit("/work/run.sh", 2, EventKind.PUSH_DIR)


@pytest.mark.parametrize(
    ("fields", "reason"),
    [
        (("1", "a.sh", "/w"), "expected 4 fields, got 3"),
        (("1", "a.sh", "/w", "", "x"), "expected 4 fields, got 5"),
        (("x1", "a.sh", "/w", ""), "expected integer LINENO"),
        (("-4", "a.sh", "/w", ""), "expected integer LINENO"),
        (("${LINENO-}", "${BASH_SOURCE[0]-}", "${PWD-}", "${OLDPWD-}"), "expected integer LINENO"),
        (("", "a.sh", "/w", ""), "expected integer LINENO"),
        (("1", "a.sh", "", ""), "missing PWD"),
    ],
)
def test_malformed_records(fields: tuple[str, ...], reason: str) -> None:
    result = _parser().parse(fields)
    assert isinstance(result, Malformed)
    assert result.reason.startswith(reason)
    assert result.fields == fields


def test_missing_source_is_unattributed() -> None:
    assert _parser().parse(("7", "", "/w", "")) == Unattributed(7)


def test_cd_and_back_pushes_then_pops() -> None:
    parser = _parser()
    assert parser.parse(("1", "/s.sh", "/a", "/old")).event is EventKind.HIT  # type: ignore[union-attr]
    assert parser.parse(("2", "/s.sh", "/a/b", "/a")).event is EventKind.PUSH_DIR  # type: ignore[union-attr]
    assert parser.context.depth == 2
    assert parser.parse(("3", "/s.sh", "/a", "/a/b")).event is EventKind.POP_DIR  # type: ignore[union-attr]
    assert parser.context.depth == 1
    assert parser.context.top is not None and parser.context.top.pwd == "/a"


def test_cd_into_startup_oldpwd_is_a_push() -> None:
    parser = _parser()
    parser.parse(("1", "/s.sh", "/a", "/prev"))
    result = parser.parse(("2", "/s.sh", "/prev", "/a"))
    assert result == Hit("/s.sh", 2, EventKind.PUSH_DIR)
    assert parser.context.depth == 2
    assert parser.parse(("3", "/s.sh", "/prev", "/a")) == Hit("/s.sh", 3, EventKind.HIT)


def test_returning_to_a_stacked_directory_unwinds() -> None:
    parser = _parser()
    parser.parse(("1", "/s.sh", "/a", ""))
    parser.parse(("2", "/s.sh", "/a/b", "/a"))
    parser.parse(("3", "/s.sh", "/a/b/c", "/a/b"))
    # a subshell that cd'ed twice exits; the parent keeps its own OLDPWD
    result = parser.parse(("4", "/s.sh", "/a", ""))
    assert result == Hit("/s.sh", 4, EventKind.POP_DIR)
    assert parser.context.depth == 1


def test_interleaved_directories_keep_the_stack_shallow() -> None:
    calls: list[str] = []

    def is_file(path: str) -> bool:
        calls.append(path)
        return path == "/parent/rel.sh"

    parser = HitParser(EMITTER, is_file=is_file)
    groups = [("1", "rel.sh", "/parent", "/prev"), ("2", "rel.sh", "/b", "/a")] * 10_000
    hits = list(parser.parse_all(groups))

    assert len(hits) == 20_000
    assert parser.skipped == 0
    assert parser.context.depth <= 2
    assert {hit.path for hit in hits} == {"/parent/rel.sh"}
    assert len(calls) < 10


class _BrokenContext(DirectoryContext):
    def classify(self, pwd: str, oldpwd: str) -> EventKind:
        return EventKind.POP_DIR


def test_unbalanced_pop_is_malformed_and_resynchronizes() -> None:
    parser = HitParser(EMITTER, _BrokenContext([DirectoryFrame("/a", "")]), is_file=lambda _: False)
    result = parser.parse(("2", "/s.sh", "/elsewhere", "/a"))
    assert isinstance(result, Malformed)
    assert "underflow" in result.reason
    assert parser.context.frames == [DirectoryFrame("/elsewhere", "/a")]


def test_directory_context_pop_underflow_raises() -> None:
    context = DirectoryContext()
    with pytest.raises(DirectoryStackUnderflow):
        context.pop()
    context.reseed("/a", "")
    with pytest.raises(DirectoryStackUnderflow):
        context.pop()
    context.push("/a/b", "/a")
    with pytest.raises(DirectoryStackUnderflow):
        context.pop_to("/nowhere")


def test_parse_all_skips_and_counts() -> None:
    parser = _parser()
    groups = [
        ("1", "/s.sh", "/a", ""),
        ("oops", "/s.sh", "/a", ""),
        ("2", "/s.sh"),
        ("3", "", "/a", ""),
        ("4", "/s.sh", "/a", ""),
    ]
    hits = list(parser.parse_all(groups))
    assert [hit.line for hit in hits] == [1, 4]
    assert parser.skipped == 2
    assert parser.unattributed == 1
    assert parser.reasons["expected integer LINENO"] == 1
    assert parser.reasons["expected 4 fields"] == 1


@given(
    st.integers(0, 1_000_000),
    st.text(max_size=30),
    _ABS_DIR,
    st.one_of(st.just(""), _ABS_DIR),
)
def test_well_typed_groups_are_never_malformed(line: int, source: str, pwd: str, oldpwd: str) -> None:
    result = _parser().parse((str(line), source, pwd, oldpwd))
    assert not isinstance(result, Malformed)
    if source:
        assert isinstance(result, Hit)
        assert result.line == line


@given(st.lists(_ABS_DIR, min_size=1, max_size=6, unique=True))
def test_balanced_push_pop_restores_top(dirs: list[str]) -> None:
    root = "/root-dir"
    dirs = [d for d in dirs if d != root]
    parser = _parser()
    parser.parse(("1", "/s.sh", root, ""))
    before = parser.context.top

    trail = [root]
    for directory in dirs:
        result = parser.parse(("2", "/s.sh", directory, trail[-1]))
        assert isinstance(result, Hit) and result.event is EventKind.PUSH_DIR
        trail.append(directory)
    while len(trail) > 1:
        left = trail.pop()
        result = parser.parse(("3", "/s.sh", trail[-1], left))
        assert isinstance(result, Hit) and result.event is EventKind.POP_DIR

    assert parser.context.top == before
    assert parser.context.depth == 1


def test_resolution_cache_respects_context(tmp_path: Path) -> None:
    script = tmp_path / "one" / "x.sh"
    script.parent.mkdir()
    script.write_text("true\n", encoding="utf-8")
    parser = HitParser(EMITTER)
    first = parser.parse(("1", "x.sh", str(tmp_path / "one"), ""))
    second = parser.parse(("1", "x.sh", str(tmp_path / "two"), str(tmp_path / "one")))
    assert first == Hit(str(script), 1)
    assert isinstance(second, Hit) and second.path == str(script)
