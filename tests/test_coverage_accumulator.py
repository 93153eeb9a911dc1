from __future__ import annotations

from collections import Counter

from hypothesis import given, strategies as st

from shellcov.coverage.accumulator import CoverageAccumulator, CoverageMap
from shellcov.xtrace.parser import EventKind, Hit

_HITS = st.lists(
    st.builds(
        Hit,
        st.sampled_from(["/p/a.sh", "/p/b.sh", "/q/c.sh"]),
        st.integers(1, 40),
        st.sampled_from(list(EventKind)),
    ),
    max_size=40,
)


def test_accumulate_groups_lines_by_file() -> None:
    coverage = CoverageAccumulator().accumulate(
        [Hit("/p/a.sh", 3), Hit("/p/b.sh", 1), Hit("/p/a.sh", 1), Hit("/p/a.sh", 3)]
    )
    assert coverage.files() == ["/p/a.sh", "/p/b.sh"]
    assert coverage.lines("/p/a.sh") == [1, 3]
    assert coverage["/p/b.sh"] == {1}
    assert coverage.total_lines() == 3
    assert coverage.hits("/p/a.sh", 3) == 1
    assert coverage.hits("/p/zzz.sh", 3) == 0


def test_count_mode_counts_repeats() -> None:
    accumulator = CoverageAccumulator(count_hits=True)
    coverage = accumulator.accumulate([Hit("/p/a.sh", 3)] * 4 + [Hit("/p/a.sh", 5)])
    assert coverage["/p/a.sh"] == Counter({3: 4, 5: 1})
    assert coverage.as_dict() == {"/p/a.sh": {3: 4, 5: 1}}
    assert accumulator.hits == 5


def test_restrict_to_root() -> None:
    coverage = CoverageAccumulator().accumulate(
        [Hit("/p/a.sh", 1), Hit("/pp/b.sh", 2), Hit("/q/c.sh", 3)]
    )
    scoped = coverage.restrict_to("/p/")
    assert scoped.files() == ["/p/a.sh"]
    assert coverage.files() == ["/p/a.sh", "/pp/b.sh", "/q/c.sh"]


def test_merge_combines_maps() -> None:
    left = CoverageAccumulator(count_hits=True).accumulate([Hit("/a", 1), Hit("/a", 1)])
    right = CoverageAccumulator(count_hits=True).accumulate([Hit("/a", 1), Hit("/b", 2)])
    left.merge(right)
    assert left.as_dict() == {"/a": {1: 3}, "/b": {2: 1}}


def test_empty_map() -> None:
    coverage = CoverageMap()
    assert len(coverage) == 0
    assert coverage.files() == []
    assert coverage.lines("/nope") == []


@given(_HITS, st.randoms())
def test_accumulation_is_order_independent(hits: list[Hit], rnd: object) -> None:
    shuffled = list(hits)
    rnd.shuffle(shuffled)  # type: ignore[attr-defined]
    for count_hits in (False, True):
        forward = CoverageAccumulator(count_hits=count_hits).accumulate(hits)
        permuted = CoverageAccumulator(count_hits=count_hits).accumulate(shuffled)
        assert forward == permuted


@given(_HITS)
def test_set_mode_is_idempotent(hits: list[Hit]) -> None:
    once = CoverageAccumulator().accumulate(hits)
    twice = CoverageAccumulator().accumulate(hits + hits)
    assert once == twice
