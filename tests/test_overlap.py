"""
Tests for overlap resolution and component list merging.
"""

import random

import pytest

from region_segmentation.components import BoundingBox, NormalizedComponent
from region_segmentation.core import CandidateRegion, Region, RegionType
from region_segmentation.overlap import (
    combine_results,
    merge_with_external,
    overlap_ratio,
    remove_duplicates,
    resolve,
    sort_reading_order,
)


def _candidate(x, y, w, h, confidence, region_type=RegionType.TEXT):
    return CandidateRegion(Region(x, y, w, h), region_type, confidence)


def _component(name, x, y, w, h):
    return NormalizedComponent(
        name=name,
        description="test component",
        category="Other Element",
        bounding_box=BoundingBox(x=x, y=y, width=w, height=h),
    )


class TestOverlapRatio:
    """Test cases for overlap_ratio."""

    def test_identical(self):
        """Test that identical boxes overlap fully."""
        assert overlap_ratio(Region(5, 5, 10, 10), Region(5, 5, 10, 10)) == 1.0

    def test_identical_empty(self):
        """Test that identical empty boxes overlap fully."""
        assert overlap_ratio(Region(5, 5, 0, 0), Region(5, 5, 0, 0)) == 1.0

    def test_empty_against_other(self):
        """Test that an empty box never overlaps another box."""
        assert overlap_ratio(Region(5, 5, 0, 10), Region(0, 0, 20, 20)) == 0.0

    def test_disjoint(self):
        """Test that disjoint boxes do not overlap."""
        assert overlap_ratio(Region(0, 0, 10, 10), Region(20, 20, 10, 10)) == 0.0

    def test_touching_edges(self):
        """Test that boxes sharing an edge do not overlap."""
        assert overlap_ratio(Region(0, 0, 10, 10), Region(10, 0, 10, 10)) == 0.0

    def test_contained(self):
        """Test that a contained box overlaps fully."""
        assert overlap_ratio(Region(0, 0, 100, 100), Region(10, 10, 10, 10)) == 1.0

    def test_partial(self):
        """Test a partial overlap against the smaller box."""
        assert overlap_ratio(Region(0, 0, 10, 10), Region(5, 0, 20, 10)) == pytest.approx(0.5)

    def test_symmetric(self):
        """Test that the overlap ratio is symmetric."""
        a, b = Region(0, 0, 30, 10), Region(20, 5, 10, 40)
        assert overlap_ratio(a, b) == overlap_ratio(b, a)

    def test_percentage_boxes(self):
        """Test overlap of percentage bounding boxes."""
        a = BoundingBox(x=0, y=0, width=50, height=50)
        b = BoundingBox(x=25, y=0, width=50, height=50)
        assert overlap_ratio(a, b) == pytest.approx(0.5)


class TestResolve:
    """Test cases for resolve."""

    def test_identical_regions_keep_highest_confidence(self):
        """Test that the most confident of identical regions survives."""
        text = _candidate(10, 10, 40, 20, 0.9, RegionType.TEXT)
        image = _candidate(10, 10, 40, 20, 0.4, RegionType.IMAGE)
        assert resolve([image, text]) == [text]

    def test_non_overlapping_all_kept(self):
        """Test that disjoint candidates are all kept."""
        a = _candidate(0, 0, 10, 10, 0.5)
        b = _candidate(50, 50, 10, 10, 0.9)
        assert resolve([a, b]) == [b, a]

    def test_larger_region_replaces_smaller(self):
        """Test that a larger region replaces a smaller overlapping one."""
        small = _candidate(0, 0, 10, 10, 0.8)
        large = _candidate(0, 0, 100, 100, 0.7)
        assert resolve([small, large]) == [large]

    def test_must_beat_every_conflict(self):
        """Test that a candidate must beat every region it conflicts with."""
        left = _candidate(0, 0, 20, 20, 0.9)
        right = _candidate(40, 0, 20, 20, 0.9)
        # wider than each but lower confidence; it beats both on area
        bridge = _candidate(0, 0, 60, 20, 0.5)
        assert resolve([left, right, bridge]) == [bridge]

        # beaten on confidence and area by the big box
        big = _candidate(0, 0, 100, 100, 0.95)
        assert resolve([big, bridge]) == [big]

    def test_ties_keep_input_order(self):
        """Test that ties keep the earlier candidate."""
        first = _candidate(0, 0, 10, 10, 0.5, RegionType.TEXT)
        second = _candidate(0, 0, 10, 10, 0.5, RegionType.ICON)
        assert resolve([first, second]) == [first]

    def test_empty(self):
        assert resolve([]) == []

    def test_random_candidates(self):
        """Test the resolve invariants on random candidates."""
        rng = random.Random(1234)
        types = [t for t in RegionType if t is not RegionType.BACKGROUND]
        for _ in range(50):
            candidates = [
                _candidate(
                    rng.randint(0, 180),
                    rng.randint(0, 180),
                    rng.randint(1, 60),
                    rng.randint(1, 60),
                    rng.random(),
                    rng.choice(types),
                )
                for _ in range(30)
            ]
            resolved = resolve(candidates, threshold=0.3)
            assert resolved
            for i, a in enumerate(resolved):
                for b in resolved[i + 1:]:
                    assert overlap_ratio(a, b) <= 0.3
            assert [c.confidence for c in resolved] == sorted((c.confidence for c in resolved), reverse=True)
            assert resolve(resolved, threshold=0.3) == resolved


class TestComponentMerging:
    """Test cases for merging heuristic and external component lists."""

    def test_external_takes_priority(self):
        """Test that external components win over overlapping heuristic ones."""
        external = [_component("AI Logo", 0, 0, 50, 50)]
        duplicate = _component("Heuristic Logo", 0, 0, 50, 50)
        separate = _component("Heuristic Icon", 60, 60, 20, 20)
        assert merge_with_external(external, [duplicate, separate]) == [external[0], separate]

    def test_heuristic_components_not_compared_with_each_other(self):
        """Test that heuristic components are only compared against external ones."""
        a = _component("A", 60, 60, 20, 20)
        b = _component("B", 60, 60, 20, 20)
        assert merge_with_external([], [a, b]) == [a, b]

    def test_remove_duplicates_keeps_largest(self):
        """Test that duplicate removal keeps the largest component."""
        large = _component("Large", 0, 0, 50, 50)
        inner = _component("Inner", 5, 5, 40, 40)
        other = _component("Other", 70, 70, 10, 10)
        assert remove_duplicates([inner, other, large]) == [large, other]

    def test_reading_order(self):
        """Test sorting components into reading order."""
        right = _component("Right", 50, 10, 10, 10)
        left = _component("Left", 10, 12, 10, 10)
        below = _component("Below", 0, 40, 10, 10)
        assert sort_reading_order([below, right, left]) == [left, right, below]

    def test_combine_results(self):
        """Test the full merge, dedup and sort sequence."""
        external = [_component("AI Text", 0, 50, 40, 10)]
        heuristic = [
            _component("Heuristic Text", 0, 50, 40, 10),
            _component("Heuristic Logo", 0, 0, 20, 20),
        ]
        combined = combine_results(heuristic, external)
        assert [c.name for c in combined] == ["Heuristic Logo", "AI Text"]
