"""
Selection expression tests.
"""

from pathlib import Path

import pytest
import sys

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
from quadstack.errors import DeploymentError  # noqa: E402
from quadstack.manifest import ServiceDescriptor  # noqa: E402
from quadstack.selection import resolve_selection  # noqa: E402


def _descriptors(*names: str) -> list[ServiceDescriptor]:
    return [
        ServiceDescriptor(source=name, path=Path(name), install_name=name, display_label=name)
        for name in names
    ]


@pytest.fixture
def three():
    return _descriptors("a.container", "b.container", "c.container")


class TestResolveSelection:
    def test_all(self, three):
        assert resolve_selection(three, "all") == [0, 1, 2]

    def test_all_short_circuits_other_terms(self, three):
        assert resolve_selection(three, "3, all") == [0, 1, 2]

    def test_duplicates_and_overlaps_keep_first_occurrence(self, three):
        assert resolve_selection(three, "1,1,1-2") == [0, 1]

    def test_order_follows_expression(self, three):
        assert resolve_selection(three, "3,1-2") == [2, 0, 1]

    def test_out_of_range_number_contributes_nothing(self, three):
        assert resolve_selection(three, "9,2") == [1]

    def test_range_is_clipped(self, three):
        assert resolve_selection(three, "0-5") == [0, 1, 2]

    def test_reversed_range_is_empty(self, three):
        assert resolve_selection(three, "3-1,1") == [0]

    def test_install_name(self, three):
        assert resolve_selection(three, " b.container , 1") == [1, 0]

    def test_duplicate_install_name_picks_first(self):
        descriptors = _descriptors("a.container", "dup.container", "dup.container")
        assert resolve_selection(descriptors, "dup.container") == [1]

    def test_unknown_terms_are_ignored(self, three):
        assert resolve_selection(three, "typo,2") == [1]


class TestSelectionErrors:
    def test_empty_expression(self, three):
        with pytest.raises(DeploymentError, match="Nothing selected"):
            resolve_selection(three, "   ")

    def test_nothing_matched_names_the_terms(self, three):
        with pytest.raises(DeploymentError, match="Selection matched nothing. Unmatched terms: 9, typo"):
            resolve_selection(three, "9,typo")
