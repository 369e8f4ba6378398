import pytest

from sentinel.models.report import Category, Coordinate, Report, Votes
from sentinel.models.view import QueryState, SortKey, SpatialMode
from sentinel.services.query_engine import build_view, matches_text


ORIGIN = Coordinate(lat=37.7749, lng=-122.4194)


def _report(report_id, title="", description="", category=Category.LOW, up=0, down=0, lat=37.7749, queryable=True):
    return Report(
        id=report_id,
        position=Coordinate(lat=lat, lng=-122.4194),
        title=title,
        description=description,
        category=category,
        votes=Votes(up=up, down=down),
        spatially_queryable=queryable,
    )


def _ids(reports):
    return [r.id for r in reports]


class TestTextFilter:
    def test_search_matches_title_case_insensitively(self):
        flooded = _report("a", "Flooded street")
        tree = _report("b", "Fallen tree")
        assert matches_text(flooded, "flood")
        assert not matches_text(tree, "flood")

    def test_search_matches_description(self):
        assert matches_text(_report("a", "Tree", "blocking the SIDEWALK"), "sidewalk")

    def test_empty_search_matches_everything(self):
        assert matches_text(_report("a"), "")


class TestSpatialFilter:
    def test_nearby_excludes_beyond_range_unbounded_includes(self):
        # ~1500 m north of ORIGIN
        far = _report("far", lat=37.7749 + 1500 / 111195)
        near = _report("near")

        nearby = build_view([far, near], QueryState(mode=SpatialMode.NEARBY, range_km=1), ORIGIN)
        unbounded = build_view([far, near], QueryState(mode=SpatialMode.UNBOUNDED, range_km=1), ORIGIN)

        assert _ids(nearby) == ["near"]
        assert set(_ids(unbounded)) == {"far", "near"}

    def test_nearby_without_reference_point_drops_only_non_queryable(self):
        ok = _report("ok")
        broken = _report("broken", queryable=False)
        view = build_view([ok, broken], QueryState(mode=SpatialMode.NEARBY), None)
        assert _ids(view) == ["ok"]

    def test_unbounded_keeps_non_queryable_reports(self):
        broken = _report("broken", queryable=False)
        assert _ids(build_view([broken], QueryState(mode=SpatialMode.UNBOUNDED), ORIGIN)) == ["broken"]

    def test_worldwide_is_an_alias_for_unbounded(self):
        assert SpatialMode("worldwide") is SpatialMode.UNBOUNDED


class TestSorting:
    def test_sort_by_upvotes_descending(self):
        reports = [_report("a", up=1), _report("b", up=5), _report("c", up=3)]
        assert _ids(build_view(reports, QueryState(sort_by=SortKey.UPVOTES), ORIGIN)) == ["b", "c", "a"]

    def test_sort_by_downvotes_descending(self):
        reports = [_report("a", down=2), _report("b", down=0), _report("c", down=7)]
        assert _ids(build_view(reports, QueryState(sort_by=SortKey.DOWNVOTES), ORIGIN)) == ["c", "a", "b"]

    def test_sort_by_severity(self):
        reports = [
            _report("u", category=Category.UNCATEGORIZED),
            _report("l", category=Category.LOW),
            _report("s", category=Category.SEVERE),
            _report("m", category=Category.MODERATE),
        ]
        assert _ids(build_view(reports, QueryState(sort_by=SortKey.SEVERITY), ORIGIN)) == ["s", "m", "l", "u"]

    def test_ties_keep_incoming_order(self):
        reports = [_report(str(i), up=1) for i in range(10)]
        state = QueryState(sort_by=SortKey.UPVOTES)
        first = build_view(reports, state, ORIGIN)
        second = build_view(reports, state, ORIGIN)
        assert _ids(first) == [str(i) for i in range(10)]
        assert _ids(first) == _ids(second)


def test_filters_then_sorts():
    reports = [
        _report("a", "Flooded street", up=1),
        _report("b", "Fallen tree", up=9),
        _report("c", "Flood warning", up=4),
    ]
    view = build_view(reports, QueryState(search="flood", mode=SpatialMode.UNBOUNDED), ORIGIN)
    assert _ids(view) == ["c", "a"]


def test_query_state_merge_validates():
    state = QueryState().merged(search="tree", range_km=None)
    assert state.search == "tree"
    assert state.range_km == 7.0
    with pytest.raises(ValueError):
        QueryState().merged(range_km=0)
