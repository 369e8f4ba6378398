import logging

from sentinel.models.report import Category
from sentinel.services.ingestion import IngestionNormalizer
from tests.conftest import make_doc


def _snapshot(docs):
    return [{**data, "id": doc_id} for doc_id, data in docs.items()]


def test_normalizes_stored_document_shape():
    normalizer = IngestionNormalizer()
    normalizer.apply([{**make_doc("Flooded street", "Water everywhere", "Severe", up=4, down=1, radius=500, crime_prob=72), "id": "a"}])

    report = normalizer.reports["a"]
    assert report.title == "Flooded street"
    assert report.description == "Water everywhere"
    assert report.category == Category.SEVERE
    assert report.votes.up == 4 and report.votes.down == 1
    assert report.radius == 500
    assert report.crime_probability == 72
    assert report.position.lat == 37.7749
    assert report.created_at.year == 2024
    assert report.spatially_queryable


def test_defaults_for_missing_fields():
    normalizer = IngestionNormalizer()
    normalizer.apply([{**make_doc(category="???", radius=None, crime_prob=None), "id": "a"}])

    report = normalizer.reports["a"]
    assert report.radius == 300
    assert report.crime_probability == 50
    assert report.category == Category.UNCATEGORIZED
    assert report.spatially_queryable


def test_radius_and_probability_are_clamped():
    normalizer = IngestionNormalizer()
    normalizer.apply([
        {**make_doc(radius=10, crime_prob=140), "id": "small"},
        {**make_doc(radius=99999, crime_prob=-5), "id": "big"},
    ])

    assert normalizer.reports["small"].radius == 50
    assert normalizer.reports["small"].crime_probability == 100
    assert normalizer.reports["big"].radius == 5000
    assert normalizer.reports["big"].crime_probability == 0


def test_missing_votes_kept_but_not_queryable(caplog):
    doc = make_doc()
    del doc["votes"]
    normalizer = IngestionNormalizer()

    with caplog.at_level(logging.WARNING):
        normalizer.apply([{**doc, "id": "a"}])

    report = normalizer.reports["a"]
    assert not report.spatially_queryable
    assert report.votes.up == 0
    assert "votes" in caplog.text


def test_invalid_position_not_queryable():
    normalizer = IngestionNormalizer()
    normalizer.apply([
        {**make_doc(lat=123.0), "id": "out-of-range"},
        {**make_doc(), "pos": {"lat": "37.7", "lng": -122.4}, "id": "string-lat"},
        {**make_doc(), "pos": None, "id": "no-pos"},
    ])

    for report_id in ("out-of-range", "string-lat", "no-pos"):
        report = normalizer.reports[report_id]
        assert report.position is None
        assert not report.spatially_queryable


def test_negative_vote_count_is_invalid():
    normalizer = IngestionNormalizer()
    normalizer.apply([{**make_doc(up=-1), "id": "a"}])
    assert not normalizer.reports["a"].spatially_queryable


def test_applying_same_snapshot_twice_is_idempotent(seed_docs):
    normalizer = IngestionNormalizer()
    first = normalizer.apply(_snapshot(seed_docs))
    before = dict(normalizer.reports)

    second = normalizer.apply(_snapshot(seed_docs))

    assert first.added == frozenset(seed_docs)
    assert second.is_empty
    assert dict(normalizer.reports) == before


def test_diff_reports_added_changed_removed(seed_docs):
    normalizer = IngestionNormalizer()
    normalizer.apply(_snapshot(seed_docs))

    docs = dict(seed_docs)
    docs["r-low"] = {**docs["r-low"], "votes": {"up": 9, "down": 3}}
    del docs["r-moderate"]
    docs["r-new"] = make_doc("Broken glass", "Glass on the path")

    diff = normalizer.apply(_snapshot(docs))

    assert diff.added == {"r-new"}
    assert diff.changed == {"r-low"}
    assert diff.removed == {"r-moderate"}
    assert normalizer.reports["r-low"].votes.up == 9


def test_duplicate_ids_keep_last_and_records_without_id_are_dropped():
    normalizer = IngestionNormalizer()
    normalizer.apply([
        {**make_doc(title="first"), "id": "dup"},
        {**make_doc(title="second"), "id": "dup"},
        make_doc(title="no id"),
    ])

    assert list(normalizer.reports) == ["dup"]
    assert normalizer.reports["dup"].title == "second"


def test_validation_errors_logged_only_for_new_or_changed(caplog):
    doc = make_doc()
    del doc["votes"]
    normalizer = IngestionNormalizer()
    normalizer.apply([{**doc, "id": "a"}])

    caplog.clear()
    with caplog.at_level(logging.WARNING):
        normalizer.apply([{**doc, "id": "a"}])

    assert "ValidationError" not in caplog.text
