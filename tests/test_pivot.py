from pivot import MergeSpan, SortSpec, merge_spans, plan, sort_buckets
from reports import Bucket


def _bucket(key, secondary, revenue=0.0, profit=0.0):
    return Bucket(key=key, secondary_key=secondary, revenue=revenue, profit=profit)


def test_sort_is_stable_for_equal_keys():
    rows = [_bucket("x", "T1", 10), _bucket("y", "T2", 10), _bucket("z", "T1", 5)]
    assert [b.key for b in sort_buckets(rows, SortSpec("revenue", "desc"))] == ["x", "y", "z"]
    assert [b.key for b in sort_buckets(rows, SortSpec("revenue", "asc"))] == ["z", "x", "y"]


def test_text_sort_ignores_case():
    rows = [_bucket("b", "b"), _bucket("A", "A"), _bucket("c", "c")]
    assert [b.key for b in sort_buckets(rows, SortSpec("bucketKey", "asc"))] == ["A", "b", "c"]
    assert [b.key for b in sort_buckets(rows, SortSpec("secondaryKey", "desc"))] == ["c", "b", "A"]


def test_sort_by_profit():
    rows = [_bucket("x", "T1", profit=1), _bucket("y", "T1", profit=3)]
    assert [b.key for b in sort_buckets(rows, SortSpec("profit", "desc"))] == ["y", "x"]


def test_toggle():
    spec = SortSpec("revenue", "desc")
    assert spec.toggled("revenue") == SortSpec("revenue", "asc")
    assert spec.toggled("revenue").toggled("revenue") == SortSpec("revenue", "desc")
    assert spec.toggled("profit") == SortSpec("profit", "desc")
    assert SortSpec("profit", "asc").toggled("bucketKey") == SortSpec("bucketKey", "desc")


def test_merge_spans_only_join_adjacent_rows():
    rows = [_bucket("a", "T1"), _bucket("b", "T1"), _bucket("c", "T2"), _bucket("d", "T1")]
    assert merge_spans(rows) == [
        MergeSpan(True, 2),
        MergeSpan(False, 0),
        MergeSpan(True, 1),
        MergeSpan(True, 1),
    ]


def test_merge_runs_cover_every_row():
    rows = [_bucket(str(i), f"T{i % 3}", revenue=i) for i in range(10)]
    ordered, spans = plan(rows, SortSpec("secondaryKey", "asc"))
    assert sum(span.run_length for span in spans if span.is_first_of_run) == len(ordered)
    for index, span in enumerate(spans):
        if span.is_first_of_run:
            run = ordered[index:index + span.run_length]
            assert {bucket.secondary_key for bucket in run} == {ordered[index].secondary_key}


def test_merge_spans_empty():
    assert merge_spans([]) == []
