import random

import pytest

from prsync.core.filesystem import FileRecord
from prsync.core.partition import Chunk, partition


def _random_files(seed, count):
    rng = random.Random(seed)
    records = [FileRecord(rng.randint(0, 10_000), f"file{i}") for i in range(count)]
    return sorted(records, key=lambda r: r.size, reverse=True)


def _greedy_unreversed(files, workers):
    """Plain linear-scan version of the assignment, without reversal"""
    totals = [0] * workers
    assigned = [[] for _ in range(workers)]
    for record in files:
        worker = totals.index(min(totals))
        assigned[worker].append(record)
        totals[worker] += record.size
    return assigned


def test_two_workers_scenario():
    files = [
        FileRecord(300, "a"),
        FileRecord(100, "b"),
        FileRecord(100, "c"),
        FileRecord(100, "d"),
    ]

    chunks = partition(files, 2)

    assert chunks[0] == Chunk(id=0, total_size=300, files=(FileRecord(300, "a"),))
    assert chunks[1].total_size == 300
    # Odd chunk runs smallest-last-assigned first
    assert chunks[1].paths == ("d", "c", "b")


def test_ties_go_to_lowest_index():
    files = [FileRecord(10, "x"), FileRecord(10, "y"), FileRecord(10, "z")]

    chunks = partition(files, 3)

    assert [c.paths for c in chunks] == [("x",), ("y",), ("z",)]


def test_more_workers_than_files():
    chunks = partition([FileRecord(7, "only")], 4)

    assert len(chunks) == 4
    assert chunks[0].paths == ("only",)
    assert all(c.files == () and c.total_size == 0 for c in chunks[1:])


def test_no_files():
    chunks = partition([], 3)

    assert [c.id for c in chunks] == [0, 1, 2]
    assert all(not c.files for c in chunks)


def test_invalid_worker_count():
    with pytest.raises(ValueError):
        partition([FileRecord(1, "a")], 0)


@pytest.mark.parametrize("seed", range(20))
@pytest.mark.parametrize("workers", [1, 2, 3, 7])
def test_chunks_are_complete_disjoint_and_balanced(seed, workers):
    files = _random_files(seed, count=random.Random(seed).randint(0, 200))

    chunks = partition(files, workers)

    assigned = [f for c in chunks for f in c.files]
    assert len(assigned) == len(files)
    assert sorted(assigned, key=lambda r: r.path) == sorted(files, key=lambda r: r.path)

    for chunk in chunks:
        assert chunk.total_size == sum(f.size for f in chunk.files)

    if files:
        totals = [c.total_size for c in chunks]
        assert max(totals) - min(totals) <= max(f.size for f in files)


@pytest.mark.parametrize("seed", range(10))
def test_odd_chunks_are_reversed(seed):
    files = _random_files(seed, count=50)

    chunks = partition(files, 4)
    expected = _greedy_unreversed(files, 4)

    for chunk in chunks:
        if chunk.id % 2:
            assert list(chunk.files) == expected[chunk.id][::-1]
        else:
            assert list(chunk.files) == expected[chunk.id]
