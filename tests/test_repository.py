"""
Repository CRUD tests - async path against a real SQLite store.
"""

import pytest

from sample_repo import SampleRecord, count_rows, make_record


@pytest.mark.asyncio
async def test_add_assigns_id_and_get_returns_equal_entity(repository, db_engine):
    """Added entity is stored field-for-field, including its generated id."""
    record = SampleRecord(test_bool=True, test_long=1337, test_double=420.69, test_string="Sauce???")
    assert await repository.add(record)
    assert record.id is not None
    assert count_rows(db_engine) == 1

    fetched = await repository.get(record.id)
    assert fetched == record


@pytest.mark.asyncio
async def test_get_missing_id_returns_none(repository):
    assert await repository.get(12345) is None


@pytest.mark.asyncio
async def test_get_all_returns_every_row(repository):
    """Three rows with TestLong -1, -2, -3 come back in some order."""
    for n in (-1, -2, -3):
        assert await repository.add(SampleRecord(test_long=n))

    # Establish TestBool == (Id % 2 == 0) through update
    for record in await repository.get_all():
        record.test_bool = record.id % 2 == 0
        assert await repository.update(record)

    records = await repository.get_all()
    assert len(records) == 3
    assert sorted(r.test_long for r in records) == [-3, -2, -1]
    assert all(r.test_bool == (r.id % 2 == 0) for r in records)


@pytest.mark.asyncio
async def test_get_all_empty_table(repository):
    assert await repository.get_all() == []


@pytest.mark.asyncio
async def test_add_range_inserts_all_rows(repository, db_engine):
    records = [make_record(n) for n in range(5)]
    assert await repository.add_range(records)
    assert count_rows(db_engine) == 5
    assert all(r.id is not None for r in records)


@pytest.mark.asyncio
async def test_update_overwrites_columns(repository):
    record = make_record(1)
    await repository.add(record)

    record.test_string = "changed"
    record.test_double = -2.25
    assert await repository.update(record)

    fetched = await repository.get(record.id)
    assert fetched.test_string == "changed"
    assert fetched.test_double == -2.25


@pytest.mark.asyncio
async def test_update_unknown_id_returns_false(repository):
    assert not await repository.update(SampleRecord(id=999, test_long=1))


@pytest.mark.asyncio
async def test_find_matches_filtered_get_all(repository):
    await repository.add_range([make_record(n) for n in range(10)])

    def predicate(r):
        return r.test_long > 3 and r.test_bool

    found = await repository.find(predicate)
    expected = [r for r in await repository.get_all() if predicate(r)]
    assert found == expected
    assert sorted(r.test_long for r in found) == [4, 6, 8]


@pytest.mark.asyncio
async def test_find_no_match_returns_empty(repository):
    await repository.add(make_record(1))
    assert await repository.find(lambda r: r.test_long == 42) == []


@pytest.mark.asyncio
async def test_find_predicate_error_returns_empty(repository):
    await repository.add(make_record(1))
    assert await repository.find(lambda r: 1 / 0) == []


@pytest.mark.asyncio
async def test_single_or_default(repository):
    await repository.add_range([make_record(n) for n in (1, 2, 3)])

    single = await repository.single_or_default(lambda r: r.test_long == 2)
    assert single is not None
    assert single.test_string == "record 2"

    assert await repository.single_or_default(lambda r: r.test_long == 99) is None


@pytest.mark.asyncio
async def test_single_or_default_ambiguous_match_is_none(repository):
    """Several matches are reported like no match at all."""
    await repository.add_range([make_record(n) for n in (1, 2, 3)])
    assert await repository.single_or_default(lambda r: r.test_long > 1) is None


@pytest.mark.asyncio
async def test_remove_by_id_and_entity(repository, db_engine):
    first, second = make_record(1), make_record(2)
    await repository.add_range([first, second])

    assert await repository.remove(first.id)
    assert await repository.remove(second)
    assert count_rows(db_engine) == 0


@pytest.mark.asyncio
async def test_remove_missing_id_returns_false(repository, db_engine):
    await repository.add(make_record(1))
    assert not await repository.remove(999)
    assert count_rows(db_engine) == 1


@pytest.mark.asyncio
async def test_remove_all(repository):
    await repository.add_range([make_record(n) for n in range(3)])
    assert await repository.remove_all()
    assert await repository.get_all() == []
    # Nothing left to remove
    assert not await repository.remove_all()


@pytest.mark.asyncio
async def test_removed_id_is_not_reused(repository):
    first, second = make_record(1), make_record(2)
    await repository.add_range([first, second])
    assert (first.id, second.id) == (1, 2)

    assert await repository.remove(2)
    copy = SampleRecord(**second.model_dump(exclude={"id"}))
    assert await repository.add(copy)

    assert await repository.get(2) is None
    assert copy.id == 3
