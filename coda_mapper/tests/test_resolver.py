import asyncio
import typing

import pytest

from coda_mapper import CodaMapper, Entity, Identity, column, relation


class Writer(Entity):
    __table_id__ = "T2"

    id: Identity[str]
    name: str = column("c-name")


class Book(Entity):
    __table_id__ = "T1"

    id: Identity[str]
    title: str = column("c-title")
    author: Writer = relation("c-author", Writer)
    co_authors: typing.List[Writer] = relation("c-co-authors", Writer, multiple=True)


class Review(Entity):
    __table_id__ = "T3"

    id: Identity[str]
    author: Writer = relation("c-author", Writer)


class Person(Entity):
    __table_id__ = "T4"

    id: Identity[str]
    name: str = column("c-name")
    partner: "Person" = relation("c-partner", lambda: Person)


WRITER_PATH = "/docs/doc_id/tables/T2/rows/r2"


@pytest.fixture()
def library(coda):
    coda.add_row("T2", "r2", {"c-name": "Frank"})
    coda.add_row("T2", "r3", {"c-name": "Brian"})
    coda.add_row(
        "T1",
        "b1",
        {
            "c-title": "Dune",
            "c-author": coda.reference("T2", "r2"),
            "c-co-authors": [coda.reference("T2", "r2"), coda.reference("T2", "r3")],
        },
    )
    coda.add_row("T3", "v1", {"c-author": coda.reference("T2", "r2")})
    return coda


@pytest.mark.asyncio
async def test_placeholder_read_resolves_through_a_task(mapper: CodaMapper, library):
    book = await mapper.get(Book, "b1")

    pending = book.author
    assert isinstance(pending, asyncio.Task)

    author = await pending
    assert isinstance(author, Writer)
    assert author.is_fetched
    assert author.name == "Frank"
    assert book.author is author


@pytest.mark.asyncio
async def test_resolution_updates_the_cached_placeholder_in_place(mapper: CodaMapper, library):
    book = await mapper.get(Book, "b1")
    placeholder = book.get_values()["author"]

    author = await book.author

    assert author is placeholder
    assert mapper.cache.lookup("T2", "r2") is placeholder


@pytest.mark.asyncio
async def test_relation_array_resolves_all_elements_at_once(mapper: CodaMapper, library):
    book = await mapper.get(Book, "b1")

    pending = book.co_authors
    assert isinstance(pending, asyncio.Task)

    co_authors = await pending
    assert [writer.name for writer in co_authors] == ["Frank", "Brian"]
    assert all(writer.is_fetched for writer in co_authors)
    assert book.co_authors == co_authors


@pytest.mark.asyncio
async def test_partially_resolved_array_still_defers(mapper: CodaMapper, library):
    book = await mapper.get(Book, "b1")
    await book.author

    pending = book.co_authors
    assert isinstance(pending, asyncio.Task)

    co_authors = await pending
    assert co_authors[0] is book.author
    assert len(library.calls("GET", WRITER_PATH)) == 1


@pytest.mark.asyncio
async def test_resolved_relation_is_shared_without_another_fetch(mapper: CodaMapper, library):
    book = await mapper.get(Book, "b1")
    author = await book.author

    review = await mapper.get(Review, "v1")

    assert review.author is author
    assert len(library.calls("GET", WRITER_PATH)) == 1


@pytest.mark.asyncio
async def test_concurrent_resolution_converges_on_one_instance(mapper: CodaMapper, library):
    book = await mapper.get(Book, "b1")
    review = await mapper.get(Review, "v1")

    first, second = await asyncio.gather(book.author, review.author)

    assert first is second
    assert first.name == "Frank"
    assert len(library.calls("GET", WRITER_PATH)) == 2


@pytest.mark.asyncio
async def test_deleted_target_resolves_to_none(mapper: CodaMapper, library):
    book = await mapper.get(Book, "b1")
    del library.tables["T2"]["r2"]

    assert await book.author is None


@pytest.mark.asyncio
async def test_cycles_cost_one_fetch_per_hop(mapper: CodaMapper, coda):
    coda.add_row("T4", "p1", {"c-name": "Ann", "c-partner": coda.reference("T4", "p2")})
    coda.add_row("T4", "p2", {"c-name": "Bob", "c-partner": coda.reference("T4", "p1")})

    ann = await mapper.get(Person, "p1")
    bob = await ann.partner

    assert bob.name == "Bob"
    assert bob.partner is ann
    assert bob.partner.partner is bob
    assert len(coda.calls("GET", "/docs/doc_id/tables/T4/rows/p1")) == 1
    assert len(coda.calls("GET", "/docs/doc_id/tables/T4/rows/p2")) == 1


@pytest.mark.asyncio
async def test_empty_cells_in_relation_array_are_skipped(mapper: CodaMapper, coda):
    coda.add_row("T2", "r2", {"c-name": "Frank"})
    coda.add_row("T1", "b2", {"c-co-authors": [coda.reference("T2", "r2"), ""]})

    book = await mapper.get(Book, "b2")

    assert [writer.row_id for writer in book.get_values()["co_authors"]] == ["r2"]
    assert not book.is_dirty()


@pytest.mark.asyncio
async def test_field_is_relinked_after_cache_clear(mapper: CodaMapper, library):
    book = await mapper.get(Book, "b1")
    stale = book.get_values()["author"]
    mapper.clear_cache()
    canonical = await mapper.get(Writer, "r2")

    author = await book.author

    assert author is canonical
    assert author is not stale
    assert book.author is canonical
    assert not book.is_dirty()
    assert len(library.calls("GET", WRITER_PATH)) == 2


@pytest.mark.asyncio
async def test_array_is_relinked_in_place_after_cache_clear(mapper: CodaMapper, library):
    book = await mapper.get(Book, "b1")
    co_authors = book.get_values()["co_authors"]
    mapper.clear_cache()
    canonical = await mapper.get(Writer, "r2")

    resolved = await book.co_authors

    assert resolved[0] is canonical
    assert co_authors[0] is canonical
    assert book.co_authors is co_authors
    assert not book.is_dirty()


@pytest.mark.asyncio
async def test_reassigned_field_is_not_relinked(mapper: CodaMapper, library):
    book = await mapper.get(Book, "b1")
    mapper.clear_cache()
    await mapper.get(Writer, "r2")

    pending = book.author
    replacement = Writer(name="Ghost")
    book.author = replacement
    await pending

    assert book.author is replacement
