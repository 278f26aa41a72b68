"""
Tests for services/repository.py

Coverage:
- Manga upsert keeps local state (favorite, sync timestamp)
- Chapter reconciliation: idempotence, retention, positions, duplicates
- Display ordering and adjacent chapters
- Atomic page replacement (including concurrent readers)
- Updates: favorites only, ordering, acknowledgement, pruning
- purge_source keeps reading history
"""

import threading

import pytest

from conftest import utc
from models.models import ChapterSummary, MangaDetail, MangaStatus, MangaSummary, PageRef
from utils.exceptions import NotFoundError


def summaries(*ids, published=None):
    published = published or {}
    return [ChapterSummary(provider_id=cid, published_at=published.get(cid)) for cid in ids]


class TestMangaUpsert:
    """Manga rows are refreshed without losing local state."""

    def test_create_and_get(self, repository):
        """Should store a manga fetched from a source."""
        repository.upsert_manga("alpha", MangaSummary(provider_id="M1", title="One"))
        manga = repository.get_manga("alpha", "M1")
        assert manga.title == "One"
        assert manga.key == "alpha:M1"
        assert manga.favorite is False

    def test_unknown_manga_raises(self, repository):
        with pytest.raises(NotFoundError):
            repository.get_manga("alpha", "missing")

    def test_refresh_keeps_favorite(self, repository, favorite):
        """Should keep favorite flag when metadata is refreshed."""
        favorite("alpha", "M1")
        repository.upsert_manga("alpha", MangaSummary(provider_id="M1", title="Renamed"))
        manga = repository.get_manga("alpha", "M1")
        assert manga.favorite is True
        assert manga.title == "Renamed"

    def test_summary_does_not_erase_detail(self, repository):
        """A search result must not wipe author/genres from an earlier detail fetch."""
        repository.upsert_manga(
            "alpha",
            MangaDetail(
                provider_id="M1",
                title="One",
                author="Someone",
                genres=["Action"],
                status=MangaStatus.ONGOING,
            ),
        )
        repository.upsert_manga("alpha", MangaSummary(provider_id="M1", title="One"))
        manga = repository.get_manga("alpha", "M1")
        assert manga.author == "Someone"
        assert manga.genres == ["Action"]
        assert manga.status == MangaStatus.ONGOING

    def test_list_by_source(self, repository):
        repository.upsert_manga("alpha", MangaSummary(provider_id="M1", title="One"))
        repository.upsert_manga("beta", MangaSummary(provider_id="M1", title="Other"))
        assert [m.title for m in repository.get_manga_list("alpha")] == ["One"]
        assert len(repository.get_manga_list()) == 2


class TestFavorites:
    """Library membership."""

    def test_grouped_by_source_in_insertion_order(self, favorite, repository):
        favorite("alpha", "M2")
        favorite("beta", "B1")
        favorite("alpha", "M1")

        grouped = repository.get_favorites()

        assert list(grouped) == ["alpha", "beta"]
        assert [m.provider_id for m in grouped["alpha"]] == ["M2", "M1"]

    def test_unfavorite_removes_from_library(self, favorite, repository):
        favorite("alpha", "M1")
        repository.set_favorite("alpha", "M1", False)
        assert repository.get_favorites() == {}
        assert repository.get_manga("alpha", "M1").favorite is False

    def test_favorite_unknown_manga_raises(self, repository):
        with pytest.raises(NotFoundError):
            repository.set_favorite("alpha", "nope", True)


class TestChapterUpsert:
    """Reconciliation of remote chapter lists."""

    @pytest.fixture
    def manga(self, repository):
        return repository.upsert_manga("alpha", MangaSummary(provider_id="M1", title="One"))

    def test_idempotent(self, repository, manga):
        """Upserting the same list twice creates nothing the second time."""
        first = repository.upsert_chapters(manga, summaries("c1", "c2", "c3"))
        second = repository.upsert_chapters(manga, summaries("c1", "c2", "c3"))

        assert [c.provider_id for c in first.created] == ["c1", "c2", "c3"]
        assert second.created == []
        assert [c.provider_id for c in second.unchanged] == ["c1", "c2", "c3"]
        assert len(repository.get_chapters(manga)) == 3

    def test_missing_remote_chapters_are_retained(self, repository, manga):
        """Chapters absent from a later list are never deleted."""
        repository.upsert_chapters(manga, summaries("c1", "c2", "c3"))
        result = repository.upsert_chapters(manga, summaries("c3", "c4"))

        assert [c.provider_id for c in result.created] == ["c4"]
        ids = {c.provider_id for c in repository.get_chapters(manga)}
        assert ids == {"c1", "c2", "c3", "c4"}

    def test_new_chapters_positioned_after_existing(self, repository, manga):
        repository.upsert_chapters(manga, summaries("c1", "c2"))
        repository.upsert_chapters(manga, summaries("c0", "c1", "c2", "c3"))

        positions = {c.provider_id: c.position for c in repository.get_chapters(manga)}
        assert positions["c1"] < positions["c2"] < positions["c0"] < positions["c3"]

    def test_matched_chapters_untouched(self, repository, manga):
        """A changed title upstream does not modify a stored chapter."""
        repository.upsert_chapters(manga, [ChapterSummary(provider_id="c1", title="Old")])
        repository.upsert_chapters(manga, [ChapterSummary(provider_id="c1", title="New")])
        assert repository.get_chapter("alpha", "M1", "c1").title == "Old"

    def test_duplicate_ids_in_remote_list(self, repository, manga):
        result = repository.upsert_chapters(manga, summaries("c1", "c1", "c2"))
        assert [c.provider_id for c in result.created] == ["c1", "c2"]

    def test_display_order_prefers_published_at(self, repository, manga):
        repository.upsert_chapters(
            manga,
            summaries("late", "early", published={"late": utc(2024, 5), "early": utc(2024, 1)}),
        )
        repository.upsert_chapters(manga, summaries("undated"))

        order = [c.provider_id for c in repository.get_chapters(manga)]
        assert order == ["early", "late", "undated"]

    def test_adjacent_chapters(self, repository, manga):
        repository.upsert_chapters(manga, summaries("c1", "c2", "c3"))
        middle = repository.get_chapter("alpha", "M1", "c2")

        prev_chapter, next_chapter = repository.get_adjacent_chapters(middle)

        assert prev_chapter.provider_id == "c1"
        assert next_chapter.provider_id == "c3"

    def test_unknown_chapter_raises(self, repository, manga):
        with pytest.raises(NotFoundError):
            repository.get_chapter("alpha", "M1", "nope")


class TestPages:
    """Page lists are replaced as a whole."""

    @pytest.fixture
    def chapter(self, repository):
        manga = repository.upsert_manga("alpha", MangaSummary(provider_id="M1", title="One"))
        repository.upsert_chapters(manga, summaries("c1"))
        return repository.get_chapter("alpha", "M1", "c1")

    def test_indexes_contiguous(self, repository, chapter):
        pages = repository.upsert_pages(chapter, [PageRef(url=f"https://img/{i}") for i in range(4)])
        assert [p.index for p in pages] == [0, 1, 2, 3]
        assert repository.get_pages(chapter) == pages

    def test_replacement_drops_old_pages(self, repository, chapter):
        repository.upsert_pages(chapter, [PageRef(url=f"https://img/a{i}") for i in range(5)])
        repository.upsert_pages(chapter, [PageRef(url=f"https://img/b{i}") for i in range(3)])

        pages = repository.get_pages(chapter)
        assert [p.url for p in pages] == ["https://img/b0", "https://img/b1", "https://img/b2"]

    def test_readers_never_see_a_mix(self, repository, chapter):
        """Concurrent readers observe either the old or the new complete set."""
        set_a = [PageRef(url=f"https://img/a{i}") for i in range(5)]
        set_b = [PageRef(url=f"https://img/b{i}") for i in range(3)]
        repository.upsert_pages(chapter, set_a)
        stop = threading.Event()
        observed = []

        def reader():
            while not stop.is_set():
                observed.append([p.url for p in repository.get_pages(chapter)])

        thread = threading.Thread(target=reader)
        thread.start()
        for i in range(20):
            repository.upsert_pages(chapter, set_b if i % 2 == 0 else set_a)
        stop.set()
        thread.join()

        expected = ([p.url for p in set_a], [p.url for p in set_b])
        assert observed
        assert all(urls in expected for urls in observed)

    def test_ids_with_separator_keep_separate_pages(self, repository):
        """Chapter '2' of manga 'x:1' and chapter '1:2' of manga 'x' are distinct."""
        first_manga = repository.upsert_manga("alpha", MangaSummary(provider_id="x:1", title="X1"))
        second_manga = repository.upsert_manga("alpha", MangaSummary(provider_id="x", title="X"))
        repository.upsert_chapters(first_manga, summaries("2"))
        repository.upsert_chapters(second_manga, summaries("1:2"))
        first = repository.get_chapter("alpha", "x:1", "2")
        second = repository.get_chapter("alpha", "x", "1:2")

        repository.upsert_pages(first, [PageRef(url="https://a/1.jpg")])
        repository.upsert_pages(second, [PageRef(url="https://b/1.jpg"), PageRef(url="https://b/2.jpg")])

        assert [p.url for p in repository.get_pages(first)] == ["https://a/1.jpg"]
        assert [c.provider_id for c in repository.get_chapters(first_manga)] == ["2"]


class TestUpdates:
    """Update rows."""

    def test_only_for_favorites(self, repository):
        manga = repository.upsert_manga("alpha", MangaSummary(provider_id="M1", title="One"))
        created = repository.upsert_chapters(manga, summaries("c1")).created
        assert repository.add_updates(manga, created) == []
        assert repository.get_updates() == []

    def test_ids_monotonic_and_newest_first(self, repository, favorite):
        manga = favorite("alpha", "M1")
        created = repository.upsert_chapters(manga, summaries("c1", "c2")).created

        updates = repository.add_updates(manga, created)

        assert updates[0].id < updates[1].id
        assert [u.chapter_id for u in repository.get_updates()] == ["c2", "c1"]

    def test_mark_seen_and_prune(self, repository, favorite):
        manga = favorite("alpha", "M1")
        created = repository.upsert_chapters(manga, summaries("c1", "c2")).created
        first, second = repository.add_updates(manga, created)

        assert repository.mark_updates_seen([first.id]) == 1
        assert [u.id for u in repository.get_updates(unseen_only=True)] == [second.id]
        assert repository.prune_seen_updates() == 1
        assert [u.id for u in repository.get_updates()] == [second.id]

    def test_limit(self, repository, favorite):
        manga = favorite("alpha", "M1")
        created = repository.upsert_chapters(manga, summaries("c1", "c2", "c3")).created
        repository.add_updates(manga, created)
        assert len(repository.get_updates(limit=2)) == 2


class TestPurgeSource:
    def test_purge_keeps_history(self, repository, history, favorite):
        manga = favorite("alpha", "M1", "c1")
        chapter = repository.get_chapter("alpha", "M1", "c1")
        repository.add_updates(manga, [chapter])
        history.record_progress(chapter, 0, page_count=1)
        favorite("beta", "B1")

        repository.purge_source("alpha")

        with pytest.raises(NotFoundError):
            repository.get_manga("alpha", "M1")
        assert repository.get_updates() == []
        assert list(repository.get_favorites()) == ["beta"]
        assert history.has_history(chapter.key)
