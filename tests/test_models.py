"""
Tests for models/models.py, models/report.py and utils/versions.py

Coverage:
- Identity keys
- Source key and version validation
- Timestamps normalized to UTC
- Status parsing
- Sync report state derivation
- Version comparison
"""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from models.models import (
    Chapter,
    ChapterSummary,
    ExtensionDescriptor,
    ManifestEntry,
    Manga,
    MangaStatus,
    SourceState,
    chapter_key,
    manga_key,
)
from models.report import FailureScope, MangaResult, SourceResult, SyncFailure, SyncReport, SyncState
from utils.versions import compare_versions, parse_version


class TestIdentity:
    def test_keys(self):
        assert manga_key("alpha", "M1") == "alpha:M1"
        assert chapter_key("alpha:M1", "c3") == "alpha:M1:c3"

    def test_model_keys(self):
        manga = Manga(source_key="alpha", provider_id="M1", title="One")
        chapter = Chapter(source_key="alpha", manga_id="M1", provider_id="c3")
        assert manga.key == "alpha:M1"
        assert chapter.manga_key == manga.key
        assert chapter.key == "alpha:M1:c3"

    def test_separator_in_provider_ids(self):
        """Ids containing ':' never produce the same key for different chapters."""
        first = Chapter(source_key="alpha", manga_id="x:1", provider_id="2")
        second = Chapter(source_key="alpha", manga_id="x", provider_id="1:2")
        assert first.key != second.key
        assert first.manga_key != second.manga_key

    def test_escaped_percent_stays_distinct(self):
        assert manga_key("alpha", "a%3Ab") != manga_key("alpha", "a:b")

    def test_paths_kept_readable(self):
        assert manga_key("mangasee", "/manga/One-Piece") == "mangasee:/manga/One-Piece"


class TestValidation:
    def test_source_key_pattern(self):
        with pytest.raises(ValidationError):
            ManifestEntry(key="bad key!", name="Bad", version="1.0.0", path="x.py")

    def test_manifest_version_must_parse(self):
        with pytest.raises(ValidationError):
            ManifestEntry(key="alpha", name="Alpha", version="1.x", path="x.py")

    def test_descriptor_is_frozen(self):
        descriptor = ExtensionDescriptor(key="alpha", name="Alpha", version="1.0.0")
        with pytest.raises(ValidationError):
            descriptor.version = "2.0.0"

    def test_descriptor_active_states(self):
        descriptor = ExtensionDescriptor(key="alpha", name="Alpha", version="1.0.0")
        assert descriptor.is_active
        assert descriptor.model_copy(update={"state": SourceState.UPDATE_AVAILABLE}).is_active
        assert not descriptor.model_copy(update={"state": SourceState.DISABLED}).is_active

    def test_naive_timestamp_treated_as_utc(self):
        summary = ChapterSummary(provider_id="c1", published_at=datetime(2024, 1, 1, 12))
        assert summary.published_at.tzinfo is not None
        assert summary.published_at.utcoffset() == timedelta(0)

    def test_offset_timestamp_converted(self):
        tz = timezone(timedelta(hours=9))
        summary = ChapterSummary(provider_id="c1", published_at=datetime(2024, 1, 1, 9, tzinfo=tz))
        assert summary.published_at == datetime(2024, 1, 1, 0, tzinfo=timezone.utc)


class TestMangaStatus:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("Ongoing", MangaStatus.ONGOING),
            ("complete", MangaStatus.COMPLETED),
            ("hiatus", MangaStatus.UNKNOWN),
            (None, MangaStatus.UNKNOWN),
        ],
    )
    def test_parse(self, raw, expected):
        assert MangaStatus.parse(raw) == expected


class TestSyncReport:
    def failure(self, kind="rate_limited"):
        return SyncFailure(scope=FailureScope.MANGA, source_key="alpha", manga_key="alpha:M2", kind=kind)

    def test_completed(self):
        report = SyncReport(sources=[SourceResult(source_key="alpha")])
        report.finish()
        assert report.state == SyncState.COMPLETED
        assert report.finished_at is not None

    def test_partially_failed(self):
        report = SyncReport(sources=[SourceResult(source_key="alpha", failures=[self.failure()])])
        report.finish()
        assert report.state == SyncState.PARTIALLY_FAILED
        assert report.failure_for("alpha:M2").kind == "rate_limited"
        assert report.failure_for("alpha:M1") is None

    def test_cancelled_with_failures_is_partially_failed(self):
        report = SyncReport(sources=[SourceResult(source_key="alpha", failures=[self.failure()])])
        report.finish(cancelled=True)
        assert report.state == SyncState.PARTIALLY_FAILED
        assert report.cancelled is True

    def test_cancelled_without_failures(self):
        report = SyncReport(sources=[SourceResult(source_key="alpha", skipped=["alpha:M2"])])
        report.finish(cancelled=True)
        assert report.state == SyncState.CANCELLED
        assert report.cancelled is True

    def test_counts(self):
        report = SyncReport(
            sources=[
                SourceResult(
                    source_key="alpha",
                    mangas=[
                        MangaResult(manga_key="alpha:M1", title="One", new_chapters=["c3"], update_ids=[7]),
                        MangaResult(manga_key="alpha:M2", title="Two", new_chapters=["x1", "x2"], update_ids=[8, 9]),
                    ],
                )
            ]
        )
        assert report.new_chapter_count == 3
        assert report.update_ids == [7, 8, 9]


class TestVersions:
    def test_parse(self):
        assert parse_version("v1.2.0") == (1, 2)
        assert parse_version("10") == (10,)

    @pytest.mark.parametrize("bad", ["", "1.a", "1..2", "-1"])
    def test_invalid(self, bad):
        with pytest.raises(ValueError):
            parse_version(bad)

    def test_compare(self):
        assert compare_versions("1.10.0", "1.9.9") == 1
        assert compare_versions("1.2", "1.2.0") == 0
        assert compare_versions("0.9", "1.0") == -1
