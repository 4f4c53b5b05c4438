"""Unit tests for search, library-state checks and mutations."""
import asyncio
from datetime import date

import pytest

from conftest import FakeArrClient, movie_row
from requestarr import library
from requestarr.backends import LIDARR, RADARR, READARR, SONARR, AddContext
from requestarr.embeds import OutcomeKind
from requestarr.errors import (
    ApiError,
    InvalidQueryError,
    LookupDependencyError,
    MutationError,
    ResolverError,
    SchemaError,
)
from requestarr.models import LibraryEntity, SearchResult

CTX = AddContext(root_folder_path="/movies", quality_profile_id=4)


def run(coro):
    return asyncio.run(coro)


class TestSearch:
    """Tests for library.search."""

    def test_numeric_query_is_id_qualified(self):
        """Test a numeric query goes out as tmdb:<digits>."""
        client = FakeArrClient({("GET", "/movie/lookup"): [movie_row(27205, "Inception", 2010)]})
        results = run(library.search(client, RADARR, "27205"))
        assert client.calls[0][2] == {"term": "tmdb:27205"}
        assert [r.title for r in results] == ["Inception"]

    def test_free_text_is_sent_as_is(self):
        """Test titles are not prefixed."""
        client = FakeArrClient({("GET", "/movie/lookup"): []})
        assert run(library.search(client, RADARR, "  The Matrix ")) == []
        assert client.calls[0][2] == {"term": "The Matrix"}

    def test_overlong_numeric_id_is_invalid(self):
        """Test numbers longer than a catalog ID are rejected before any request."""
        client = FakeArrClient()
        with pytest.raises(InvalidQueryError):
            run(library.search(client, RADARR, "123456789"))
        assert client.calls == []

    def test_lidarr_uuid_is_qualified(self):
        """Test MusicBrainz IDs are sent with the lidarr prefix."""
        mbid = "056e4f3e-d505-4dad-8ec1-d04f521cbb56"
        client = FakeArrClient({("GET", "/artist/lookup"): []})
        run(library.search(client, LIDARR, mbid))
        assert client.calls[0][2] == {"term": f"lidarr:{mbid}"}

    def test_backend_order_is_preserved(self):
        """Test results come back in backend order."""
        rows = [movie_row(3, "C"), movie_row(1, "A"), movie_row(2, "B")]
        client = FakeArrClient({("GET", "/movie/lookup"): rows})
        assert [r.external_id for r in run(library.search(client, RADARR, "x"))] == ["3", "1", "2"]

    def test_transport_failure_is_resolver_error(self):
        """Test backend failures never produce partial lists."""
        client = FakeArrClient({("GET", "/movie/lookup"): ApiError("down", status=502)})
        with pytest.raises(ResolverError):
            run(library.search(client, RADARR, "Alien"))

    def test_malformed_row_is_resolver_error(self):
        """Test a row without a title is rejected at the schema boundary."""
        client = FakeArrClient({("GET", "/movie/lookup"): [movie_row(1, "Ok"), {"tmdbId": 2}]})
        with pytest.raises(ResolverError):
            run(library.search(client, RADARR, "Alien"))


class TestFindExisting:
    """Tests for duplicate detection."""

    def test_matches_on_external_id(self):
        """Test equal TMDB IDs count as present."""
        candidate = SearchResult.from_json(movie_row(603, "The Matrix"), "tmdbId")
        client = FakeArrClient({("GET", "/movie"): [{"id": 1, "title": "Matrix", "tmdbId": 603, "monitored": True}]})
        existing = run(library.find_existing(client, RADARR, candidate))
        assert existing.exists and existing.entity.id == 1

    def test_matches_on_slug(self):
        """Test equal slugs count as present even with different IDs."""
        candidate = SearchResult.from_json(movie_row(603, "The Matrix"), "tmdbId")
        client = FakeArrClient({("GET", "/movie"): [{"id": 1, "title": "x", "tmdbId": 1, "titleSlug": candidate.slug}]})
        assert run(library.find_existing(client, RADARR, candidate)).exists

    def test_slugs_compare_exactly(self):
        """Test title slugs differing only in case are different items."""
        candidate = RADARR.parse_result(movie_row(603, "The Matrix", titleSlug="the-matrix-603"))
        client = FakeArrClient({("GET", "/movie"): [{"id": 1, "title": "x", "tmdbId": 1, "titleSlug": "The-Matrix-603"}]})
        assert candidate.slug == "the-matrix-603"
        assert not run(library.find_existing(client, RADARR, candidate)).exists

    def test_no_match_in_empty_library(self):
        """Test an empty collection means not present."""
        candidate = SearchResult.from_json(movie_row(603, "The Matrix"), "tmdbId")
        client = FakeArrClient({("GET", "/movie"): []})
        assert not run(library.find_existing(client, RADARR, candidate)).exists

    def test_lidarr_matches_name_case_insensitively(self):
        """Test artist names act as the Lidarr slug."""
        candidate = LIDARR.parse_result({"artistName": "Daft Punk", "foreignArtistId": "a"})
        client = FakeArrClient({("GET", "/artist"): [{"id": 5, "artistName": "DAFT PUNK", "foreignArtistId": "b"}]})
        assert run(library.find_existing(client, LIDARR, candidate)).exists


class TestAddContext:
    """Tests for root folder / profile resolution."""

    def test_resolves_first_root_and_profile(self):
        """Test the first root folder and quality profile are used."""
        client = FakeArrClient({
            ("GET", "/rootfolder"): [{"path": "/a"}, {"path": "/b"}],
            ("GET", "/qualityprofile"): [{"id": 7, "name": "Any"}],
        })
        assert run(library.resolve_add_context(client, RADARR)) == AddContext("/a", 7)

    def test_missing_root_folder(self):
        """Test a backend without root folders is not configured."""
        client = FakeArrClient({("GET", "/rootfolder"): [], ("GET", "/qualityprofile"): [{"id": 1}]})
        with pytest.raises(LookupDependencyError) as info:
            run(library.resolve_add_context(client, RADARR))
        assert info.value.missing == "root folder"

    def test_readarr_needs_metadata_profile(self):
        """Test Readarr also resolves a metadata profile."""
        client = FakeArrClient({
            ("GET", "/rootfolder"): [{"path": "/books"}],
            ("GET", "/qualityprofile"): [{"id": 1}],
            ("GET", "/metadataprofile"): [{"id": 9, "name": "Standard"}],
        })
        assert run(library.resolve_add_context(client, READARR)).metadata_profile_id == 9


class TestGrab:
    """Tests for library.grab."""

    def candidate(self):
        return SearchResult.from_json(movie_row(603, "The Matrix"), "tmdbId")

    def test_adds_when_absent(self):
        """Test a new item is POSTed with the resolved context."""
        client = FakeArrClient({("GET", "/movie"): [], ("POST", "/movie"): {"id": 1}})
        outcome = run(library.grab(client, RADARR, self.candidate(), CTX))
        assert outcome.kind is OutcomeKind.ADDED
        (_, path, _, body), = client.mutations
        assert path == "/movie"
        assert body["tmdbId"] == 603
        assert body["qualityProfileId"] == 4
        assert body["rootFolderPath"] == "/movies"
        assert body["monitored"] is True

    def test_enables_monitoring_when_unmonitored(self):
        """Test an unmonitored duplicate is switched to monitored instead of re-added."""
        lib = [{"id": 12, "title": "The Matrix", "tmdbId": 603, "monitored": False}]
        client = FakeArrClient({("GET", "/movie"): lib, ("PUT", "/movie/12"): {}})
        outcome = run(library.grab(client, RADARR, self.candidate(), CTX))
        assert outcome.kind is OutcomeKind.MONITORED
        (method, path, _, body), = client.mutations
        assert (method, path) == ("PUT", "/movie/12")
        assert body["monitored"] is True

    def test_already_present_makes_no_mutation(self):
        """Test a monitored duplicate is reported and left alone."""
        lib = [{"id": 12, "title": "The Matrix", "tmdbId": 603, "monitored": True}]
        client = FakeArrClient({("GET", "/movie"): lib})
        outcome = run(library.grab(client, RADARR, self.candidate(), CTX))
        assert outcome.kind is OutcomeKind.ALREADY_PRESENT
        assert client.mutations == []

    def test_add_failure_is_transient(self):
        """Test a rejected POST becomes a transient failure outcome."""
        client = FakeArrClient({("GET", "/movie"): [], ("POST", "/movie"): ApiError("bad", status=400)})
        outcome = run(library.grab(client, RADARR, self.candidate(), CTX))
        assert outcome.kind is OutcomeKind.TRANSIENT_FAILURE

    def test_sonarr_monitor_skips_specials(self):
        """Test Sonarr monitoring covers every season but season 0."""
        candidate = SearchResult.from_json({"title": "Show", "tvdbId": 77, "titleSlug": "show"}, "tvdbId")
        lib = [{"id": 3, "title": "Show", "tvdbId": 77, "monitored": False,
                "seasons": [{"seasonNumber": 0, "monitored": False}, {"seasonNumber": 1, "monitored": False}]}]
        client = FakeArrClient({("GET", "/series"): lib, ("PUT", "/series/3"): {}})
        run(library.grab(client, SONARR, candidate, CTX))
        body = client.mutations[0][3]
        assert [s["monitored"] for s in body["seasons"]] == [False, True]


class TestRemove:
    """Tests for removal by title."""

    def test_exact_title_is_deleted_with_files(self):
        """Test removal deletes files and adds no import-list exclusion."""
        client = FakeArrClient({("GET", "/movie"): [{"id": 8, "title": "The Matrix", "tmdbId": 603}], ("DELETE", "/movie/8"): None})
        outcome = run(library.remove_by_title(client, RADARR, "The Matrix"))
        assert outcome.kind is OutcomeKind.REMOVED
        (_, path, params, _), = client.mutations
        assert path == "/movie/8"
        assert params == {"deleteFiles": True, "addImportListExclusion": False}

    def test_title_match_is_case_sensitive(self):
        """Test a differently-cased title is not found and nothing is deleted."""
        client = FakeArrClient({("GET", "/movie"): [{"id": 8, "title": "The Matrix"}]})
        outcome = run(library.remove_by_title(client, RADARR, "the matrix"))
        assert outcome.kind is OutcomeKind.NOT_FOUND
        assert client.calls_to("DELETE") == []

    def test_delete_failure_raises_mutation_error(self):
        """Test library.remove wraps backend failures."""
        client = FakeArrClient({("DELETE", "/movie/8"): ApiError("gone", status=404)})
        with pytest.raises(MutationError) as info:
            run(library.remove(client, RADARR, LibraryEntity(id=8, title="x")))
        assert info.value.status == 404


class TestCalendar:
    """Tests for the calendar read."""

    def test_passes_window_and_backend_params(self):
        """Test the date range and include flags are sent."""
        client = FakeArrClient({("GET", "/calendar"): [{"title": "Ep"}, "junk"]})
        rows = run(library.calendar(client, SONARR, date(2024, 5, 1), date(2024, 5, 15)))
        assert rows == [{"title": "Ep"}]
        assert client.calls[0][2] == {"start": "2024-05-01", "end": "2024-05-15", "includeSeries": True}

    def test_non_list_is_schema_error(self):
        """Test a non-array calendar is rejected."""
        client = FakeArrClient({("GET", "/calendar"): {"oops": 1}})
        with pytest.raises(SchemaError):
            run(library.calendar(client, RADARR, date(2024, 5, 1), date(2024, 5, 2)))

    def test_upcoming_window(self):
        """Test the default window spans two weeks."""
        assert library.upcoming_window(14, date(2024, 12, 25)) == (date(2024, 12, 25), date(2025, 1, 8))
