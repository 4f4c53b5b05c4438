"""
Search, library-state and mutation calls against one *arr backend.

Every function takes the backend's client explicitly; nothing here keeps state between calls.
"""
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from .api import SecureApiClient, sanitize_search_query
from .backends import AddContext, Backend
from .embeds import Outcome, OutcomeKind
from .errors import (
    ApiError,
    InvalidQueryError,
    LookupDependencyError,
    MutationError,
    ResolverError,
    SchemaError,
)
from .models import LibraryEntity, QualityProfile, RootFolder, SearchResult, parse_list

logger = logging.getLogger(__name__)

# Removal policy: files go with the entity, no import-list exclusion is created
DELETE_FILES = True
ADD_IMPORT_LIST_EXCLUSION = False


@dataclass(frozen=True)
class Existing:
    exists: bool
    entity: Optional[LibraryEntity] = None


async def search(client: SecureApiClient, backend: Backend, raw_query: str) -> List[SearchResult]:
    query = sanitize_search_query(raw_query)
    term = backend.query_term(query)
    if term is None:
        raise InvalidQueryError(f"The provided {backend.id_label} is invalid.")
    try:
        data = await client.get(f"/{backend.entity}/lookup", params={"term": term})
        return parse_list(data, backend.parse_result)
    except (ApiError, SchemaError) as e:
        logger.error("%s lookup failed for %r: %s", backend.label, raw_query, e)
        raise ResolverError(backend.label, raw_query, e) from e


async def list_entities(client: SecureApiClient, backend: Backend) -> List[LibraryEntity]:
    data = await client.get(f"/{backend.entity}")
    return parse_list(data, backend.parse_entity)


async def find_existing(client: SecureApiClient, backend: Backend, candidate: SearchResult) -> Existing:
    for entity in await list_entities(client, backend):
        if backend.matches(entity, candidate):
            return Existing(True, entity)
    return Existing(False)


async def find_by_title(client: SecureApiClient, backend: Backend, title: str) -> Optional[LibraryEntity]:
    """Exact, case-sensitive title match against the library."""
    wanted = title.strip()
    for entity in await list_entities(client, backend):
        if entity.title == wanted:
            return entity
    return None


async def _first(client: SecureApiClient, path: str, parser, backend: Backend, missing: str):
    try:
        rows = parse_list(await client.get(path), parser)
    except SchemaError as e:
        logger.warning("%s returned a malformed %s list: %s", backend.label, missing, e)
        rows = []
    if not rows:
        raise LookupDependencyError(backend.label, missing)
    return rows[0]


async def resolve_add_context(client: SecureApiClient, backend: Backend) -> AddContext:
    """Root folder and profiles needed by add. Raises LookupDependencyError when one is missing."""
    root: RootFolder = await _first(client, "/rootfolder", RootFolder.from_json, backend, "root folder")
    profile: QualityProfile = await _first(client, "/qualityprofile", QualityProfile.from_json, backend, "quality profile")
    metadata_id = None
    if backend.needs_metadata_profile:
        metadata: QualityProfile = await _first(client, "/metadataprofile", QualityProfile.from_json, backend, "metadata profile")
        metadata_id = metadata.id
    return AddContext(root_folder_path=root.path, quality_profile_id=profile.id, metadata_profile_id=metadata_id)


async def add(client: SecureApiClient, backend: Backend, candidate: SearchResult, ctx: AddContext) -> Any:
    payload = backend.build_add_payload(candidate, ctx)
    try:
        return await client.post(f"/{backend.entity}", payload)
    except ApiError as e:
        raise MutationError(backend.label, "add", e.status, e) from e


async def enable_monitoring(client: SecureApiClient, backend: Backend, entity: LibraryEntity) -> Any:
    payload = backend.build_monitor_payload(entity)
    try:
        return await client.put(f"/{backend.entity}/{entity.id}", payload)
    except ApiError as e:
        raise MutationError(backend.label, "monitor", e.status, e) from e


async def remove(client: SecureApiClient, backend: Backend, entity: LibraryEntity) -> Any:
    params = {"deleteFiles": DELETE_FILES, "addImportListExclusion": ADD_IMPORT_LIST_EXCLUSION}
    try:
        return await client.delete(f"/{backend.entity}/{entity.id}", params=params)
    except ApiError as e:
        raise MutationError(backend.label, "remove", e.status, e) from e


async def grab(client: SecureApiClient, backend: Backend, candidate: SearchResult, ctx: AddContext, user: Any = None) -> Outcome:
    """Add a candidate, or re-monitor it if the library already has it unmonitored."""
    noun = backend.noun.capitalize()
    try:
        existing = await find_existing(client, backend, candidate)
    except (ApiError, SchemaError) as e:
        logger.error("%s library fetch failed: %s", backend.label, e)
        return Outcome(OutcomeKind.TRANSIENT_FAILURE, "Error", f"Failed to check the {backend.label} library. Please try again later.")

    if existing.exists and existing.entity is not None:
        if existing.entity.monitored:
            return Outcome(
                OutcomeKind.ALREADY_PRESENT,
                "Already Present",
                f"The {backend.noun} **{candidate.title}** is already in the {backend.label} library!",
            )
        try:
            await enable_monitoring(client, backend, existing.entity)
        except MutationError as e:
            logger.error("Error enabling monitoring in %s: %s", backend.label, e)
            return Outcome(OutcomeKind.TRANSIENT_FAILURE, "Error", f"Failed to monitor **{candidate.title}** in {backend.label}. Please try again later.")
        logger.info("%s -> %s -> monitoring enabled (%s)", user, candidate.title, backend.label)
        return Outcome(
            OutcomeKind.MONITORED,
            "Monitoring Enabled",
            f"The {backend.noun} **{candidate.title}** is already in the {backend.label} library and is now set to monitored!",
        )

    try:
        await add(client, backend, candidate, ctx)
    except MutationError as e:
        logger.error("Error adding %s to %s: %s", backend.noun, backend.label, e)
        return Outcome(OutcomeKind.TRANSIENT_FAILURE, "Error", f"Failed to add **{candidate.title}** to {backend.label}. Please try again later.")
    logger.info("%s -> %s -> add (%s)", user, candidate.title, backend.label)
    return Outcome(OutcomeKind.ADDED, f"{noun} Added", f"Successfully added **{candidate.title}** to {backend.label}!")


async def remove_by_title(client: SecureApiClient, backend: Backend, title: str, user: Any = None) -> Outcome:
    if not title or not title.strip():
        return Outcome(OutcomeKind.INVALID_QUERY, "Invalid Query", f"Please provide the {backend.noun} title to remove.")
    try:
        found = await find_by_title(client, backend, title)
    except (ApiError, SchemaError) as e:
        logger.error("%s library fetch failed: %s", backend.label, e)
        return Outcome(OutcomeKind.TRANSIENT_FAILURE, "Error", f"Failed to remove {backend.noun} from {backend.label}. Please try again later.")
    if found is None:
        return Outcome(OutcomeKind.NOT_FOUND, "Not Found", f'No {backend.noun} found for "{title}" in {backend.label}.')
    try:
        await remove(client, backend, found)
    except MutationError as e:
        logger.error("Error removing %s from %s: %s", backend.noun, backend.label, e)
        return Outcome(OutcomeKind.TRANSIENT_FAILURE, "Error", f"Failed to remove {backend.noun} from {backend.label}. Please try again later.")
    logger.info("%s -> %s -> remove (%s)", user, found.title, backend.label)
    return Outcome(
        OutcomeKind.REMOVED,
        f"{backend.noun.capitalize()} Removed",
        f"{backend.noun.capitalize()} **{found.title}** has been removed from {backend.label}.",
    )


async def calendar(client: SecureApiClient, backend: Backend, start: date, end: date) -> List[Dict[str, Any]]:
    params: Dict[str, Any] = {"start": start.isoformat(), "end": end.isoformat()}
    params.update(backend.calendar_params)
    data = await client.get("/calendar", params=params)
    if data is None:
        return []
    if not isinstance(data, list):
        raise SchemaError("Calendar response is not a list")
    return [row for row in data if isinstance(row, dict)]


def upcoming_window(days: int = 14, today: Optional[date] = None):
    today = today or date.today()
    return today, today + timedelta(days=days)
