"""
State Document Codec

Converts between the in-memory AppState and the persisted JSON layout:

    {"state": {"bases": [...], "blocks": [...], ..., "undoHistory": [...]},
     "version": 0}

The load path is responsible for reviving every date-bearing field from
its serialized string form. Date-only fields accept either 'YYYY-MM-DD' or
a full ISO-8601 timestamp (older clients wrote timestamps); missing dates
and timestamps default to today/now.

The load path also migrates documents from before owners and categories
were entities: plain name lists become entities and row references are
rewritten from names to the new ids.
"""

import json
from typing import Any, Optional

from pydantic.alias_generators import to_snake

from budgetblocks.dates import parse_date_input, parse_timestamp, today, utc_now
from budgetblocks.models.entities import (
    CATEGORY_COLORS,
    Base,
    Block,
    Category,
    FixedBill,
    Owner,
    PayPeriodBand,
    PaySchedule,
    TemplatePreferences,
    new_id,
)
from budgetblocks.models.state import AppState
from budgetblocks.models.undo import UndoHistoryItem


DOCUMENT_VERSION = 0

# (document key, model) for id-keyed collections
ENTITY_COLLECTIONS = (
    ("bases", Base),
    ("blocks", Block),
    ("bands", PayPeriodBand),
    ("library", Block),
    ("schedules", PaySchedule),
    ("fixedBills", FixedBill),
    ("ownerEntities", Owner),
    ("categoryEntities", Category),
)

LIST_COLLECTIONS = (
    "owners",
    "categories",
    "vendors",
    "institutions",
    "baseTypes",
    "flowTypes",
)


# =============================================================================
# REVIVER
# =============================================================================

def _get(data: dict, key: str) -> tuple[Optional[str], Any]:
    """Look a field up by its camelCase or snake_case name."""
    for candidate in (key, to_snake(key)):
        if candidate in data:
            return candidate, data[candidate]
    return None, None


def _revive_date(data: dict, key: str, required: bool) -> None:
    found, value = _get(data, key)
    if value:
        data[found] = parse_date_input(value)
    elif required:
        data[found or key] = today()
    elif found is not None:
        data[found] = None


def _revive_timestamp(data: dict, key: str) -> None:
    found, value = _get(data, key)
    data[found or key] = parse_timestamp(value) if value else utc_now()


def revive_row(raw: dict) -> dict:
    row = dict(raw)
    _revive_date(row, "date", required=True)
    return row


def revive_block(raw: dict) -> dict:
    block = dict(raw)
    _revive_date(block, "date", required=True)
    key, rows = _get(block, "rows")
    block[key or "rows"] = [revive_row(r) for r in (rows or [])]

    key, recurrence = _get(block, "recurrence")
    if recurrence:
        recurrence = dict(recurrence)
        _revive_date(recurrence, "startDate", required=True)
        _revive_date(recurrence, "endDate", required=False)
        _revive_date(recurrence, "anchorDate", required=False)
        block[key] = recurrence
    elif key is not None:
        block[key] = None

    _revive_timestamp(block, "createdAt")
    _revive_timestamp(block, "updatedAt")
    return block


def revive_base(raw: dict) -> dict:
    base = dict(raw)
    _revive_timestamp(base, "createdAt")
    _revive_timestamp(base, "updatedAt")
    return base


def revive_band(raw: dict) -> dict:
    band = dict(raw)
    _revive_date(band, "startDate", required=True)
    _revive_date(band, "endDate", required=True)
    return band


def revive_schedule(raw: dict) -> dict:
    schedule = dict(raw)
    _revive_date(schedule, "anchorDate", required=False)
    _revive_timestamp(schedule, "createdAt")
    return schedule


def revive_fixed_bill(raw: dict) -> dict:
    bill = dict(raw)
    _revive_timestamp(bill, "createdAt")
    _revive_timestamp(bill, "updatedAt")
    return bill


def revive_named(raw: dict) -> dict:
    """Owners and categories."""
    entity = dict(raw)
    _revive_timestamp(entity, "createdAt")
    return entity


REVIVERS = {
    "bases": revive_base,
    "blocks": revive_block,
    "bands": revive_band,
    "library": revive_block,
    "schedules": revive_schedule,
    "fixedBills": revive_fixed_bill,
    "ownerEntities": revive_named,
    "categoryEntities": revive_named,
}

SNAPSHOT_REVIVERS = {
    "block": revive_block,
    "template": revive_block,
    "base": revive_base,
    "band": revive_band,
    "schedule": revive_schedule,
    "fixedBill": revive_fixed_bill,
    "owner": revive_named,
    "category": revive_named,
}


def revive_history_item(raw: dict) -> dict:
    item = dict(raw)
    entity = dict(item.get("entity") or {})
    reviver = SNAPSHOT_REVIVERS.get(entity.get("type"))
    if reviver and entity.get("data"):
        entity["data"] = reviver(entity["data"])
    key, blocks = _get(entity, "blocksSnapshot")
    if blocks:
        entity[key] = [revive_block(b) for b in blocks]
    item["entity"] = entity
    _revive_timestamp(item, "timestamp")
    return item


# =============================================================================
# LEGACY MIGRATION
# =============================================================================

def migrate_legacy_people(raw_state: dict) -> dict:
    """
    Turn plain owner/category name lists into entities.

    Entities are only created when the document has none; in every case
    row owner/category values that match an entity name are rewritten to
    that entity's id.
    """
    state = dict(raw_state)
    now = utc_now().isoformat()

    owner_key, owner_entities = _get(state, "ownerEntities")
    owner_entities = list(owner_entities or [])
    category_key, category_entities = _get(state, "categoryEntities")
    category_entities = list(category_entities or [])

    owner_map: dict[str, str] = {}
    category_map: dict[str, str] = {}

    if not owner_entities and state.get("owners"):
        for index, name in enumerate(state["owners"]):
            owner_id = new_id()
            owner_map[name] = owner_id
            owner_entities.append({"id": owner_id, "name": name, "order": index, "createdAt": now})
    else:
        owner_map = {o["name"]: o["id"] for o in owner_entities if "name" in o and "id" in o}

    if not category_entities and state.get("categories"):
        for index, name in enumerate(state["categories"]):
            category_id = new_id()
            category_map[name] = category_id
            category_entities.append({
                "id": category_id,
                "name": name,
                "color": CATEGORY_COLORS[index % len(CATEGORY_COLORS)],
                "order": index,
                "createdAt": now,
            })
    else:
        category_map = {c["name"]: c["id"] for c in category_entities if "name" in c and "id" in c}

    state[owner_key or "ownerEntities"] = owner_entities
    state[category_key or "categoryEntities"] = category_entities

    def migrate_row(row: dict) -> dict:
        row = dict(row)
        owner = row.get("owner")
        if isinstance(owner, str) and owner in owner_map:
            row["owner"] = owner_map[owner]
        category = row.get("category")
        if isinstance(category, str) and category in category_map:
            row["category"] = category_map[category]
        return row

    for collection in ("blocks", "library"):
        if state.get(collection):
            state[collection] = [
                {**block, "rows": [migrate_row(r) for r in (block.get("rows") or [])]}
                for block in state[collection]
            ]

    return state


# =============================================================================
# DOCUMENT <-> STATE
# =============================================================================

def state_from_raw(raw_state: dict, missing_as_empty: bool = False) -> AppState:
    """
    Build an AppState from the raw `state` object of a document.

    Args:
        raw_state: Parsed JSON object holding the collections
        missing_as_empty: Missing master lists become empty instead of
                          taking their defaults (import semantics)

    Raises:
        ValueError / pydantic.ValidationError: If an entity is malformed
    """
    if not isinstance(raw_state, dict):
        raise ValueError("State document must be a JSON object")

    raw_state = migrate_legacy_people(raw_state)
    values: dict[str, Any] = {}

    for key, model in ENTITY_COLLECTIONS:
        _, items = _get(raw_state, key)
        if items is None:
            items = []
        if not isinstance(items, list):
            raise ValueError(f"'{key}' must be a list")
        reviver = REVIVERS[key]
        entities = [model.model_validate(reviver(item)) for item in items]
        values[to_snake(key)] = {entity.id: entity for entity in entities}

    for key in LIST_COLLECTIONS:
        _, items = _get(raw_state, key)
        if items is None:
            if missing_as_empty:
                values[to_snake(key)] = []
            continue
        if not isinstance(items, list):
            raise ValueError(f"'{key}' must be a list")
        deduped = []
        for item in items:
            if isinstance(item, str) and item not in deduped:
                deduped.append(item)
        values[to_snake(key)] = deduped

    _, prefs = _get(raw_state, "templatePreferences")
    if prefs:
        values["template_preferences"] = TemplatePreferences.model_validate(prefs)

    _, group = _get(raw_state, "groupBasesByType")
    if group is not None:
        values["group_bases_by_type"] = bool(group)

    _, history = _get(raw_state, "undoHistory")
    if history:
        values["undo_history"] = [
            UndoHistoryItem.model_validate(revive_history_item(item)) for item in history
        ]

    return AppState(**values)


def _dump_entities(collection: dict) -> list[dict]:
    return [entity.model_dump(mode="json", by_alias=True) for entity in collection.values()]


def state_to_raw(state: AppState, include_history: bool = True) -> dict:
    """Serialize an AppState to its camelCase JSON-ready object."""
    raw: dict[str, Any] = {}
    for key, _ in ENTITY_COLLECTIONS:
        raw[key] = _dump_entities(getattr(state, to_snake(key)))
    for key in LIST_COLLECTIONS:
        raw[key] = list(getattr(state, to_snake(key)))
    raw["templatePreferences"] = state.template_preferences.model_dump(mode="json", by_alias=True)
    raw["groupBasesByType"] = state.group_bases_by_type
    if include_history:
        raw["undoHistory"] = [
            item.model_dump(mode="json", by_alias=True) for item in state.undo_history
        ]
    return raw


def encode_document(state: AppState, indent: Optional[int] = None) -> str:
    """Full persisted document, undo history included."""
    document = {"state": state_to_raw(state), "version": DOCUMENT_VERSION}
    return json.dumps(document, indent=indent or None)


def decode_document(text: str) -> AppState:
    """
    Parse a persisted document back into state.

    Raises:
        ValueError: If the text is not a valid state document
    """
    document = json.loads(text)
    if not isinstance(document, dict) or not isinstance(document.get("state"), dict):
        raise ValueError("Document has no 'state' object")
    return state_from_raw(document["state"])


def collection_counts(state: AppState) -> dict[str, int]:
    return {key: len(getattr(state, to_snake(key))) for key, _ in ENTITY_COLLECTIONS}
