"""
Entity Store for Budget Blocks

This module ties together all the components and defines the mutator API
every collaborator (UI, CLI, import tooling) goes through.

DESIGN DECISION: The store enforces the boundaries:
- Balances move only through the ledger engine
- Every destructive delete is snapshotted before it happens
- Every mutation is validated, logged and written through to storage

Each mutator works on a deep copy of the state and swaps it in only when it
completes, so a rejected or failing mutation leaves the previous state
untouched and observers never see a half-updated base/block pair.
"""

import copy
import json
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from datetime import date
from typing import Any, Optional, Union

from pydantic import BaseModel

from budgetblocks.audit import StoreEventLogger
from budgetblocks.config import Settings, get_settings
from budgetblocks.dates import bill_date_in_band, extract_due_day, today, utc_now
from budgetblocks.engine import ledger
from budgetblocks.engine.bands import assign_band, reassign_all, refresh_display_month
from budgetblocks.engine.paydays import (
    BandDraft,
    generate_biweekly_bands as biweekly_drafts,
    generate_composite_bands,
    generate_monthly_bands as monthly_drafts,
)
from budgetblocks.engine.undo import UndoHistoryManager
from budgetblocks.models.entities import (
    CATEGORY_COLORS,
    Base,
    Block,
    BlockType,
    Category,
    FixedBill,
    Owner,
    PayPeriodBand,
    PaySchedule,
    Row,
    TemplatePreferences,
    new_id,
)
from budgetblocks.models.events import StoreEventBuilder
from budgetblocks.models.state import AppState
from budgetblocks.models.undo import (
    BandSnapshot,
    BaseSnapshot,
    BlockSnapshot,
    CategorySnapshot,
    FixedBillSnapshot,
    OwnerSnapshot,
    Reassignment,
    ScheduleSnapshot,
    TemplateSnapshot,
    UndoHistoryItem,
)
from budgetblocks.models.validation import ValidationResult
from budgetblocks.services.storage import (
    StateStorageInterface,
    StorageError,
    collection_counts,
    state_from_raw,
    state_to_raw,
)
from budgetblocks.validation import StoreValidator, ValidationFailedError


Payload = Union[Mapping[str, Any], BaseModel]

# Fields callers can never set through update payloads
_PROTECTED_FIELDS = ("id", "created_at", "updated_at")


class ImportDataError(ValueError):
    """Imported text is not valid JSON or holds invalid entities."""
    pass


def _normalize(model_cls: type[BaseModel], data: Payload) -> dict[str, Any]:
    """Payload as a dict keyed by field name (camelCase aliases accepted)."""
    if isinstance(data, BaseModel):
        return data.model_dump()
    names = {}
    for name, field in model_cls.model_fields.items():
        names[name] = name
        if field.alias:
            names[field.alias] = name
    return {names.get(key, key): value for key, value in dict(data).items()}


def _strip_protected(updates: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in updates.items() if k not in _PROTECTED_FIELDS}


def _copy(entity):
    return entity.model_copy(deep=True) if entity is not None else None


def _reorder(collection: dict, ids: list[str], attr: str) -> dict:
    """Listed ids first (in the given order), then the rest; renumber `attr`."""
    listed = [collection[i] for i in dict.fromkeys(ids) if i in collection]
    listed_ids = {entity.id for entity in listed}
    ordered = listed + [e for e in collection.values() if e.id not in listed_ids]
    for index, entity in enumerate(ordered):
        setattr(entity, attr, index)
    return {entity.id: entity for entity in ordered}


class EntityStore:
    """
    Explicit state handle exposing the mutator API.

    Usage:
        store = EntityStore.from_storage(JsonFileStateStorage())
        base = store.add_base({"name": "Checking", "type": "Checking", "balance": "100"})
        ...

    Referential misses (stale ids) are silent no-ops: mutators return None
    or False and log the miss at debug level. Invalid input raises
    ValidationFailedError and changes nothing.
    """

    def __init__(
        self,
        state: Optional[AppState] = None,
        storage: Optional[StateStorageInterface] = None,
        settings: Optional[Settings] = None,
        logger: Optional[StoreEventLogger] = None,
    ):
        self._settings = settings or get_settings()
        app_settings = self._settings.app
        self._undo_limit = app_settings.undo_history_limit
        self._default_currency = app_settings.default_currency
        self._default_rule = app_settings.default_attribution_rule
        self._base_types = app_settings.base_types_list
        self._flow_types = app_settings.flow_types_list
        self._write_through = self._settings.storage.write_through

        self._storage = storage
        self._logger = logger or StoreEventLogger(level=app_settings.log_level)
        self._validator = StoreValidator()
        self._state = state.model_copy(deep=True) if state is not None else self._fresh_state()

    @classmethod
    def from_storage(
        cls,
        storage: StateStorageInterface,
        settings: Optional[Settings] = None,
        logger: Optional[StoreEventLogger] = None,
    ) -> "EntityStore":
        """Create a store and load whatever the storage holds."""
        store = cls(storage=storage, settings=settings, logger=logger)
        store.load()
        return store

    # =========================================================================
    # Plumbing
    # =========================================================================

    def _fresh_state(self) -> AppState:
        return AppState(
            base_types=list(self._base_types),
            flow_types=list(self._flow_types),
        )

    @contextmanager
    def _transaction(self, *touched: str) -> Iterator[AppState]:
        """
        Yield a working state that replaces the current one on success.

        Only the `touched` fields (all of them when none are named) are
        deep-copied; the others are shared with the current state and must
        not be mutated. History items are never mutated, so that list is
        copied shallowly.
        """
        updates = {}
        for name in touched or AppState.model_fields:
            value = getattr(self._state, name)
            updates[name] = list(value) if name == "undo_history" else copy.deepcopy(value)
        working = self._state.model_copy(update=updates)
        yield working
        self._state = working
        self._persist()

    def _history(self, state: AppState) -> UndoHistoryManager:
        return UndoHistoryManager(state.undo_history, limit=self._undo_limit)

    def _persist(self) -> None:
        if self._storage is None or not self._write_through:
            return
        try:
            self._storage.save(self._state)
        except StorageError as e:
            self._logger.log_save_failed(str(e))

    def _check(self, result: ValidationResult, entity_id: Optional[str] = None) -> None:
        """Raise on errors; log anything else that was found."""
        issues = [issue.model_dump() for issue in result.issues]
        if result.has_errors:
            self._logger.log(StoreEventBuilder.validation_failed(result.subject, issues))
            raise ValidationFailedError(result)
        if issues:
            self._logger.log(StoreEventBuilder.validation_warning(result.subject, entity_id, issues))

    def _build(self, model_cls, subject: str, data: Mapping[str, Any]):
        try:
            return self._validator.build(model_cls, subject, data)
        except ValidationFailedError as e:
            self._logger.log(StoreEventBuilder.validation_failed(
                subject, [issue.model_dump() for issue in e.result.issues]
            ))
            raise

    def _missing(self, entity_type: str, entity_id: str, operation: str) -> None:
        self._logger.log_missing(entity_type, entity_id, operation)

    def _file_block(self, state: AppState, block: Block) -> None:
        block.band_id = assign_band(block.date, state.bands)
        if block.band_id is None:
            self._logger.log(StoreEventBuilder.block_unassigned(
                block.id, block.date.isoformat(), len(state.bands)
            ))

    def _reassign(self, state: AppState) -> int:
        changed = reassign_all(state.blocks.values(), state.bands)
        self._logger.log(StoreEventBuilder.blocks_reassigned(changed, len(state.blocks)))
        return changed

    @staticmethod
    def _row_payloads(rows: list, default_date: date) -> tuple[list[dict], set[str]]:
        """
        Rows as field-name payloads, dated to the block when they carry no
        date. Also returns the ids of rows that state `executed` explicitly.
        """
        payloads = []
        explicit = set()
        for row in rows:
            if isinstance(row, BaseModel):
                payload = row.model_dump()
                stated = "executed" in row.model_fields_set
            else:
                payload = _normalize(Row, row)
                stated = "executed" in payload
                payload.setdefault("date", default_date)
                payload.setdefault("id", new_id())
            if stated:
                explicit.add(payload["id"])
            payloads.append(payload)
        return payloads, explicit

    # =========================================================================
    # Loading and reading
    # =========================================================================

    def load(self) -> bool:
        """
        Replace the in-memory state with the stored one.

        Returns False (state untouched) when nothing has been stored yet.

        Raises:
            StorageError: If the stored document cannot be read or revived
        """
        if self._storage is None:
            return False
        state = self._storage.load()
        if state is None:
            return False
        self._state = state
        self._logger.log(StoreEventBuilder.state_loaded(collection_counts(state)))
        return True

    def snapshot(self) -> AppState:
        """Deep copy of the whole state."""
        return self._state.model_copy(deep=True)

    def get_base(self, base_id: str) -> Optional[Base]:
        return _copy(self._state.bases.get(base_id))

    def get_block(self, block_id: str) -> Optional[Block]:
        return _copy(self._state.blocks.get(block_id))

    def get_band(self, band_id: str) -> Optional[PayPeriodBand]:
        return _copy(self._state.bands.get(band_id))

    def get_template(self, template_id: str) -> Optional[Block]:
        return _copy(self._state.library.get(template_id))

    def get_schedule(self, schedule_id: str) -> Optional[PaySchedule]:
        return _copy(self._state.schedules.get(schedule_id))

    def get_fixed_bill(self, bill_id: str) -> Optional[FixedBill]:
        return _copy(self._state.fixed_bills.get(bill_id))

    def list_bases(self) -> list[Base]:
        return [_copy(b) for b in self._state.bases.values()]

    def list_blocks(self, band_id: Optional[str] = None) -> list[Block]:
        """All blocks, or only those filed under `band_id`."""
        return [
            _copy(b) for b in self._state.blocks.values()
            if band_id is None or b.band_id == band_id
        ]

    def list_unassigned_blocks(self) -> list[Block]:
        return [_copy(b) for b in self._state.blocks.values() if b.band_id is None]

    def list_bands(self, include_archived: bool = False) -> list[PayPeriodBand]:
        return [
            _copy(b) for b in self._state.bands.values()
            if include_archived or not b.archived
        ]

    def list_library(self) -> list[Block]:
        return [_copy(t) for t in self._state.library.values()]

    def list_schedules(self) -> list[PaySchedule]:
        return [_copy(s) for s in self._state.schedules.values()]

    def list_fixed_bills(self, include_inactive: bool = False) -> list[FixedBill]:
        return [
            _copy(b) for b in self._state.fixed_bills.values()
            if include_inactive or b.active
        ]

    def list_owners(self) -> list[Owner]:
        return sorted((_copy(o) for o in self._state.owner_entities.values()), key=lambda o: o.order)

    def list_categories(self) -> list[Category]:
        return sorted((_copy(c) for c in self._state.category_entities.values()), key=lambda c: c.order)

    def master_list(self, list_name: str) -> list[str]:
        return list(self._state.master_list(list_name))

    @property
    def group_bases_by_type(self) -> bool:
        return self._state.group_bases_by_type

    @property
    def template_preferences(self) -> TemplatePreferences:
        return self._state.template_preferences.model_copy()

    @property
    def undo_history(self) -> list[UndoHistoryItem]:
        return [item.model_copy(deep=True) for item in self._state.undo_history]

    # =========================================================================
    # Bases
    # =========================================================================

    def add_base(self, data: Payload) -> Base:
        """
        Create a base. The balance given here is the opening balance; from
        then on it only moves through executed rows.
        """
        payload = _strip_protected(_normalize(Base, data))
        payload.setdefault("currency", self._default_currency)
        base = self._build(Base, "base", payload)
        self._check(self._validator.validate_base(base, self._state.base_types), base.id)

        with self._transaction("bases") as state:
            state.bases[base.id] = base
        self._logger.log_created("base", base.id, base.name)
        return _copy(base)

    def update_base(self, base_id: str, updates: Payload) -> Optional[Base]:
        existing = self._state.bases.get(base_id)
        if existing is None:
            self._missing("base", base_id, "update_base")
            return None

        updates = _strip_protected(_normalize(Base, updates))
        base = self._build(Base, "base", {**existing.model_dump(), **updates, "updated_at": utc_now()})
        self._check(self._validator.validate_base_update(existing, base), base_id)
        self._check(self._validator.validate_base(base, self._state.base_types), base_id)

        with self._transaction("bases") as state:
            state.bases[base_id] = base
        self._logger.log_updated("base", base_id, list(updates))
        return _copy(base)

    def delete_base(self, base_id: str) -> Optional[str]:
        """
        Delete a base. Rows that reference it keep their dangling ids and
        no balances are touched.
        """
        if base_id not in self._state.bases:
            self._missing("base", base_id, "delete_base")
            return None

        with self._transaction("bases", "undo_history") as state:
            base = state.bases.pop(base_id)
            history_id = self._history(state).record_base(base)
        self._logger.log_deleted("base", base_id, history_id, base.name)
        return history_id

    def reorder_bases(self, base_ids: list[str]) -> None:
        with self._transaction("bases") as state:
            state.bases = _reorder(state.bases, base_ids, "sort_order")
        self._logger.log_updated("base", "*", ["sort_order"])

    def toggle_group_by_type(self) -> bool:
        with self._transaction("group_bases_by_type") as state:
            state.group_bases_by_type = not state.group_bases_by_type
            grouped = state.group_bases_by_type
        self._logger.log_updated("preferences", "group_bases_by_type", ["group_bases_by_type"])
        return grouped

    # =========================================================================
    # Blocks
    # =========================================================================

    def add_block(self, data: Payload) -> Block:
        """
        Create a block and file it into the band covering its date.

        Rows that arrive already executed are executed through the ledger,
        so their balance effect is applied exactly once.
        """
        return self._insert_block(data)

    def _insert_block(self, data: Payload, inherited: Optional[Block] = None) -> Block:
        """
        `inherited` holds rows (by id) whose base references were already
        stored elsewhere; those references are not re-checked.
        """
        payload = _strip_protected(_normalize(Block, data))
        payload.pop("band_id", None)
        payload["is_template"] = False
        if "date" in payload and payload.get("rows"):
            payload["rows"], _ = self._row_payloads(payload["rows"], payload["date"])
        block = self._build(Block, "block", payload)
        self._check(self._validator.validate_block(block, self._state.bases, previous=inherited), block.id)

        requested = [row.id for row in block.rows if row.executed]
        for row in block.rows:
            row.executed = False

        with self._transaction("blocks", "bases") as state:
            self._file_block(state, block)
            for row_id in requested:
                row = block.find_row(row_id)
                deltas = ledger.execute(block, row, state.bases)
                self._logger.log(StoreEventBuilder.row_executed(
                    block.id, row_id, ledger.format_deltas(deltas)
                ))
            state.blocks[block.id] = block

        self._logger.log_created("block", block.id, block.title)
        return _copy(block)

    def update_block(self, block_id: str, updates: Payload) -> Optional[Block]:
        """
        Update a block.

        A date change re-files the block. When `rows` is given, each row
        keeps its stored executed flag and requested flag changes go
        through the ledger; executed rows that were removed are reversed.
        """
        existing = self._state.blocks.get(block_id)
        if existing is None:
            self._missing("block", block_id, "update_block")
            return None

        updates = _strip_protected(_normalize(Block, updates))
        updates.pop("band_id", None)
        updates.pop("is_template", None)
        explicit: set[str] = set()
        if updates.get("rows") is not None:
            updates["rows"], explicit = self._row_payloads(updates["rows"], updates.get("date", existing.date))

        block = self._build(Block, "block", {**existing.model_dump(), **updates, "updated_at": utc_now()})
        self._check(self._validator.validate_block(block, self._state.bases, previous=existing), block_id)

        with self._transaction("blocks", "bases") as state:
            previous = state.blocks[block_id]
            if "rows" in updates:
                self._reconcile_rows(state, previous, block, explicit)
            if block.date != previous.date:
                self._file_block(state, block)
            block.updated_at = utc_now()
            state.blocks[block_id] = block

        self._logger.log_updated("block", block_id, list(updates))
        return _copy(block)

    def _reconcile_rows(self, state: AppState, previous: Block, block: Block, explicit: set[str]) -> None:
        kept_ids = {row.id for row in block.rows}

        for old_row in previous.rows:
            if old_row.id not in kept_ids and old_row.executed:
                deltas = ledger.undo(previous, old_row, state.bases)
                self._logger.log(StoreEventBuilder.row_execution_undone(
                    block.id, old_row.id, ledger.format_deltas(deltas)
                ))

        for row in block.rows:
            old_row = previous.find_row(row.id)
            stored = old_row.executed if old_row is not None else False
            requested = row.executed if row.id in explicit else stored
            row.executed = stored

            if old_row is not None and old_row.executed and row.amount != old_row.amount:
                self._logger.log(StoreEventBuilder.executed_amount_edited(
                    block.id, row.id, str(old_row.amount), str(row.amount)
                ))

            if requested and not row.executed:
                deltas = ledger.execute(block, row, state.bases)
                self._logger.log(StoreEventBuilder.row_executed(
                    block.id, row.id, ledger.format_deltas(deltas)
                ))
            elif not requested and row.executed:
                deltas = ledger.undo(block, row, state.bases)
                self._logger.log(StoreEventBuilder.row_execution_undone(
                    block.id, row.id, ledger.format_deltas(deltas)
                ))

    def delete_block(self, block_id: str) -> Optional[str]:
        """
        Delete a block, reversing every executed row first.

        The snapshot keeps the rows marked executed so undo can re-apply them.
        """
        if block_id not in self._state.blocks:
            self._missing("block", block_id, "delete_block")
            return None

        with self._transaction("blocks", "bases", "undo_history") as state:
            block = state.blocks.pop(block_id)
            history_id = self._history(state).record_block(block)
            ledger.reverse_block(block, state.bases)
        self._logger.log_deleted("block", block_id, history_id, block.title)
        return history_id

    def move_block_to_band(self, block_id: str, band_id: Optional[str]) -> Optional[Block]:
        """File a block under a band by hand (None unassigns it)."""
        if block_id not in self._state.blocks:
            self._missing("block", block_id, "move_block_to_band")
            return None
        if band_id is not None and band_id not in self._state.bands:
            self._missing("band", band_id, "move_block_to_band")
            return None

        with self._transaction("blocks") as state:
            block = state.blocks[block_id]
            block.band_id = band_id
            block.updated_at = utc_now()
        self._logger.log_updated("block", block_id, ["band_id"])
        return _copy(block)

    # =========================================================================
    # Bands
    # =========================================================================

    def add_band(self, data: Payload) -> PayPeriodBand:
        """Create a band. Existing blocks are not re-filed until asked."""
        payload = _strip_protected(_normalize(PayPeriodBand, data))
        payload.setdefault("attribution_rule", self._default_rule)
        payload.setdefault("order", len(self._state.bands))
        band = self._build(PayPeriodBand, "band", payload)
        refresh_display_month(band)
        self._check(self._validator.validate_band(band, self._state.bands), band.id)

        with self._transaction("bands") as state:
            state.bands[band.id] = band
        self._logger.log_created("band", band.id, band.title)
        return _copy(band)

    def update_band(self, band_id: str, updates: Payload) -> Optional[PayPeriodBand]:
        """
        Update a band. Changing its dates or attribution rule recomputes
        the display month and re-files every block.
        """
        existing = self._state.bands.get(band_id)
        if existing is None:
            self._missing("band", band_id, "update_band")
            return None

        updates = _strip_protected(_normalize(PayPeriodBand, updates))
        band = self._build(PayPeriodBand, "band", {**existing.model_dump(), **updates})
        self._check(self._validator.validate_band(band, self._state.bands), band_id)

        boundaries_changed = (
            band.start_date != existing.start_date
            or band.end_date != existing.end_date
            or band.attribution_rule != existing.attribution_rule
        )

        with self._transaction("bands", "blocks") as state:
            if boundaries_changed:
                refresh_display_month(band)
            state.bands[band_id] = band
            if boundaries_changed:
                self._reassign(state)

        self._logger.log_updated("band", band_id, list(updates))
        return _copy(band)

    def delete_band(self, band_id: str) -> Optional[str]:
        """Delete a band; its blocks become unassigned (not re-filed)."""
        if band_id not in self._state.bands:
            self._missing("band", band_id, "delete_band")
            return None

        with self._transaction("bands", "blocks", "undo_history") as state:
            band = state.bands.pop(band_id)
            affected = [b for b in state.blocks.values() if b.band_id == band_id]
            history_id = self._history(state).record_band(band, affected)
            for block in affected:
                block.band_id = None
        self._logger.log_deleted("band", band_id, history_id, band.title)
        return history_id

    def _set_archived(self, band_id: str, archived: bool, operation: str) -> Optional[PayPeriodBand]:
        if band_id not in self._state.bands:
            self._missing("band", band_id, operation)
            return None
        with self._transaction("bands") as state:
            band = state.bands[band_id]
            band.archived = archived
        self._logger.log_updated("band", band_id, ["archived"])
        return _copy(band)

    def archive_band(self, band_id: str) -> Optional[PayPeriodBand]:
        return self._set_archived(band_id, True, "archive_band")

    def unarchive_band(self, band_id: str) -> Optional[PayPeriodBand]:
        return self._set_archived(band_id, False, "unarchive_band")

    def reassign_blocks_to_bands(self) -> int:
        """Re-file every block from its date. Returns how many moved."""
        with self._transaction("blocks") as state:
            changed = self._reassign(state)
        return changed

    def _insert_drafts(self, drafts: list[BandDraft], source: str) -> list[PayPeriodBand]:
        created: list[PayPeriodBand] = []
        with self._transaction("bands", "blocks") as state:
            for draft in drafts:
                band = PayPeriodBand(
                    title=draft.title,
                    start_date=draft.start_date,
                    end_date=draft.end_date,
                    order=len(state.bands),
                    attribution_rule=self._default_rule,
                )
                refresh_display_month(band)
                self._check(self._validator.validate_band(band, state.bands), band.id)
                state.bands[band.id] = band
                created.append(band)
            self._logger.log(StoreEventBuilder.bands_generated(source, len(created)))
            if created:
                self._reassign(state)
        return [_copy(b) for b in created]

    def generate_bands_from_schedules(
        self,
        start: date,
        end: date,
        schedule_ids: Optional[list[str]] = None,
        excluded: Optional[set[str]] = None,
        include_lead_in: bool = True,
    ) -> list[PayPeriodBand]:
        """
        Create consecutive bands between the paydays of the given schedules
        (all schedules when `schedule_ids` is None) and re-file blocks.

        `excluded` holds "<schedule_id>:<YYYY-MM-DD>" keys of paydays to skip.
        """
        schedules = [
            s for s in self._state.schedules.values()
            if schedule_ids is None or s.id in schedule_ids
        ]
        drafts = generate_composite_bands(
            schedules, start, end,
            excluded=excluded,
            include_lead_in=include_lead_in,
        )
        return self._insert_drafts(drafts, "schedules")

    def generate_monthly_bands(
        self,
        reference: Optional[date] = None,
        months_before: int = 3,
        months_after: int = 3,
    ) -> list[PayPeriodBand]:
        drafts = monthly_drafts(reference or today(), months_before, months_after)
        return self._insert_drafts(drafts, "monthly")

    def generate_biweekly_bands(self, start: date, count: int = 6) -> list[PayPeriodBand]:
        return self._insert_drafts(biweekly_drafts(start, count), "biweekly")

    # =========================================================================
    # Row execution
    # =========================================================================

    def execute_row(self, block_id: str, row_id: str) -> bool:
        """
        Apply a row's balance effect once.

        Returns False when the block/row does not exist or the row is
        already executed.
        """
        block = self._state.blocks.get(block_id)
        row = block.find_row(row_id) if block else None
        if row is None:
            self._missing("row", row_id, "execute_row")
            return False
        if row.executed:
            return False

        with self._transaction("blocks", "bases") as state:
            block = state.blocks[block_id]
            deltas = ledger.execute(block, block.find_row(row_id), state.bases)
        self._logger.log(StoreEventBuilder.row_executed(block_id, row_id, ledger.format_deltas(deltas)))
        return True

    def undo_execute_row(self, block_id: str, row_id: str) -> bool:
        """Reverse a row's balance effect. False when there is nothing to undo."""
        block = self._state.blocks.get(block_id)
        row = block.find_row(row_id) if block else None
        if row is None:
            self._missing("row", row_id, "undo_execute_row")
            return False
        if not row.executed:
            return False

        with self._transaction("blocks", "bases") as state:
            block = state.blocks[block_id]
            deltas = ledger.undo(block, block.find_row(row_id), state.bases)
        self._logger.log(StoreEventBuilder.row_execution_undone(block_id, row_id, ledger.format_deltas(deltas)))
        return True

    # =========================================================================
    # Library
    # =========================================================================

    def _template_payload(self, data: dict[str, Any]) -> dict[str, Any]:
        data["is_template"] = True
        data["band_id"] = None
        if data.get("rows"):
            rows, _ = self._row_payloads(data["rows"], data.get("date") or today())
            data["rows"] = [{**row, "executed": False} for row in rows]
        return data

    def save_to_library(self, data: Payload) -> Block:
        """Store a block as a reusable template (never executed, never filed)."""
        payload = _strip_protected(_normalize(Block, data))
        template = self._build(Block, "template", self._template_payload(payload))
        self._check(
            self._validator.validate_block(template, self._state.bases, subject="template"),
            template.id,
        )

        with self._transaction("library") as state:
            state.library[template.id] = template
        self._logger.log_created("template", template.id, template.title)
        return _copy(template)

    def update_template(self, template_id: str, updates: Payload) -> Optional[Block]:
        existing = self._state.library.get(template_id)
        if existing is None:
            self._missing("template", template_id, "update_template")
            return None

        updates = _strip_protected(_normalize(Block, updates))
        merged = self._template_payload({**existing.model_dump(), **updates, "updated_at": utc_now()})
        template = self._build(Block, "template", merged)
        self._check(
            self._validator.validate_block(template, self._state.bases, previous=existing, subject="template"),
            template_id,
        )

        with self._transaction("library") as state:
            state.library[template_id] = template
        self._logger.log_updated("template", template_id, list(updates))
        return _copy(template)

    def duplicate_template(self, template_id: str) -> Optional[Block]:
        existing = self._state.library.get(template_id)
        if existing is None:
            self._missing("template", template_id, "duplicate_template")
            return None

        now = utc_now()
        duplicate = existing.model_copy(deep=True, update={
            "id": new_id(),
            "title": f"{existing.title} (Copy)",
            "created_at": now,
            "updated_at": now,
        })
        for row in duplicate.rows:
            row.id = new_id()

        with self._transaction("library") as state:
            state.library[duplicate.id] = duplicate
        self._logger.log_created("template", duplicate.id, duplicate.title)
        return _copy(duplicate)

    def create_block_from_template(self, template_id: str, block_date: Optional[date] = None) -> Optional[Block]:
        """Instantiate a template as a new block dated `block_date` (default today)."""
        template = self._state.library.get(template_id)
        if template is None:
            self._missing("template", template_id, "create_block_from_template")
            return None

        block_date = block_date or today()
        rows = [
            row.model_copy(update={"id": new_id(), "date": block_date, "executed": False})
            for row in template.rows
        ]
        # References stored on the template count as existing, not new
        inherited = template.model_copy(update={"rows": rows})
        return self._insert_block({
            "type": template.type,
            "title": template.title,
            "date": block_date,
            "tags": list(template.tags),
            "rows": [row.model_dump() for row in rows],
        }, inherited=inherited)

    def remove_from_library(self, template_id: str) -> Optional[str]:
        if template_id not in self._state.library:
            self._missing("template", template_id, "remove_from_library")
            return None

        with self._transaction("library", "undo_history") as state:
            template = state.library.pop(template_id)
            history_id = self._history(state).record_template(template)
        self._logger.log_deleted("template", template_id, history_id, template.title)
        return history_id

    # =========================================================================
    # Pay schedules
    # =========================================================================

    def add_schedule(self, data: Payload) -> PaySchedule:
        payload = _strip_protected(_normalize(PaySchedule, data))
        schedule = self._build(PaySchedule, "schedule", payload)
        self._check(self._validator.validate_schedule(schedule), schedule.id)

        with self._transaction("schedules") as state:
            state.schedules[schedule.id] = schedule
        self._logger.log_created("schedule", schedule.id, schedule.name)
        return _copy(schedule)

    def update_schedule(self, schedule_id: str, updates: Payload) -> Optional[PaySchedule]:
        existing = self._state.schedules.get(schedule_id)
        if existing is None:
            self._missing("schedule", schedule_id, "update_schedule")
            return None

        updates = _strip_protected(_normalize(PaySchedule, updates))
        schedule = self._build(PaySchedule, "schedule", {**existing.model_dump(), **updates})
        self._check(self._validator.validate_schedule(schedule), schedule_id)

        with self._transaction("schedules") as state:
            state.schedules[schedule_id] = schedule
        self._logger.log_updated("schedule", schedule_id, list(updates))
        return _copy(schedule)

    def delete_schedule(self, schedule_id: str) -> Optional[str]:
        if schedule_id not in self._state.schedules:
            self._missing("schedule", schedule_id, "delete_schedule")
            return None

        with self._transaction("schedules", "undo_history") as state:
            schedule = state.schedules.pop(schedule_id)
            history_id = self._history(state).record_schedule(schedule)
        self._logger.log_deleted("schedule", schedule_id, history_id, schedule.name)
        return history_id

    # =========================================================================
    # Fixed bills
    # =========================================================================

    def add_fixed_bill(self, data: Payload) -> FixedBill:
        payload = _strip_protected(_normalize(FixedBill, data))
        bill = self._build(FixedBill, "fixed bill", payload)
        self._check(self._validator.validate_fixed_bill(bill, self._state.bases), bill.id)

        with self._transaction("fixed_bills") as state:
            state.fixed_bills[bill.id] = bill
        self._logger.log_created("fixed bill", bill.id, bill.vendor)
        return _copy(bill)

    def update_fixed_bill(self, bill_id: str, updates: Payload) -> Optional[FixedBill]:
        existing = self._state.fixed_bills.get(bill_id)
        if existing is None:
            self._missing("fixed bill", bill_id, "update_fixed_bill")
            return None

        updates = _strip_protected(_normalize(FixedBill, updates))
        bill = self._build(FixedBill, "fixed bill", {**existing.model_dump(), **updates, "updated_at": utc_now()})
        self._check(self._validator.validate_fixed_bill(bill, self._state.bases, previous=existing), bill_id)

        with self._transaction("fixed_bills") as state:
            state.fixed_bills[bill_id] = bill
        self._logger.log_updated("fixed bill", bill_id, list(updates))
        return _copy(bill)

    def delete_fixed_bill(self, bill_id: str) -> Optional[str]:
        if bill_id not in self._state.fixed_bills:
            self._missing("fixed bill", bill_id, "delete_fixed_bill")
            return None

        with self._transaction("fixed_bills", "undo_history") as state:
            bill = state.fixed_bills.pop(bill_id)
            history_id = self._history(state).record_fixed_bill(bill)
        self._logger.log_deleted("fixed bill", bill_id, history_id, bill.vendor)
        return history_id

    def find_duplicate_fixed_bill(
        self,
        owner: str,
        vendor: str,
        from_base_id: Optional[str],
        due_day,
    ) -> Optional[FixedBill]:
        """Active bill with the same owner, vendor, source base and due day."""
        for bill in self._state.fixed_bills.values():
            if (
                bill.active
                and bill.owner == owner
                and bill.vendor == vendor
                and bill.from_base_id == from_base_id
                and bill.due_day == due_day
            ):
                return _copy(bill)
        return None

    def rows_from_fixed_bills(self, band_id: str, bill_ids: list[str]) -> list[Row]:
        """
        Draft rows for inserting bills into a block of the given band.

        Each bill is dated on its due day in the band's starting month, or
        on the band start when that day falls outside the band. The rows
        are not stored; pass them to add_block/update_block.
        """
        band = self._state.bands.get(band_id)
        if band is None:
            self._missing("band", band_id, "rows_from_fixed_bills")
            return []

        rows = []
        for bill_id in bill_ids:
            bill = self._state.fixed_bills.get(bill_id)
            if bill is None or not bill.active:
                continue
            candidate, in_band = bill_date_in_band(band.start_date, band.end_date, bill.due_day)
            from_base_id = bill.from_base_id
            if from_base_id and from_base_id not in self._state.bases:
                # Base was deleted after the bill was saved
                self._missing("base", from_base_id, "rows_from_fixed_bills")
                from_base_id = None
            rows.append(Row(
                date=candidate if in_band else band.start_date,
                owner=bill.owner,
                source=bill.vendor,
                from_base_id=from_base_id,
                amount=bill.default_amount,
                category=bill.category,
                notes=bill.notes,
            ))
        return rows

    def save_rows_as_fixed_bills(self, block_id: str, row_ids: list[str]) -> tuple[int, int]:
        """
        Save rows of a block to the bills library.

        A row matching an existing bill (owner, vendor, source base, due day)
        updates and reactivates that bill; any other row creates one.
        Returns (added, updated).
        """
        block = self._state.blocks.get(block_id)
        if block is None:
            self._missing("block", block_id, "save_rows_as_fixed_bills")
            return 0, 0

        added: list[FixedBill] = []
        updated: list[FixedBill] = []
        with self._transaction("fixed_bills") as state:
            for row in block.rows:
                if row.id not in row_ids:
                    continue
                due_day = extract_due_day(row.date)
                vendor = row.source or "Unnamed Vendor"
                match = next((
                    b for b in state.fixed_bills.values()
                    if b.owner == row.owner and b.vendor == vendor
                    and b.from_base_id == row.from_base_id and b.due_day == due_day
                ), None)
                if match is not None:
                    match.default_amount = row.amount
                    match.category = row.category
                    match.notes = row.notes
                    match.active = True
                    match.updated_at = utc_now()
                    updated.append(match)
                else:
                    bill = FixedBill(
                        owner=row.owner,
                        vendor=vendor,
                        from_base_id=row.from_base_id,
                        default_amount=row.amount,
                        due_day=due_day,
                        category=row.category,
                        notes=row.notes,
                    )
                    state.fixed_bills[bill.id] = bill
                    added.append(bill)
        for bill in added:
            self._logger.log_created("fixed bill", bill.id, bill.vendor)
        for bill in updated:
            self._logger.log_updated("fixed bill", bill.id, ["default_amount", "category", "notes", "active"])
        return len(added), len(updated)

    # =========================================================================
    # Owners and categories
    # =========================================================================

    def add_owner(self, name: str) -> Owner:
        owner = self._build(Owner, "owner", {"name": name, "order": len(self._state.owner_entities)})
        with self._transaction("owner_entities") as state:
            state.owner_entities[owner.id] = owner
        self._logger.log_created("owner", owner.id, owner.name)
        return _copy(owner)

    def update_owner(self, owner_id: str, updates: Payload) -> Optional[Owner]:
        existing = self._state.owner_entities.get(owner_id)
        if existing is None:
            self._missing("owner", owner_id, "update_owner")
            return None

        updates = _strip_protected(_normalize(Owner, updates))
        owner = self._build(Owner, "owner", {**existing.model_dump(), **updates})
        with self._transaction("owner_entities") as state:
            state.owner_entities[owner_id] = owner
        self._logger.log_updated("owner", owner_id, list(updates))
        return _copy(owner)

    def _rewrite_rows(self, state: AppState, attr: str, old: str, new: Optional[str]) -> list[Reassignment]:
        reassignments = []
        for collection in (state.blocks, state.library):
            for block in collection.values():
                for row in block.rows:
                    if getattr(row, attr) == old:
                        reassignments.append(Reassignment(block_id=block.id, row_id=row.id, old_value=old))
                        setattr(row, attr, new)
        return reassignments

    def delete_owner(self, owner_id: str, reassign_to: Optional[str] = None) -> Optional[str]:
        """
        Delete an owner, moving its rows (blocks and templates) to
        `reassign_to` or to no owner.
        """
        if owner_id not in self._state.owner_entities:
            self._missing("owner", owner_id, "delete_owner")
            return None
        self._check(self._validator.validate_reassign_target(
            "owner", owner_id, reassign_to, self._state.owner_entities
        ))

        with self._transaction("owner_entities", "blocks", "library", "undo_history") as state:
            owner = state.owner_entities.pop(owner_id)
            reassignments = self._rewrite_rows(state, "owner", owner_id, reassign_to or "")
            history_id = self._history(state).record_owner(owner, reassignments)
        self._logger.log_deleted("owner", owner_id, history_id, owner.name)
        return history_id

    def reorder_owners(self, owner_ids: list[str]) -> None:
        with self._transaction("owner_entities") as state:
            state.owner_entities = _reorder(state.owner_entities, owner_ids, "order")
        self._logger.log_updated("owner", "*", ["order"])

    def add_category(self, name: str) -> Category:
        count = len(self._state.category_entities)
        category = self._build(Category, "category", {
            "name": name,
            "color": CATEGORY_COLORS[count % len(CATEGORY_COLORS)],
            "order": count,
        })
        with self._transaction("category_entities") as state:
            state.category_entities[category.id] = category
        self._logger.log_created("category", category.id, category.name)
        return _copy(category)

    def update_category(self, category_id: str, updates: Payload) -> Optional[Category]:
        existing = self._state.category_entities.get(category_id)
        if existing is None:
            self._missing("category", category_id, "update_category")
            return None

        updates = _strip_protected(_normalize(Category, updates))
        category = self._build(Category, "category", {**existing.model_dump(), **updates})
        with self._transaction("category_entities") as state:
            state.category_entities[category_id] = category
        self._logger.log_updated("category", category_id, list(updates))
        return _copy(category)

    def delete_category(self, category_id: str, reassign_to: Optional[str] = None) -> Optional[str]:
        if category_id not in self._state.category_entities:
            self._missing("category", category_id, "delete_category")
            return None
        self._check(self._validator.validate_reassign_target(
            "category", category_id, reassign_to, self._state.category_entities
        ))

        with self._transaction("category_entities", "blocks", "library", "undo_history") as state:
            category = state.category_entities.pop(category_id)
            reassignments = self._rewrite_rows(state, "category", category_id, reassign_to)
            history_id = self._history(state).record_category(category, reassignments)
        self._logger.log_deleted("category", category_id, history_id, category.name)
        return history_id

    def reorder_categories(self, category_ids: list[str]) -> None:
        with self._transaction("category_entities") as state:
            state.category_entities = _reorder(state.category_entities, category_ids, "order")
        self._logger.log_updated("category", "*", ["order"])

    # =========================================================================
    # Master lists and preferences
    # =========================================================================

    def add_to_master_list(self, list_name: str, value: str) -> bool:
        """
        Append a value to a master list (exact, case-sensitive dedupe).

        Returns True if it was added, False if already present.
        """
        list_name = {"baseTypes": "base_types", "flowTypes": "flow_types"}.get(list_name, list_name)
        self._check(self._validator.validate_master_list(list_name, value))
        value = value.strip()
        if value in self._state.master_list(list_name):
            return False

        with self._transaction(list_name) as state:
            state.master_list(list_name).append(value)
        self._logger.log_updated("master list", list_name, [value])
        return True

    def update_template_preference(self, block_type: Union[BlockType, str], dont_offer: bool) -> TemplatePreferences:
        field_name = {
            BlockType.INCOME: "dont_offer_for_income",
            BlockType.FIXED_BILL: "dont_offer_for_fixed",
            BlockType.FLOW: "dont_offer_for_flow",
        }[BlockType(block_type)]

        with self._transaction("template_preferences") as state:
            setattr(state.template_preferences, field_name, dont_offer)
            preferences = state.template_preferences.model_copy()
        self._logger.log_updated("template preferences", field_name, [field_name])
        return preferences

    # =========================================================================
    # Undo
    # =========================================================================

    def undo_delete(self, history_id: str) -> bool:
        """
        Restore a deleted entity from its snapshot.

        The history item is consumed whether or not the restore succeeds.
        Returns False when the item does not exist (already used or never
        recorded).
        """
        if not any(item.id == history_id for item in self._state.undo_history):
            self._logger.log(StoreEventBuilder.undo_failed(history_id))
            return False

        with self._transaction() as state:
            item = self._history(state).take(history_id)
            self._restore(state, item.entity)
        self._logger.log(StoreEventBuilder.undo_restored(history_id, item.entity.type, item.label))
        return True

    def _restore(self, state: AppState, entity) -> None:
        data = entity.data.model_copy(deep=True)

        if isinstance(entity, BlockSnapshot):
            if data.band_id is not None and data.band_id not in state.bands:
                self._file_block(state, data)
            state.blocks[data.id] = data
            ledger.reapply_block(data, state.bases)
        elif isinstance(entity, BaseSnapshot):
            state.bases[data.id] = data
        elif isinstance(entity, BandSnapshot):
            state.bands[data.id] = data
            for snapshot_block in entity.blocks_snapshot:
                block = state.blocks.get(snapshot_block.id)
                if block is not None:
                    block.band_id = data.id
        elif isinstance(entity, TemplateSnapshot):
            state.library[data.id] = data
        elif isinstance(entity, ScheduleSnapshot):
            state.schedules[data.id] = data
        elif isinstance(entity, FixedBillSnapshot):
            state.fixed_bills[data.id] = data
        elif isinstance(entity, OwnerSnapshot):
            state.owner_entities[data.id] = data
            self._replay(state, entity.reassignments, "owner", default="")
        elif isinstance(entity, CategorySnapshot):
            state.category_entities[data.id] = data
            self._replay(state, entity.reassignments, "category", default=None)

    @staticmethod
    def _replay(state: AppState, reassignments: list[Reassignment], attr: str, default) -> None:
        for reassignment in reassignments:
            block = state.blocks.get(reassignment.block_id) or state.library.get(reassignment.block_id)
            row = block.find_row(reassignment.row_id) if block else None
            if row is not None:
                setattr(row, attr, reassignment.old_value if reassignment.old_value is not None else default)

    def clear_undo_history(self) -> int:
        with self._transaction("undo_history") as state:
            count = self._history(state).clear()
        self._logger.log(StoreEventBuilder.undo_history_cleared(count))
        return count

    # =========================================================================
    # Import / export
    # =========================================================================

    def export_data(self) -> str:
        """All collections, master lists and preferences as indented JSON (no undo history)."""
        text = json.dumps(state_to_raw(self._state, include_history=False), indent=2)
        self._logger.log(StoreEventBuilder.data_exported(collection_counts(self._state)))
        return text

    def import_data(self, text: str) -> None:
        """
        Replace all data with an export (or a persisted document).

        Missing collections become empty and the undo history is cleared.

        Raises:
            ImportDataError: If the text is not valid JSON or holds invalid
                             entities; the current state is left unchanged
        """
        try:
            raw = json.loads(text)
            if isinstance(raw, dict) and isinstance(raw.get("state"), dict):
                raw = raw["state"]
            imported = state_from_raw(raw, missing_as_empty=True)
        except (ValueError, TypeError, AttributeError, RecursionError) as e:
            self._logger.log(StoreEventBuilder.import_failed(str(e)))
            raise ImportDataError(f"Import failed: {e}") from e

        imported.undo_history = []
        self._state = imported
        self._persist()
        self._logger.log(StoreEventBuilder.data_imported(collection_counts(imported)))

    def clear_all(self) -> None:
        """Reset every collection to its initial value."""
        self._state = self._fresh_state()
        self._persist()
        self._logger.log(StoreEventBuilder.state_cleared())
