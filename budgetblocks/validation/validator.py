"""
Two-Stage Input Validation

DESIGN DECISION: Validation of every mutation's input happens in two
distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Types, required fields, non-empty titles, non-negative amounts
- Done by the pydantic models; failures are converted to issues here

STAGE 2 - SEMANTIC VALIDATION:
- Band end after start, overlapping bands
- Row and bill references to bases that do not exist
- Reassignment targets that do not exist
- Balance edits outside the ledger

IMPORTANT: Validation NEVER silently fixes issues. Error-level issues
reject the mutation; warnings are logged and let it through.
"""

from collections.abc import Mapping
from decimal import Decimal
from typing import Any, Optional

from pydantic import ValidationError

from budgetblocks.engine.bands import find_overlaps
from budgetblocks.models.entities import (
    Base,
    Block,
    BlockType,
    FixedBill,
    FlowMode,
    PayPeriodBand,
    PaySchedule,
    ScheduleFrequency,
)
from budgetblocks.models.state import MASTER_LISTS
from budgetblocks.models.validation import ValidationIssue, ValidationResult


class ValidationFailedError(ValueError):
    """A mutation was rejected; `result` lists every issue found."""

    def __init__(self, result: ValidationResult):
        self.result = result
        super().__init__(
            f"Invalid {result.subject}: " + "; ".join(result.messages)
        )


class StoreValidator:
    """
    Validates store inputs.

    Stage 1 runs while building the model (see `build`).
    Stage 2 needs the surrounding state and runs in the `validate_*` methods.
    """

    @staticmethod
    def issues_from_schema_error(error: ValidationError) -> list[ValidationIssue]:
        """Convert a pydantic ValidationError into issues."""
        issues = []
        for detail in error.errors():
            location = ".".join(str(part) for part in detail.get("loc", ())) or "input"
            issues.append(ValidationIssue(
                field=location,
                issue_type=detail.get("type", "invalid_value"),
                message=f"{location}: {detail.get('msg', 'invalid value')}",
                severity="error",
            ))
        return issues

    def build(self, model_cls, subject: str, data: Mapping[str, Any]):
        """
        Stage 1: construct a model, turning schema errors into a rejection.

        Raises:
            ValidationFailedError: If the data does not fit the schema
        """
        try:
            return model_cls.model_validate(dict(data))
        except ValidationError as e:
            raise ValidationFailedError(ValidationResult(
                subject=subject,
                issues=self.issues_from_schema_error(e),
            ))

    # -------------------------------------------------------------------------
    # Stage 2
    # -------------------------------------------------------------------------

    def validate_base(self, base: Base, base_types: list[str]) -> ValidationResult:
        issues = []
        if base.type not in base_types:
            issues.append(ValidationIssue(
                field="type",
                issue_type="custom_value",
                message=f"Base type '{base.type}' is not in the base types list",
                severity="info",
                suggested_fix="Add it to the base types list to offer it again",
            ))
        return ValidationResult(subject="base", issues=issues)

    def validate_base_update(self, existing: Base, updated: Base) -> ValidationResult:
        issues = []
        if updated.balance != existing.balance:
            issues.append(ValidationIssue(
                field="balance",
                issue_type="ledger_only",
                message="Balance can only change by executing or undoing rows",
                severity="error",
                suggested_fix="Execute a row against this base instead",
            ))
        return ValidationResult(subject="base", issues=issues)

    def validate_block(
        self,
        block: Block,
        bases: Mapping[str, Base],
        previous: Optional[Block] = None,
        subject: str = "block",
    ) -> ValidationResult:
        """
        Semantic checks on a block about to be stored.

        Base references are only checked when they are new or changed;
        a reference left dangling by a base delete is kept as-is.
        """
        issues = []
        seen_ids = set()

        for index, row in enumerate(block.rows):
            prefix = f"rows.{index}"

            if row.id in seen_ids:
                issues.append(ValidationIssue(
                    field=f"{prefix}.id",
                    issue_type="duplicate",
                    message=f"Row id {row.id} appears twice in the block",
                ))
            seen_ids.add(row.id)

            old_row = previous.find_row(row.id) if previous else None
            for ref_field in ("from_base_id", "to_base_id"):
                base_id = getattr(row, ref_field)
                if not base_id or base_id in bases:
                    continue
                if old_row is not None and getattr(old_row, ref_field) == base_id:
                    continue
                issues.append(ValidationIssue(
                    field=f"{prefix}.{ref_field}",
                    issue_type="unknown_reference",
                    message=f"Base {base_id} does not exist",
                    suggested_fix="Pick one of the existing bases",
                ))

            if block.type == BlockType.INCOME and not row.to_base_id:
                issues.append(ValidationIssue(
                    field=f"{prefix}.to_base_id",
                    issue_type="missing",
                    message="Income row has no destination base; executing it moves nothing",
                    severity="warning",
                ))
            elif block.type == BlockType.FIXED_BILL and not row.from_base_id:
                issues.append(ValidationIssue(
                    field=f"{prefix}.from_base_id",
                    issue_type="missing",
                    message="Fixed bill row has no source base; executing it moves nothing",
                    severity="warning",
                ))
            elif block.type == BlockType.FLOW and not (row.from_base_id or row.to_base_id):
                issues.append(ValidationIssue(
                    field=f"{prefix}",
                    issue_type="missing",
                    message="Flow row has neither a source nor a destination base",
                    severity="warning",
                ))

            if row.flow_mode == FlowMode.PERCENT and row.flow_value is not None:
                if not (Decimal("0") <= row.flow_value <= Decimal("100")):
                    issues.append(ValidationIssue(
                        field=f"{prefix}.flow_value",
                        issue_type="invalid_value",
                        message="Percentage flow value must be between 0 and 100",
                    ))

        return ValidationResult(subject=subject, issues=issues)

    def validate_fixed_bill(
        self,
        bill: FixedBill,
        bases: Mapping[str, Base],
        previous: Optional[FixedBill] = None,
    ) -> ValidationResult:
        """Same reference rule as blocks: only new or changed base ids are checked."""
        issues = []
        base_id = bill.from_base_id
        unchanged = previous is not None and previous.from_base_id == base_id
        if base_id and base_id not in bases and not unchanged:
            issues.append(ValidationIssue(
                field="from_base_id",
                issue_type="unknown_reference",
                message=f"Base {base_id} does not exist",
                suggested_fix="Pick one of the existing bases",
            ))
        return ValidationResult(subject="fixed bill", issues=issues)

    def validate_band(self, band: PayPeriodBand, bands: Mapping[str, PayPeriodBand]) -> ValidationResult:
        issues = []
        if band.start_date > band.end_date:
            issues.append(ValidationIssue(
                field="end_date",
                issue_type="invalid_range",
                message="End date cannot be before start date",
            ))
        else:
            others = {k: v for k, v in bands.items() if k != band.id}
            others[band.id] = band
            overlapping = [
                pair for pair in find_overlaps(others) if band.id in pair
            ]
            if overlapping:
                issues.append(ValidationIssue(
                    field="start_date",
                    issue_type="overlap",
                    message=f"Band overlaps {len(overlapping)} other band(s); the earlier band wins",
                    severity="warning",
                ))
        return ValidationResult(subject="band", issues=issues)

    def validate_schedule(self, schedule: PaySchedule) -> ValidationResult:
        issues = []
        stepped = (ScheduleFrequency.WEEKLY, ScheduleFrequency.BI_WEEKLY)
        if schedule.frequency in stepped and schedule.anchor_date is None:
            issues.append(ValidationIssue(
                field="anchor_date",
                issue_type="missing",
                message="Weekly schedules without an anchor date step from today",
                severity="warning",
            ))
        return ValidationResult(subject="schedule", issues=issues)

    def validate_reassign_target(
        self,
        subject: str,
        deleted_id: str,
        target_id: Optional[str],
        existing: Mapping[str, Any],
    ) -> ValidationResult:
        issues = []
        if target_id is not None and (target_id == deleted_id or target_id not in existing):
            issues.append(ValidationIssue(
                field="reassign_to",
                issue_type="unknown_reference",
                message=f"Cannot reassign to {subject} {target_id}: it does not exist",
            ))
        return ValidationResult(subject=subject, issues=issues)

    def validate_master_list(self, list_name: str, value: str) -> ValidationResult:
        issues = []
        if list_name not in MASTER_LISTS:
            issues.append(ValidationIssue(
                field="list_name",
                issue_type="invalid_value",
                message=f"Unknown master list: {list_name}",
                suggested_fix=f"Use one of: {', '.join(MASTER_LISTS)}",
            ))
        if not value or not value.strip():
            issues.append(ValidationIssue(
                field="value",
                issue_type="missing",
                message="Value cannot be empty",
            ))
        return ValidationResult(subject="master list", issues=issues)

