"""Conversion of raw server work items into :class:`TimeLogRecord`."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Iterable

from timelog_provider.core.data_models import RawWorkItem, TimeLogRecord
from timelog_provider.core.errors import DataConversionError
from timelog_provider.core.fields import DONE_STATE, TASK_TYPE, FieldNames
from timelog_provider.core.record_factory import DefaultRecordFactory, RecordFactory

logger = logging.getLogger(__name__)


def convert_work_items(
    raw_items: Iterable[RawWorkItem],
    *,
    field_names: FieldNames | None = None,
    factory: RecordFactory | None = None,
    tracking_date: date | None = None,
) -> list[TimeLogRecord]:
    """Convert every raw item, in order.

    The first item that fails conversion aborts the whole batch with
    :class:`DataConversionError`.
    """
    names = field_names or FieldNames()
    factory = factory or DefaultRecordFactory()
    today = tracking_date or date.today()
    records = [
        convert_work_item(raw, field_names=names, factory=factory, tracking_date=today)
        for raw in raw_items
    ]
    logger.debug("Converted %d work items", len(records))
    return records


def convert_work_item(
    raw: RawWorkItem,
    *,
    field_names: FieldNames | None = None,
    factory: RecordFactory | None = None,
    tracking_date: date | None = None,
) -> TimeLogRecord:
    """Build a single record from *raw*."""
    names = field_names or FieldNames()
    factory = factory or DefaultRecordFactory()

    record = factory.create()
    record.work_item_id = raw.id
    record.title = _required(raw, names.title)
    record.type = _required(raw, names.work_item_type)
    record.iteration_path = _required(raw, names.iteration_path)
    record.assigned_to = _text(raw.fields.get(names.assigned_to))
    record.state = _required(raw, names.state)

    is_task = _same(record.type, TASK_TYPE)
    record.activity = _text(raw.fields.get(names.activity)) if is_task else ""
    record.is_task_marked_as_done = is_task and _same(record.state, DONE_STATE)
    record.tracking_date = tracking_date or date.today()
    record.remaining_work = _remaining_work(raw, names.remaining_work)

    factory.populate_custom_fields(raw, record)
    return record


# -- internals ----------------------------------------------------------------


def _required(raw: RawWorkItem, name: str) -> str:
    value = raw.fields.get(name)
    if value is None:
        raise DataConversionError(
            f"Work item {raw.id} is missing required field {name!r}",
            work_item_id=raw.id,
            field=name,
        )
    return _text(value)


def _remaining_work(raw: RawWorkItem, name: str) -> float | None:
    value = raw.fields.get(name)
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise DataConversionError(
            f"Work item {raw.id} has non-numeric {name!r}: {value!r}",
            work_item_id=raw.id,
            field=name,
        ) from None


def _text(value: Any) -> str:
    """Flatten a field value to text; identity refs become their display name."""
    if value is None:
        return ""
    if isinstance(value, dict):
        return str(value.get("displayName") or value.get("uniqueName") or "")
    return str(value)


def _same(left: str, right: str) -> bool:
    return left.casefold() == right.casefold()
