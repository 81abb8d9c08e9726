"""Pluggable construction of :class:`TimeLogRecord` instances."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from timelog_provider.core.data_models import RawWorkItem, TimeLogRecord


@runtime_checkable
class RecordFactory(Protocol):
    """Creates records and fills in consumer-specific fields.

    ``custom_fields`` lists extra field reference names that must be
    requested from the server so :meth:`populate_custom_fields` can read
    them off the raw work item.
    """

    @property
    def custom_fields(self) -> list[str]:
        ...

    def create(self) -> TimeLogRecord:
        ...

    def populate_custom_fields(self, raw: RawWorkItem, record: TimeLogRecord) -> None:
        ...


class DefaultRecordFactory:
    """Plain :class:`TimeLogRecord` instances and no extra fields."""

    @property
    def custom_fields(self) -> list[str]:
        return []

    def create(self) -> TimeLogRecord:
        return TimeLogRecord()

    def populate_custom_fields(self, raw: RawWorkItem, record: TimeLogRecord) -> None:
        pass


class FieldCopyRecordFactory(DefaultRecordFactory):
    """Copy the listed raw fields verbatim into ``record.custom_fields``.

    Fields the server omitted for a work item are stored as ``None``.
    """

    def __init__(self, field_names: list[str]) -> None:
        self._field_names = list(field_names)

    @property
    def custom_fields(self) -> list[str]:
        return list(self._field_names)

    def populate_custom_fields(self, raw: RawWorkItem, record: TimeLogRecord) -> None:
        for name in self._field_names:
            record.custom_fields[name] = raw.fields.get(name)
