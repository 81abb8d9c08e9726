"""Linked/unlinked work item reconciliation for one iteration."""

from __future__ import annotations

import logging
from datetime import date
from typing import Callable, Iterable

from timelog_provider.core.converter import convert_work_items
from timelog_provider.core.data_models import (
    IterationFilter,
    RawWorkItem,
    TimeLogRecord,
    WorkItemLink,
)
from timelog_provider.core.fields import REMOVED_STATE, TASK_TYPE
from timelog_provider.core.record_factory import DefaultRecordFactory, RecordFactory
from timelog_provider.core.tfs_client import TfsClient, TfsSession

logger = logging.getLogger(__name__)

PostProcessHook = Callable[[list[TimeLogRecord]], "list[TimeLogRecord] | None"]


class WorkItemReconciler:
    """Produce the deduplicated, relationship-aware records for an iteration.

    *connect* is called once per :meth:`load_data` and must return a fresh
    :class:`TfsSession`; the session is closed before returning.
    *post_process* receives the final list and may either edit it in
    place (returning ``None``) or return a replacement list.
    """

    def __init__(
        self,
        client: TfsClient,
        connect: Callable[[], TfsSession],
        *,
        factory: RecordFactory | None = None,
        post_process: PostProcessHook | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._client = client
        self._connect = connect
        self._factory = factory or DefaultRecordFactory()
        self._post_process = post_process
        self._names = client.field_names
        self._today = today

    def load_data(self, iteration_path: str, project_name: str) -> list[TimeLogRecord]:
        """Return one record per backlog item/bug in the iteration, tasks attached."""
        if not iteration_path:
            raise ValueError("iteration_path must not be empty")
        if not project_name:
            raise ValueError("project_name must not be empty")

        predicate = IterationFilter(project_name=project_name, iteration_path=iteration_path)
        tracking_date = self._today()
        logger.info("Loading work items for %s (project %s)", iteration_path, project_name)

        session = self._connect()
        try:
            tree = self._client.run_link_query(session, predicate)
            links = tree.links
            target_ids = _distinct(link.target_id for link in links)
            linked_raw = (
                self._client.run_query(session, self._fields(tree.columns), ids=target_ids)
                if target_ids
                else []
            )
            linked = self._convert(linked_raw, tracking_date)
            records = build_relation_map(linked, links)

            flat_raw = self._client.run_query(session, self._fields(), predicate=predicate)
            flat = self._convert(flat_raw, tracking_date)
        finally:
            session.close()

        appended = merge_unlinked(records, flat)
        logger.info(
            "Reconciled %d records (%d from links, %d standalone)",
            len(records), len(records) - appended, appended,
        )

        if self._post_process is not None:
            replacement = self._post_process(records)
            if replacement is not None:
                records = replacement
        return records

    # -- internals ------------------------------------------------------------

    def _fields(self, columns: Iterable[str] = ()) -> list[str]:
        """The query's columns plus whatever conversion and the factory read."""
        fields = list(dict.fromkeys(columns))
        for name in [*self._names.query_columns, *self._factory.custom_fields]:
            if name not in fields:
                fields.append(name)
        return fields

    def _convert(self, raw_items: Iterable[RawWorkItem], tracking_date: date) -> list[TimeLogRecord]:
        return convert_work_items(
            raw_items,
            field_names=self._names,
            factory=self._factory,
            tracking_date=tracking_date,
        )


def build_relation_map(
    records: list[TimeLogRecord], links: Iterable[WorkItemLink]
) -> list[TimeLogRecord]:
    """Select root-linked records as parents and attach their live tasks.

    Parents keep the order in which they appear in *records*.
    """
    links = list(links)
    root_ids = {link.target_id for link in links if link.is_root}
    children: dict[int, set[int]] = {}
    for link in links:
        if not link.is_root:
            children.setdefault(link.source_id, set()).add(link.target_id)

    parents: list[TimeLogRecord] = []
    seen: set[int] = set()
    for record in records:
        if record.work_item_id not in root_ids or record.work_item_id in seen:
            continue
        seen.add(record.work_item_id)
        child_ids = children.get(record.work_item_id, set())
        record.tasks = [
            candidate
            for candidate in records
            if candidate.work_item_id in child_ids and _is_live_task(candidate)
        ]
        parents.append(record)
    return parents


def merge_unlinked(parents: list[TimeLogRecord], records: Iterable[TimeLogRecord]) -> int:
    """Append to *parents* every record whose id is not there yet.

    Returns the number of records appended.
    """
    present = {record.work_item_id for record in parents}
    appended = 0
    for record in records:
        if record.work_item_id in present:
            continue
        present.add(record.work_item_id)
        parents.append(record)
        appended += 1
    return appended


def _is_live_task(record: TimeLogRecord) -> bool:
    return record.type == TASK_TYPE and record.state != REMOVED_STATE


def _distinct(ids: Iterable[int]) -> list[int]:
    return list(dict.fromkeys(ids))
