"""
Tests for ApprovalSelector -- listings, display fields and keyset cursors.
"""

from uuid import uuid4

import pytest

from approval_kernel.domain.approval import Decision, InstanceStatus, WorkItemStatus
from approval_kernel.exceptions import (
    InstanceNotFoundError,
    InvalidCursorError,
    ValidationError,
    WorkItemNotFoundError,
)
from approval_kernel.selectors.approval_selector import ApprovalSelector


@pytest.fixture
def selector(session, directory):
    return ApprovalSelector(session, directory=directory, default_page_size=3, max_page_size=5)


@pytest.fixture
def seeded(engine, create_process, tenant_id, submitter_id, approvers, deterministic_clock):
    """Seven pending instances; the first two share a timestamp."""
    process = create_process([[approvers[0]], [approvers[1]]])
    ids = []
    for n in range(7):
        if n >= 2:
            deterministic_clock.tick()
        instance = engine.submit(tenant_id, submitter_id, "opportunity", uuid4(), process.process_id)
        ids.append(instance.id)
    return process, ids


def _drain(fetch):
    """Follow next_cursor until exhausted; returns the pages."""
    pages = [fetch(None)]
    while pages[-1].has_more:
        pages.append(fetch(pages[-1].next_cursor))
    return pages


class TestInstanceListing:

    def test_pages_cover_every_row_exactly_once(self, selector, seeded, tenant_id):
        _, ids = seeded

        pages = _drain(lambda cursor: selector.list_instances(tenant_id, cursor=cursor))

        seen = [r.id for p in pages for r in p.records]
        assert sorted(seen, key=str) == sorted(ids, key=str)
        assert len(seen) == len(set(seen))
        assert [len(p.records) for p in pages] == [3, 3, 1]
        assert all(p.total_size == 7 for p in pages)
        assert pages[-1].next_cursor is None

    def test_newest_first(self, selector, seeded, tenant_id):
        _, ids = seeded
        page = selector.list_instances(tenant_id, limit=5)
        assert [r.id for r in page.records][:5] == list(reversed(ids))[:5]

    def test_limit_is_capped(self, selector, seeded, tenant_id):
        page = selector.list_instances(tenant_id, limit=100)
        assert len(page.records) == 5
        assert page.has_more

    def test_filters(self, engine, selector, seeded, tenant_id, submitter_id, approvers):
        _, ids = seeded
        engine.recall(tenant_id, submitter_id, ids[0])
        first = engine.get_instance(tenant_id, ids[0])

        recalled = selector.list_instances(tenant_id, status=InstanceStatus.RECALLED)
        assert [r.id for r in recalled.records] == [ids[0]]
        assert recalled.total_size == 1

        by_record = selector.list_instances(tenant_id, target_record_id=first.target_record_id)
        assert [r.id for r in by_record.records] == [ids[0]]

        assert selector.list_instances(tenant_id, target_object_type="contract").total_size == 0
        assert selector.list_instances(tenant_id, submitted_by=approvers[0]).total_size == 0
        assert selector.list_instances(uuid4()).total_size == 0

    def test_invalid_cursor(self, selector, tenant_id):
        with pytest.raises(InvalidCursorError):
            selector.list_instances(tenant_id, cursor="garbage")

    def test_unknown_status_is_a_field_error(self, selector, tenant_id):
        with pytest.raises(ValidationError) as exc_info:
            selector.list_instances(tenant_id, status="archived")
        assert exc_info.value.field == "status"
        assert exc_info.value.code == "VALIDATION_ERROR"

    def test_status_accepts_plain_value(self, selector, seeded, tenant_id):
        assert selector.list_instances(tenant_id, status="pending").total_size == 7

    def test_display_fields(self, selector, seeded, tenant_id):
        process, ids = seeded
        instance = selector.get_instance(tenant_id, ids[0])
        assert instance.process_name == process.name
        assert instance.submitter_name == "Sam Submitter"

    def test_find_and_get(self, selector, tenant_id):
        assert selector.find_instance_by_id(tenant_id, uuid4()) is None
        with pytest.raises(InstanceNotFoundError):
            selector.get_instance(tenant_id, uuid4())


class TestWorkItemListing:

    def test_my_pending_items_paginate(self, selector, seeded, tenant_id, approvers):
        pages = _drain(
            lambda cursor: selector.list_my_work_items(tenant_id, approvers[0], cursor=cursor)
        )

        seen = [r.id for p in pages for r in p.records]
        assert len(seen) == 7 == len(set(seen))
        assert all(r.status is WorkItemStatus.PENDING for p in pages for r in p.records)

    def test_my_items_carry_target_and_process(self, selector, seeded, tenant_id, approvers):
        process, ids = seeded
        page = selector.list_my_work_items(tenant_id, approvers[0], limit=1)
        item = page.records[0]
        assert item.process_name == process.name
        assert item.target_object_type == "opportunity"
        assert item.target_record_id is not None
        assert item.approver_name == "Approver 1"
        assert item.instance_id == ids[-1]

    def test_status_filter(self, engine, selector, seeded, tenant_id, approvers):
        _, ids = seeded
        item = selector.list_my_work_items(tenant_id, approvers[0], limit=1).records[0]
        engine.decide(tenant_id, approvers[0], item.id, Decision.APPROVE)

        pending = selector.list_my_work_items(tenant_id, approvers[0])
        approved = selector.list_my_work_items(tenant_id, approvers[0], status=WorkItemStatus.APPROVED)
        everything = selector.list_my_work_items(tenant_id, approvers[0], status=None)

        assert pending.total_size == 6
        assert [r.id for r in approved.records] == [item.id]
        assert everything.total_size == 7
        assert selector.list_my_work_items(tenant_id, approvers[1]).total_size == 1

    def test_unknown_status_is_a_field_error(self, selector, tenant_id, approvers):
        with pytest.raises(ValidationError) as exc_info:
            selector.list_my_work_items(tenant_id, approvers[0], status="snoozed")
        assert exc_info.value.field == "status"

    def test_find_and_get(self, selector, tenant_id):
        assert selector.find_work_item_by_id(tenant_id, uuid4()) is None
        with pytest.raises(WorkItemNotFoundError):
            selector.get_work_item(tenant_id, uuid4())

    def test_items_for_instance_in_step_order(self, engine, selector, seeded, tenant_id, approvers):
        _, ids = seeded
        first = selector.list_work_items_for_instance(tenant_id, ids[0])[0]
        engine.decide(tenant_id, approvers[0], first.id, Decision.APPROVE)

        items = selector.list_work_items_for_instance(tenant_id, ids[0])

        assert [(i.step_number, i.approver_id) for i in items] == [
            (1, approvers[0]),
            (2, approvers[1]),
        ]
        assert selector.list_work_items_for_instance(uuid4(), ids[0]) == []
