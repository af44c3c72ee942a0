# tests/test_mutations.py

from __future__ import annotations

import asyncio

import pytest

from taskdeck.board.models import ColumnType, Role
from taskdeck.board.records import is_temp_id
from taskdeck.board.views import NO_STATUS_KEY
from taskdeck.core.errors import ConflictError, NotFoundError, ValidationError

# ---- load ----


@pytest.mark.asyncio
async def test_load_orders_columns_and_keeps_records(session) -> None:
    assert await session.load()

    assert [c.id for c in session.columns] == ["c-title", "c-status", "c-points", "c-due"]
    assert [r.id for r in session.records] == ["r1", "r2", "r3"]
    assert [m.role for m in session.members] == [Role.OWNER]


@pytest.mark.asyncio
async def test_load_failure_is_reported(session, persistence, notifier) -> None:
    persistence.records.fail_next("list")
    assert not await session.load()
    assert session.records == ()
    assert len(notifier.notices) == 1


# ---- records ----


@pytest.mark.asyncio
async def test_update_record_merges_and_persists(session, persistence) -> None:
    await session.load()

    assert await session.update_record("r2", {"c-points": 8})

    local = session.record("r2")
    assert local.properties == {"c-title": "Fix login bug", "c-status": "Done", "c-points": 8}
    assert persistence.records.rows["r2"]["properties"] == local.properties


@pytest.mark.asyncio
async def test_update_failure_restores_exact_snapshot(session, persistence, notifier) -> None:
    await session.load()
    before = session.records

    persistence.records.fail_next("update")
    assert not await session.update_record("r1", {"c-title": "Changed"})

    assert session.records is before
    assert notifier.messages == ["Could not save your change. It was undone."]
    assert persistence.records.rows["r1"]["properties"]["c-title"] == "Write docs"


@pytest.mark.asyncio
async def test_local_apply_happens_before_remote_completes(session, persistence) -> None:
    await session.load()
    gate = persistence.records.hold_next("update")

    task = asyncio.create_task(session.update_record("r1", {"c-status": "Done"}))
    await asyncio.sleep(0)
    assert session.record("r1").properties["c-status"] == "Done"
    assert persistence.records.rows["r1"]["properties"]["c-status"] == "To Do"

    gate.set()
    assert await task
    assert persistence.records.rows["r1"]["properties"]["c-status"] == "Done"


@pytest.mark.asyncio
async def test_create_record_is_visible_immediately_with_temp_id(session, persistence) -> None:
    await session.load()

    pending = session.create_record({"c-title": "New task"})
    assert is_temp_id(pending.temp_id)
    assert session.records[0].id == pending.temp_id
    assert session.records[0].properties == {"c-title": "New task"}

    server_id = await pending
    assert server_id is not None and not is_temp_id(server_id)
    assert session.records[0].id == server_id
    assert session.resolve_id(pending.temp_id) == server_id
    assert persistence.records.rows[server_id]["properties"] == {"c-title": "New task"}


@pytest.mark.asyncio
async def test_add_record_seeds_primary_column(session, persistence) -> None:
    await session.load()
    server_id = await session.add_record({"c-status": "To Do"})
    assert persistence.records.rows[server_id]["properties"] == {"c-status": "To Do", "c-title": ""}


@pytest.mark.asyncio
async def test_failed_create_leaves_collection_identical(session, persistence, notifier) -> None:
    await session.load()
    before = session.records

    persistence.records.fail_next("insert")
    pending = session.create_record({"c-title": "Doomed"})
    assert len(session.records) == 4

    assert await pending is None
    assert session.records is before
    assert notifier.messages == ["Could not create the item. Your change was undone."]


@pytest.mark.asyncio
async def test_edit_of_pending_record_waits_for_server_id(session, persistence) -> None:
    await session.load()
    gate = persistence.records.hold_next("insert")

    pending = session.create_record({"c-title": "Draft"})
    edit = asyncio.create_task(session.update_record(pending.temp_id, {"c-points": 2}))
    await asyncio.sleep(0)
    assert session.record(pending.temp_id).properties["c-points"] == 2
    assert persistence.records.calls_of("update") == []

    gate.set()
    server_id = await pending
    assert await edit

    (target, fields), = persistence.records.calls_of("update")
    assert target == server_id
    assert fields["properties"] == {"c-title": "Draft", "c-points": 2}
    assert session.record(server_id).properties == {"c-title": "Draft", "c-points": 2}


@pytest.mark.asyncio
async def test_delete_of_failed_pending_record_is_a_noop(session, persistence) -> None:
    await session.load()
    gate = persistence.records.hold_next("insert")
    persistence.records.fail_next("insert")

    pending = session.create_record({"c-title": "Short lived"})
    delete = asyncio.create_task(session.delete_record(pending.temp_id))
    await asyncio.sleep(0)
    assert [r.id for r in session.records] == ["r1", "r2", "r3"]

    gate.set()
    assert await pending is None
    assert await delete
    assert persistence.records.calls_of("delete") == []
    assert [r.id for r in session.records] == ["r1", "r2", "r3"]


@pytest.mark.asyncio
async def test_out_of_order_completions_reconcile_by_id(session, persistence) -> None:
    await session.load()
    first_gate = persistence.records.hold_next("update")
    second_gate = persistence.records.hold_next("update")

    first = asyncio.create_task(session.update_record("r1", {"c-points": 1}))
    second = asyncio.create_task(session.update_record("r2", {"c-points": 2}))
    await asyncio.sleep(0)

    second_gate.set()
    assert await second
    first_gate.set()
    assert await first

    assert session.record("r1").properties["c-points"] == 1
    assert session.record("r2").properties["c-points"] == 2
    assert persistence.records.rows["r1"]["properties"]["c-points"] == 1
    assert persistence.records.rows["r2"]["properties"]["c-points"] == 2


@pytest.mark.asyncio
async def test_patches_to_one_record_are_sent_in_order_against_server_state(session, persistence) -> None:
    await session.load()
    gate = persistence.records.hold_next("update")
    persistence.records.fail_next("update")

    first = asyncio.create_task(session.update_record("r1", {"c-title": "Lost"}))
    second = asyncio.create_task(session.update_record("r1", {"c-points": 9}))
    await asyncio.sleep(0)
    assert len(persistence.records.calls_of("update")) == 1

    gate.set()
    assert not await first
    assert await second

    _, payload = persistence.records.calls_of("update")[1]
    assert payload["properties"]["c-title"] == "Write docs"
    assert payload["properties"]["c-points"] == 9
    assert session.record("r1").properties["c-title"] == "Write docs"
    assert session.record("r1").properties["c-points"] == 9


@pytest.mark.asyncio
async def test_failed_update_keeps_other_records_confirmed_meanwhile(session, persistence, notifier) -> None:
    await session.load()
    gate = persistence.records.hold_next("update")
    persistence.records.fail_next("update")

    failing = asyncio.create_task(session.update_record("r1", {"c-title": "Changed"}))
    await asyncio.sleep(0)
    assert await session.update_record("r2", {"c-points": 42})

    gate.set()
    assert not await failing

    assert session.record("r1").properties["c-title"] == "Write docs"
    assert session.record("r2").properties["c-points"] == 42
    assert persistence.records.rows["r2"]["properties"]["c-points"] == 42
    assert notifier.messages == ["Could not save your change. It was undone."]


@pytest.mark.asyncio
async def test_failed_update_keeps_records_created_meanwhile(session, persistence) -> None:
    await session.load()
    update_gate = persistence.records.hold_next("update")
    persistence.records.fail_next("update")
    insert_gate = persistence.records.hold_next("insert")

    failing = asyncio.create_task(session.update_record("r1", {"c-title": "Changed"}))
    await asyncio.sleep(0)
    pending = session.create_record({"c-title": "New"})
    await asyncio.sleep(0)

    update_gate.set()
    assert not await failing
    assert session.records[0].id == pending.temp_id

    insert_gate.set()
    server_id = await pending
    assert server_id in persistence.records.rows
    assert [r.id for r in session.records] == [server_id, "r1", "r2", "r3"]
    assert session.record("r1").properties["c-title"] == "Write docs"


@pytest.mark.asyncio
async def test_failed_delete_reinserts_only_that_record(session, persistence) -> None:
    await session.load()
    gate = persistence.records.hold_next("delete")
    persistence.records.fail_next("delete")

    deleting = asyncio.create_task(session.delete_record("r2"))
    await asyncio.sleep(0)
    assert [r.id for r in session.records] == ["r1", "r3"]
    assert await session.update_record("r3", {"c-points": 7})

    gate.set()
    assert not await deleting
    assert [r.id for r in session.records] == ["r1", "r2", "r3"]
    assert session.record("r3").properties["c-points"] == 7
    assert "r2" in persistence.records.rows


@pytest.mark.asyncio
async def test_session_holds_creation_tasks_until_done(session) -> None:
    await session.load()

    temp_id = session.create_record({"c-title": "Fire and forget"}).temp_id
    (task,) = session._tasks
    assert await task is not None
    await asyncio.sleep(0)

    assert session._tasks == set()
    assert session.resolve_id(temp_id) != temp_id


@pytest.mark.asyncio
async def test_delete_record_rollback(session, persistence, notifier) -> None:
    await session.load()
    before = session.records

    persistence.records.fail_next("delete")
    assert not await session.delete_record("r2")
    assert session.records is before
    assert notifier.messages == ["Could not delete the item. It was restored."]

    assert await session.delete_record("r2")
    assert [r.id for r in session.records] == ["r1", "r3"]
    assert "r2" not in persistence.records.rows


@pytest.mark.asyncio
async def test_repeated_rollback_notifies_subscribers_once(session, persistence) -> None:
    await session.load()
    seen = []
    unsubscribe = session.subscribe(seen.append)
    before = session.records

    session.state.set_records(before)
    assert seen == []

    persistence.records.fail_next("update")
    await session.update_record("r1", {"c-title": "x"})
    assert len(seen) == 2  # apply + rollback
    session.state.set_records(before)
    assert len(seen) == 2

    unsubscribe()
    await session.update_record("r1", {"c-title": "y"})
    assert len(seen) == 2


@pytest.mark.asyncio
async def test_reorder_record(session, persistence) -> None:
    await session.load()
    assert await session.reorder_record("r3", 0)

    assert [(r.id, r.position) for r in session.records] == [("r3", 0), ("r1", 1), ("r2", 2)]
    assert {rid: row["position"] for rid, row in persistence.records.rows.items()} == {"r1": 1, "r2": 2, "r3": 0}


@pytest.mark.asyncio
async def test_move_record_to_lane(session, persistence) -> None:
    await session.load()

    assert await session.move_record_to_lane("r1", "Done")
    assert session.record("r1").properties["c-status"] == "Done"

    calls = len(persistence.records.calls_of("update"))
    assert await session.move_record_to_lane("r1", "Done")
    assert len(persistence.records.calls_of("update")) == calls

    assert await session.move_record_to_lane("r1", NO_STATUS_KEY)
    assert session.record("r1").properties["c-status"] == ""

    with pytest.raises(NotFoundError):
        await session.move_record_to_lane("r1", "Shipped")


# ---- columns ----


@pytest.mark.asyncio
async def test_add_column_appends_with_server_id(session, persistence) -> None:
    await session.load()

    col = await session.add_column("Priority", "select", ["Low", "High"])

    assert col is not None and not is_temp_id(col.id)
    assert col.position == 4
    assert session.columns[-1].id == col.id
    row = persistence.columns.rows[col.id]
    assert row["type"] == "select"
    assert [o["label"] for o in row["options"]["choices"]] == ["Low", "High"]


@pytest.mark.asyncio
async def test_add_column_validation_happens_before_dispatch(session, persistence) -> None:
    await session.load()
    with pytest.raises(ValidationError):
        await session.add_column("  ", "text")
    assert persistence.columns.calls_of("insert") == []


@pytest.mark.asyncio
async def test_add_column_failure_rolls_back(session, persistence, notifier) -> None:
    await session.load()
    before = session.columns

    persistence.columns.fail_next("insert")
    assert await session.add_column("Estimate", ColumnType.NUMBER) is None
    assert session.columns is before
    assert len(notifier.notices) == 1


@pytest.mark.asyncio
async def test_values_written_against_pending_column_get_server_key(session, persistence) -> None:
    await session.load()
    gate = persistence.columns.hold_next("insert")

    add = asyncio.create_task(session.add_column("Owner", "person"))
    await asyncio.sleep(0)
    temp_col = session.columns[-1].id
    edit = asyncio.create_task(session.update_record("r1", {temp_col: "u-ana"}))
    await asyncio.sleep(0)

    gate.set()
    col = await add
    assert await edit

    assert session.record("r1").properties[col.id] == "u-ana"
    assert temp_col not in session.record("r1").properties
    assert persistence.records.rows["r1"]["properties"][col.id] == "u-ana"


@pytest.mark.asyncio
async def test_update_column_rename_and_rollback(session, persistence, notifier) -> None:
    await session.load()

    assert await session.update_column("c-points", {"name": "Story points", "number_format": "decimal"})
    assert session.column("c-points").name == "Story points"
    assert persistence.columns.rows["c-points"]["options"] == {"format": "decimal"}

    before = session.columns
    persistence.columns.fail_next("update")
    assert not await session.update_column("c-points", {"name": "Effort"})
    assert session.columns is before
    assert notifier.messages == ["Could not save your change. It was undone."]


@pytest.mark.asyncio
async def test_delete_column_keeps_record_values(session, persistence) -> None:
    await session.load()

    assert await session.delete_column("c-status")

    assert [(c.id, c.position) for c in session.columns] == [("c-title", 0), ("c-points", 1), ("c-due", 2)]
    assert "c-status" not in persistence.columns.rows
    assert persistence.columns.rows["c-due"]["position"] == 2
    assert session.record("r1").properties["c-status"] == "To Do"


@pytest.mark.asyncio
async def test_delete_primary_column_is_rejected(session, persistence) -> None:
    await session.load()
    with pytest.raises(ValidationError):
        await session.delete_column("c-title")
    assert persistence.columns.calls_of("delete") == []


@pytest.mark.asyncio
async def test_failed_column_delete_restores_column(session, persistence, notifier) -> None:
    await session.load()
    before = session.columns

    persistence.columns.fail_next("delete")
    assert not await session.delete_column("c-status")

    assert session.columns is before
    assert "c-status" in persistence.columns.rows
    assert persistence.columns.calls_of("update") == []
    assert notifier.messages == ["Could not delete the item. It was restored."]


@pytest.mark.asyncio
async def test_failed_column_delete_keeps_concurrent_rename(session, persistence) -> None:
    await session.load()
    gate = persistence.columns.hold_next("delete")
    persistence.columns.fail_next("delete")

    deleting = asyncio.create_task(session.delete_column("c-status"))
    await asyncio.sleep(0)
    assert await session.update_column("c-points", {"name": "Effort"})

    gate.set()
    assert not await deleting
    assert [(c.id, c.position) for c in session.columns] == [
        ("c-title", 0),
        ("c-status", 1),
        ("c-points", 2),
        ("c-due", 3),
    ]
    assert session.column("c-points").name == "Effort"


@pytest.mark.asyncio
async def test_column_stays_deleted_when_position_write_fails(session, persistence, notifier) -> None:
    await session.load()
    persistence.columns.fail_next("update")

    assert not await session.delete_column("c-status")

    assert "c-status" not in persistence.columns.rows
    assert [c.id for c in session.columns] == ["c-title", "c-points", "c-due"]
    assert notifier.messages == ["Could not save the new order. Reload the board to see what was kept."]

    assert await session.update_column("c-due", {"name": "Deadline"})
    assert persistence.columns.rows["c-due"]["name"] == "Deadline"


@pytest.mark.asyncio
async def test_reorder_column_persists_changed_positions(session, persistence) -> None:
    await session.load()

    assert await session.reorder_column("c-points", 1)

    assert [(c.id, c.position) for c in session.columns] == [
        ("c-title", 0),
        ("c-points", 1),
        ("c-status", 2),
        ("c-due", 3),
    ]
    assert sorted(target for target, _ in persistence.columns.calls_of("update")) == ["c-points", "c-status"]


@pytest.mark.asyncio
async def test_reorder_column_failure_restores_order(session, persistence, notifier) -> None:
    await session.load()
    before = session.columns

    persistence.columns.fail_next("update")
    assert not await session.reorder_column("c-due", 1)
    assert session.columns is before
    assert notifier.messages == ["Could not save the new order. The previous order was restored."]


@pytest.mark.asyncio
async def test_failed_reorder_moves_back_only_that_column(session, persistence) -> None:
    await session.load()
    gate = persistence.columns.hold_next("update")
    persistence.columns.fail_next("update")

    reorder = asyncio.create_task(session.reorder_column("c-due", 1))
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert await session.update_column("c-points", {"name": "Effort"})

    gate.set()
    assert not await reorder
    assert [(c.id, c.position) for c in session.columns] == [
        ("c-title", 0),
        ("c-status", 1),
        ("c-points", 2),
        ("c-due", 3),
    ]
    assert session.column("c-points").name == "Effort"


@pytest.mark.asyncio
async def test_reorder_onto_primary_is_rejected(session) -> None:
    await session.load()
    with pytest.raises(ValidationError):
        await session.reorder_column_onto("c-status", "c-title")


@pytest.mark.asyncio
async def test_column_drag_dispatches_single_reorder(session, persistence) -> None:
    await session.load()
    drag = session.column_drag()

    drag.start("c-due")
    drag.move("c-status")
    assert [c.id for c in session.columns] == ["c-title", "c-status", "c-points", "c-due"]
    assert await drag.drop()

    assert [c.id for c in session.columns] == ["c-title", "c-due", "c-status", "c-points"]
    assert len(persistence.columns.calls_of("update")) == 3


# ---- extension properties ----


@pytest.mark.asyncio
async def test_checklist_and_attachments(session, persistence, files) -> None:
    await session.load()

    assert await session.add_checklist_item("r1", "Outline")
    item = session.record("r1").properties["checklist"][0]
    assert item["text"] == "Outline" and item["completed"] is False

    assert await session.toggle_checklist_item("r1", item["id"])
    assert session.record("r1").properties["checklist"][0]["completed"] is True

    url = await session.attach_file("r1", b"hello", "notes.txt")
    assert url == "memory://files/1/notes.txt"
    (attachment,) = persistence.records.rows["r1"]["properties"]["attachments"]
    assert attachment["name"] == "notes.txt" and attachment["size"] == 5
    assert persistence.records.rows["r1"]["properties"]["checklist"][0]["completed"] is True

    with pytest.raises(ValidationError):
        await session.add_checklist_item("r1", "  ")


@pytest.mark.asyncio
async def test_upload_failure_leaves_record_untouched(session, files, notifier) -> None:
    await session.load()
    before = session.records
    files.fail = True

    assert await session.attach_file("r1", b"x", "a.png") is None
    assert session.records is before
    assert notifier.messages == ["Upload failed. Please try again."]


# ---- members ----


@pytest.mark.asyncio
async def test_invite_member(session, persistence) -> None:
    await session.load()

    member = await session.invite_member(" Ana@Example.com ")

    assert member is not None
    assert member.role == Role.EDITOR
    assert member.email == "ana@example.com"
    assert [m.user_ref for m in session.members] == ["u-owner", "u-ana"]
    assert persistence.members.rows[member.id]["user_ref"] == "u-ana"


@pytest.mark.asyncio
async def test_invite_errors_do_not_change_state(session, persistence) -> None:
    await session.load()
    before = session.members

    with pytest.raises(ValidationError):
        await session.invite_member("not-an-email")
    with pytest.raises(ValidationError):
        await session.invite_member("ana@example.com", Role.OWNER)
    with pytest.raises(NotFoundError):
        await session.invite_member("ghost@example.com")
    with pytest.raises(ConflictError):
        await session.invite_member("owner@example.com", "viewer")

    assert session.members is before
    assert persistence.members.calls_of("insert") == []


@pytest.mark.asyncio
async def test_remove_member(session, persistence, notifier) -> None:
    await session.load()
    member = await session.invite_member("ana@example.com", "viewer")

    with pytest.raises(ValidationError):
        await session.remove_member("m-owner")

    before = session.members
    persistence.members.fail_next("delete")
    assert not await session.remove_member(member.id)
    assert session.members is before
    assert notifier.messages == ["Could not remove the item. It was restored."]

    assert await session.remove_member(member.id)
    assert [m.id for m in session.members] == ["m-owner"]
