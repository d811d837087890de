"""
Tests for the Board Projection - the Kanban view of one user.

These tests verify:
1. COLUMNS: four fixed columns, priority then newest first
2. FILTERS: search and priority narrow the cards
3. CARDS: draggability and overdue flags
4. OPTIMISTIC MOVES: pending, confirm, rollback, out-of-order rows
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

from gearguard.models import MaintenanceType, Priority, RequestStatus, Role
from gearguard.services import BoardProjection, RequestSnapshot

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def snapshot(
    title="Oil leak",
    status=RequestStatus.NEW,
    priority=Priority.MEDIUM,
    created_at=None,
    updated_at=None,
    assigned_technician_id=None,
    scheduled_date=None,
    equipment_name="Hydraulic Press",
    **kwargs,
) -> RequestSnapshot:
    created_at = created_at or NOW - timedelta(hours=1)
    return RequestSnapshot(
        id=kwargs.pop("id", uuid4()),
        title=title,
        status=status,
        priority=priority,
        type=MaintenanceType.CORRECTIVE,
        equipment_id=kwargs.pop("equipment_id", uuid4()),
        created_at=created_at,
        updated_at=updated_at or created_at,
        equipment_name=equipment_name,
        assigned_technician_id=assigned_technician_id,
        scheduled_date=scheduled_date,
        **kwargs,
    )


def board_for(role=Role.MANAGER, user_id=None, **kwargs) -> BoardProjection:
    return BoardProjection(role=role, acting_user_id=user_id or uuid4(), clock=lambda: NOW, **kwargs)


# =============================================================================
# TEST: COLUMNS
# =============================================================================


class TestColumns:
    def test_four_columns_in_workflow_order(self):
        board = board_for()
        board.load([])
        assert [c.status for c in board.columns()] == [
            RequestStatus.NEW,
            RequestStatus.IN_PROGRESS,
            RequestStatus.REPAIRED,
            RequestStatus.SCRAP,
        ]
        assert all(c.count == 0 for c in board.columns())

    def test_cards_sorted_by_priority_then_newest(self):
        low = snapshot(title="low", priority=Priority.LOW)
        old_high = snapshot(title="old high", priority=Priority.HIGH, created_at=NOW - timedelta(days=2))
        new_high = snapshot(title="new high", priority=Priority.HIGH, created_at=NOW - timedelta(minutes=5))
        board = board_for()
        board.load([low, old_high, new_high])

        new_column = board.groupings()[RequestStatus.NEW]
        assert new_column == [new_high.id, old_high.id, low.id]

    def test_to_dict_shape(self):
        card = snapshot()
        board = board_for()
        board.load([card])

        data = board.to_dict()
        assert [c["status"] for c in data["columns"]] == ["New", "In Progress", "Repaired", "Scrap"]
        assert data["columns"][0]["count"] == 1
        assert data["columns"][0]["cards"][0]["id"] == str(card.id)
        assert data["columns"][0]["cards"][0]["equipment_name"] == "Hydraulic Press"


# =============================================================================
# TEST: FILTERS
# =============================================================================


class TestFilters:
    def test_search_matches_title_and_equipment(self):
        pump = snapshot(title="Pump noise", equipment_name="Coolant Pump")
        press = snapshot(title="Oil leak", equipment_name="Hydraulic Press")
        board = board_for(search="press")
        board.load([pump, press])
        assert board.groupings()[RequestStatus.NEW] == [press.id]

        board.search = "NOISE"
        assert board.groupings()[RequestStatus.NEW] == [pump.id]

    def test_priority_filter(self):
        high = snapshot(priority=Priority.HIGH)
        low = snapshot(priority=Priority.LOW)
        board = board_for(priority=Priority.HIGH)
        board.load([high, low])
        assert board.groupings()[RequestStatus.NEW] == [high.id]


# =============================================================================
# TEST: CARDS
# =============================================================================


class TestCards:
    def test_requester_cards_are_not_draggable(self):
        board = board_for(role=Role.REQUESTER)
        board.load([snapshot()])
        card = board.columns()[0].cards[0]
        assert card.draggable is False

    def test_technician_draggability(self):
        me = uuid4()
        mine = snapshot(status=RequestStatus.IN_PROGRESS, assigned_technician_id=me)
        theirs = snapshot(status=RequestStatus.IN_PROGRESS, assigned_technician_id=uuid4())
        board = board_for(role=Role.TECHNICIAN, user_id=me)
        board.load([mine, theirs])

        cards = {c.snapshot.id: c for c in board.columns()[1].cards}
        assert cards[mine.id].draggable is True
        assert cards[theirs.id].draggable is False

    def test_overdue_only_for_open_requests_past_schedule(self):
        late = snapshot(scheduled_date=NOW - timedelta(days=1))
        future = snapshot(scheduled_date=NOW + timedelta(days=1))
        done = snapshot(status=RequestStatus.REPAIRED, scheduled_date=NOW - timedelta(days=1))
        board = board_for()
        board.load([late, future, done])

        overdue = {c.snapshot.id: c.is_overdue for col in board.columns() for c in col.cards}
        assert overdue == {late.id: True, future.id: False, done.id: False}


# =============================================================================
# TEST: OPTIMISTIC MOVES
# =============================================================================


class TestOptimisticMoves:
    def test_move_shows_card_in_target_column_as_pending(self):
        card = snapshot()
        board = board_for()
        board.load([card])

        decision = board.move(card.id, RequestStatus.IN_PROGRESS)

        assert decision.allowed
        groups = board.groupings()
        assert groups[RequestStatus.NEW] == []
        assert groups[RequestStatus.IN_PROGRESS] == [card.id]
        moved = board.columns()[1].cards[0]
        assert moved.pending is True
        assert moved.draggable is False
        # Confirmed state is untouched until the server answers
        assert board.confirmed[card.id].status == RequestStatus.NEW

    def test_rejected_move_changes_nothing(self):
        card = snapshot()
        board = board_for(role=Role.REQUESTER)
        board.load([card])

        decision = board.move(card.id, RequestStatus.IN_PROGRESS)

        assert not decision.allowed
        assert decision.forbidden
        assert board.pending_ids == set()

    def test_second_move_while_pending_is_rejected(self):
        card = snapshot()
        board = board_for()
        board.load([card])
        board.move(card.id, RequestStatus.IN_PROGRESS)

        decision = board.move(card.id, RequestStatus.SCRAP)
        assert not decision.allowed

    def test_rollback_restores_card(self):
        card = snapshot()
        board = board_for()
        board.load([card])
        board.move(card.id, RequestStatus.IN_PROGRESS)

        move = board.rollback(card.id)

        assert move.from_status == RequestStatus.NEW
        assert board.groupings()[RequestStatus.NEW] == [card.id]

    def test_confirm_with_server_row(self):
        card = snapshot()
        board = board_for()
        board.load([card])
        board.move(card.id, RequestStatus.IN_PROGRESS)

        server_row = snapshot(
            id=card.id,
            equipment_id=card.equipment_id,
            status=RequestStatus.IN_PROGRESS,
            created_at=card.created_at,
            updated_at=NOW,
            equipment_name=None,
        )
        board.confirm(card.id, server_row)

        assert board.pending_ids == set()
        assert board.confirmed[card.id].status == RequestStatus.IN_PROGRESS
        # Names carry over when the row does not include them
        assert board.confirmed[card.id].equipment_name == "Hydraulic Press"

    def test_older_row_does_not_overwrite_newer(self):
        card = snapshot(status=RequestStatus.IN_PROGRESS, updated_at=NOW)
        board = board_for()
        board.load([card])

        stale = snapshot(
            id=card.id,
            equipment_id=card.equipment_id,
            status=RequestStatus.NEW,
            created_at=card.created_at,
            updated_at=NOW - timedelta(minutes=1),
        )
        assert board.apply_event("UPDATE", stale) is False
        assert board.confirmed[card.id].status == RequestStatus.IN_PROGRESS

    def test_remote_change_away_from_origin_clears_pending(self):
        card = snapshot(status=RequestStatus.IN_PROGRESS)
        board = board_for()
        board.load([card])
        board.move(card.id, RequestStatus.REPAIRED)

        remote = snapshot(
            id=card.id,
            equipment_id=card.equipment_id,
            status=RequestStatus.SCRAP,
            created_at=card.created_at,
            updated_at=NOW,
        )
        assert board.apply_event("UPDATE", remote) is True
        assert board.pending_ids == set()
        assert board.groupings()[RequestStatus.SCRAP] == [card.id]

    def test_reload_drops_pending_for_vanished_requests(self):
        card = snapshot()
        board = board_for()
        board.load([card])
        board.move(card.id, RequestStatus.IN_PROGRESS)

        board.load([])
        assert board.pending_ids == set()
