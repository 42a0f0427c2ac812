import logging

import pytest

from hospital_queue.collaborators import LaneChange, publish
from hospital_queue.errors import ConflictError, NotFoundError, ValidationError
from hospital_queue.identity import Caller
from hospital_queue.modules.queue.models import QueueEntry, QueueEvent, QueueStatus
from hospital_queue.modules.queue.services import PriorityPolicy, QueueOrchestrator
from hospital_queue.modules.triage.models import PatientTriageState, TriageCategory

NURSE = Caller(staff_id="N-7", role="nurse")


def lane_ids(orchestrator, department="OPD", status="waiting"):
    return [row.id for row in orchestrator.list_lane(department, status)]


def lane_positions(orchestrator, department="OPD", status="waiting"):
    return [row.position for row in orchestrator.list_lane(department, status)]


def events_of(db, entry_id):
    return (
        db.query(QueueEvent)
        .filter(QueueEvent.queue_entry_id == entry_id)
        .order_by(QueueEvent.id)
        .all()
    )


# --- ORIGINATION ---

def test_new_entries_join_the_back_of_the_lane(queue_patient, orchestrator):
    a, b, c = queue_patient("P-1"), queue_patient("P-2"), queue_patient("P-3")
    assert [a.position, b.position, c.position] == [1, 2, 3]
    assert {a.priority, b.priority, c.priority} == {0}
    assert lane_ids(orchestrator) == [a.id, b.id, c.id]


def test_creation_writes_first_event(db, queue_patient):
    entry = queue_patient("P-1")
    events = events_of(db, entry.id)
    assert len(events) == 1
    assert events[0].from_status is None
    assert events[0].to_status == QueueStatus.WAITING


def test_create_entry_for_existing_checkin(checkins, orchestrator):
    checkin, _ = checkins.create("P-1")
    entry = orchestrator.create_entry(checkin.id, "Dental", caller=NURSE)
    assert entry.department == "Dental"
    assert entry.status == QueueStatus.WAITING
    assert entry.position == 1


def test_no_second_active_entry_for_a_checkin(db, checkins, orchestrator):
    checkin, entry = checkins.create("P-1", department="OPD")
    with pytest.raises(ConflictError) as exc:
        orchestrator.create_entry(checkin.id, "Dental")
    assert exc.value.current_status == "waiting"
    assert db.query(QueueEntry).count() == 1


def test_checkin_can_queue_again_once_finished(checkins, orchestrator):
    checkin, entry = checkins.create("P-1", department="OPD")
    orchestrator.transition(entry.id, "done")
    again = orchestrator.create_entry(checkin.id, "Pharmacy")
    assert again.id != entry.id
    assert again.status == QueueStatus.WAITING


def test_unknown_checkin(orchestrator):
    with pytest.raises(NotFoundError):
        orchestrator.create_entry(999, "OPD")


@pytest.mark.parametrize("priority", [-1, 101, "high"])
def test_bad_priority_rejected_on_create(checkins, orchestrator, priority):
    checkin, _ = checkins.create("P-1")
    with pytest.raises(ValidationError):
        orchestrator.create_entry(checkin.id, "OPD", priority=priority)


def test_bad_department_rejected(checkins, orchestrator):
    checkin, _ = checkins.create("P-1")
    with pytest.raises(ValidationError):
        orchestrator.create_entry(checkin.id, " X ")


# --- ORDERING ---

def test_higher_priority_is_served_first(queue_patient, orchestrator):
    a = queue_patient("P-1")
    b = queue_patient("P-2", priority=5)
    c = queue_patient("P-3")
    assert lane_ids(orchestrator) == [b.id, a.id, c.id]


def test_lanes_are_separate(queue_patient, orchestrator):
    a = queue_patient("P-1", department="OPD")
    b = queue_patient("P-2", department="Dental")
    assert lane_ids(orchestrator, "OPD") == [a.id]
    assert lane_ids(orchestrator, "Dental") == [b.id]
    assert b.position == 1


def test_list_lane_unknown_status(orchestrator):
    with pytest.raises(ValidationError):
        orchestrator.list_lane("OPD", "sleeping")


def test_list_lane_wait_figures(queue_patient, orchestrator, clock):
    entry = queue_patient("P-1")
    clock.advance(minutes=45)
    row = orchestrator.list_lane("OPD")[0]
    assert row.waiting_minutes == 45.0
    assert row.sla == "warn"
    assert row.in_service_minutes is None

    orchestrator.transition(entry.id, "start")
    clock.advance(minutes=70)
    row = orchestrator.list_lane("OPD", "in_service")[0]
    assert row.in_service_minutes == 70.0
    assert row.sla == "critical"


def test_list_lane_uses_patient_directory(db, clock, locks, queue_patient):
    from hospital_queue.collaborators import PatientCard, StaticDirectory

    directory = StaticDirectory({"P-1": PatientCard("P-1", "Amina Okello", "HN-0042")})
    queue_patient("P-1")
    queue_patient("P-2")
    orchestrator = QueueOrchestrator(db, locks=locks, clock=clock, patients=directory)
    rows = orchestrator.list_lane("OPD")
    assert rows[0].patient_name == "Amina Okello"
    assert rows[0].patient_number == "HN-0042"
    assert rows[1].patient_name is None


# --- STATUS TRANSITIONS ---

def test_start_then_done(db, queue_patient, orchestrator):
    entry = queue_patient("P-1")
    orchestrator.transition(entry.id, "start", NURSE)
    orchestrator.transition(entry.id, "done", NURSE)
    events = events_of(db, entry.id)
    assert [(e.from_status, e.to_status) for e in events] == [
        (None, QueueStatus.WAITING),
        (QueueStatus.WAITING, QueueStatus.IN_SERVICE),
        (QueueStatus.IN_SERVICE, QueueStatus.DONE),
    ]
    assert events[-1].actor_id == "N-7"


def test_done_straight_from_waiting(queue_patient, orchestrator):
    entry = queue_patient("P-1")
    assert orchestrator.transition(entry.id, "done").status == QueueStatus.DONE


def test_advance_is_start(queue_patient, orchestrator):
    entry = queue_patient("P-1")
    assert orchestrator.transition(entry.id, "advance").status == QueueStatus.IN_SERVICE


def test_advance_only_from_waiting(queue_patient, orchestrator):
    entry = queue_patient("P-1")
    orchestrator.transition(entry.id, "start")
    with pytest.raises(ConflictError) as exc:
        orchestrator.transition(entry.id, "start")
    assert exc.value.current_status == "in_service"


@pytest.mark.parametrize("finish", ["done", "cancel"])
@pytest.mark.parametrize("action", ["start", "done", "cancel", "waiting"])
def test_terminal_entries_never_change(db, queue_patient, orchestrator, finish, action):
    entry = queue_patient("P-1")
    orchestrator.transition(entry.id, finish)
    before = len(events_of(db, entry.id))
    with pytest.raises(ConflictError):
        orchestrator.transition(entry.id, action)
    assert len(events_of(db, entry.id)) == before
    db.refresh(entry)
    assert entry.is_terminal


def test_cancel_from_in_service(queue_patient, orchestrator):
    entry = queue_patient("P-1")
    orchestrator.transition(entry.id, "start")
    assert orchestrator.transition(entry.id, "cancel").status == QueueStatus.CANCELLED


def test_recall_rejoins_at_the_back(queue_patient, orchestrator):
    a, b, c = queue_patient("P-1"), queue_patient("P-2"), queue_patient("P-3")
    orchestrator.transition(a.id, "start")
    recalled = orchestrator.transition(a.id, "waiting")
    assert recalled.status == QueueStatus.WAITING
    assert recalled.position == 4
    assert lane_ids(orchestrator) == [b.id, c.id, a.id]


def test_recall_needs_in_service(queue_patient, orchestrator):
    entry = queue_patient("P-1")
    with pytest.raises(ConflictError):
        orchestrator.transition(entry.id, "waiting")


def test_unknown_action(queue_patient, orchestrator):
    entry = queue_patient("P-1")
    with pytest.raises(ValidationError) as exc:
        orchestrator.transition(entry.id, "teleport")
    assert exc.value.field == "action"


def test_unknown_entry(orchestrator):
    with pytest.raises(NotFoundError):
        orchestrator.transition(404, "start")


def test_failed_event_write_rolls_back_status(db, queue_patient, orchestrator, monkeypatch):
    entry = queue_patient("P-1")

    def broken_append(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(orchestrator.store.events, "append", broken_append)
    with pytest.raises(RuntimeError):
        orchestrator.transition(entry.id, "start")
    db.expire_all()
    assert db.get(QueueEntry, entry.id).status == QueueStatus.WAITING
    assert len(events_of(db, entry.id)) == 1


def test_every_status_change_has_one_event(db, queue_patient, orchestrator):
    entry = queue_patient("P-1")
    for action in ["start", "waiting", "start", "done"]:
        orchestrator.transition(entry.id, action)
    events = events_of(db, entry.id)
    assert len(events) == 5
    assert events[-1].to_status == db.get(QueueEntry, entry.id).status
    for earlier, later in zip(events, events[1:]):
        assert later.from_status == earlier.to_status


# --- PRIORITY ---

def test_set_priority_reorders_without_event(db, queue_patient, orchestrator):
    a, b = queue_patient("P-1"), queue_patient("P-2")
    orchestrator.set_priority(b.id, 10, NURSE)
    assert lane_ids(orchestrator) == [b.id, a.id]
    assert len(events_of(db, b.id)) == 1


def test_set_priority_in_service(queue_patient, orchestrator):
    entry = queue_patient("P-1")
    orchestrator.transition(entry.id, "start")
    assert orchestrator.set_priority(entry.id, 3).priority == 3


@pytest.mark.parametrize("priority", [-5, 1000, True])
def test_set_priority_out_of_range(queue_patient, orchestrator, priority):
    entry = queue_patient("P-1")
    with pytest.raises(ValidationError):
        orchestrator.set_priority(entry.id, priority)


@pytest.mark.parametrize("finish", ["done", "cancel"])
def test_set_priority_on_terminal_entry_overwrites(db, queue_patient, orchestrator, finish):
    entry = queue_patient("P-1")
    orchestrator.transition(entry.id, finish)
    before = len(events_of(db, entry.id))

    updated = orchestrator.set_priority(entry.id, 4)

    assert updated.priority == 4
    assert updated.is_terminal
    assert len(events_of(db, entry.id)) == before


def test_triage_drives_priority_when_enabled(db, clock, locks, checkins):
    db.add(PatientTriageState(patient_id="P-1", triage_category=TriageCategory.EMERGENCY))
    db.add(PatientTriageState(patient_id="P-2", triage_category=TriageCategory.URGENT))
    db.commit()
    policy = PriorityPolicy(True, {"Emergency": 30, "Very Urgent": 20, "Urgent": 10, "Routine": 0})
    orchestrator = QueueOrchestrator(db, locks=locks, clock=clock, policy=policy)
    c1, _ = checkins.create("P-1")
    c2, _ = checkins.create("P-2")
    c3, _ = checkins.create("P-3")
    assert orchestrator.create_entry(c1.id, "OPD").priority == 30
    assert orchestrator.create_entry(c2.id, "OPD", priority=2).priority == 2
    assert orchestrator.create_entry(c3.id, "OPD").priority == 0


def test_triage_ignored_when_policy_off(db, checkins, orchestrator):
    db.add(PatientTriageState(patient_id="P-1", triage_category=TriageCategory.EMERGENCY))
    db.commit()
    checkin, _ = checkins.create("P-1")
    assert orchestrator.create_entry(checkin.id, "OPD").priority == 0


# --- REORDERING ---

def test_move_before_renumbers_whole_lane(queue_patient, orchestrator):
    a, b, c = queue_patient("P-1"), queue_patient("P-2"), queue_patient("P-3")
    rows = orchestrator.reorder(c.id, target_id=a.id, place="before")
    assert [r.id for r in rows] == [c.id, a.id, b.id]
    assert [r.position for r in rows] == [1, 2, 3]


def test_move_after(queue_patient, orchestrator):
    a, b, c = queue_patient("P-1"), queue_patient("P-2"), queue_patient("P-3")
    orchestrator.reorder(a.id, target_id=b.id, place="after")
    assert lane_ids(orchestrator) == [b.id, a.id, c.id]
    assert lane_positions(orchestrator) == [1, 2, 3]


def test_renumbering_closes_gaps(queue_patient, orchestrator):
    a, b, c, d = (queue_patient(f"P-{i}") for i in range(1, 5))
    orchestrator.transition(b.id, "start")
    orchestrator.reorder(d.id, target_id=c.id, place="before")
    assert lane_ids(orchestrator) == [a.id, d.id, c.id]
    assert lane_positions(orchestrator) == [1, 2, 3]


def test_move_to_top(queue_patient, orchestrator):
    a, b, c = queue_patient("P-1"), queue_patient("P-2"), queue_patient("P-3")
    orchestrator.reorder(c.id, move_to_top=True)
    assert lane_ids(orchestrator) == [c.id, a.id, b.id]
    assert lane_positions(orchestrator) == [1, 2, 3]


def test_append_to_end(queue_patient, orchestrator):
    a, b, c = queue_patient("P-1"), queue_patient("P-2"), queue_patient("P-3")
    orchestrator.reorder(a.id, append_to_end=True)
    assert lane_ids(orchestrator) == [b.id, c.id, a.id]
    # Nobody else is renumbered
    assert lane_positions(orchestrator) == [2, 3, 4]


def test_reorder_in_service_lane(queue_patient, orchestrator):
    a, b = queue_patient("P-1"), queue_patient("P-2")
    orchestrator.transition(a.id, "start")
    orchestrator.transition(b.id, "start")
    rows = orchestrator.reorder(b.id, move_to_top=True, status="in_service")
    assert [r.id for r in rows][0] == b.id


@pytest.mark.parametrize("command", [
    {},
    {"move_to_top": True, "append_to_end": True},
    {"target_id": 1, "place": "beside"},
    {"target_id": 1},
    {"append_to_end": True, "place": "after"},
    {"move_to_top": True, "status": "done"},
])
def test_malformed_reorder(db, queue_patient, orchestrator, command):
    a, b = queue_patient("P-1"), queue_patient("P-2")
    if command.get("target_id") == 1:
        command = dict(command, target_id=a.id)
    with pytest.raises(ValidationError):
        orchestrator.reorder(b.id, **command)
    assert lane_positions(orchestrator) == [1, 2]


def test_reorder_relative_to_itself(queue_patient, orchestrator):
    a = queue_patient("P-1")
    with pytest.raises(ValidationError):
        orchestrator.reorder(a.id, target_id=a.id, place="before")


def test_reorder_target_in_other_lane(queue_patient, orchestrator):
    a = queue_patient("P-1", department="OPD")
    other = queue_patient("P-2", department="Dental")
    with pytest.raises(NotFoundError):
        orchestrator.reorder(a.id, target_id=other.id, place="before")
    assert lane_positions(orchestrator) == [1]


def test_reorder_entry_outside_named_lane(queue_patient, orchestrator):
    a = queue_patient("P-1", department="OPD")
    with pytest.raises(NotFoundError):
        orchestrator.reorder(a.id, move_to_top=True, department="Dental")
    with pytest.raises(NotFoundError):
        orchestrator.reorder(a.id, move_to_top=True, status="in_service")


# --- DELETION ---

def test_delete_waiting_entry_refused(db, queue_patient, orchestrator):
    entry = queue_patient("P-1")
    with pytest.raises(ConflictError) as exc:
        orchestrator.delete_entry(entry.id)
    assert exc.value.current_status == "waiting"
    assert db.get(QueueEntry, entry.id) is not None


def test_delete_done_entry_keeps_its_events(db, queue_patient, orchestrator):
    entry = queue_patient("P-1")
    entry_id = entry.id
    orchestrator.transition(entry_id, "start")
    orchestrator.transition(entry_id, "done")
    orchestrator.delete_entry(entry_id)
    assert db.get(QueueEntry, entry_id) is None
    assert len(events_of(db, entry_id)) == 3
    with pytest.raises(NotFoundError):
        orchestrator.delete_entry(entry_id)


# --- NOTIFICATIONS AND LOGGING ---

def test_lane_changes_are_announced(queue_patient, orchestrator, notifications):
    entry = queue_patient("P-1")
    orchestrator.transition(entry.id, "start", NURSE)
    assert notifications[-1] == LaneChange("OPD", "in_service", entry.id, "start", "N-7")
    assert notifications[0].action == "created"


def test_rejected_change_is_not_announced(queue_patient, orchestrator, notifications):
    entry = queue_patient("P-1")
    count = len(notifications)
    with pytest.raises(ConflictError):
        orchestrator.delete_entry(entry.id)
    assert len(notifications) == count


def test_notifier_failure_is_logged_not_raised(caplog):
    class BrokenNotifier:
        def lane_changed(self, change):
            raise ConnectionError("pager offline")

    with caplog.at_level(logging.ERROR):
        publish(BrokenNotifier(), LaneChange("OPD", "waiting", 1, "created"))
    assert "Lane notification failed" in caplog.text


def test_transition_is_logged(queue_patient, orchestrator, caplog):
    entry = queue_patient("P-1")
    with caplog.at_level(logging.INFO, logger="hospital_queue.modules.queue.services"):
        orchestrator.transition(entry.id, "start", NURSE)
    assert "waiting -> in_service" in caplog.text
