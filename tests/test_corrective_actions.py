from datetime import date

import pytest

from backend.app import checklist, corrective_actions, nonconformities
from backend.app.errors import ConflictError, NotFound, Unauthorized, ValidationError


@pytest.fixture
def nc(conn, ctx, make_audit):
    audit = make_audit(ctx)
    item = audit["checklists"][0]["items"][0]
    checklist.update_item(conn, ctx, item["id"], outcome="non_compliant")
    return nonconformities.create_nonconformity(conn, ctx, audit["id"], item["id"], "Extinguisher missing")


def test_create_starts_pending(conn, ctx, nc):
    ca = corrective_actions.create_corrective_action(
        conn, ctx, nc["id"], "Install a new extinguisher",
        responsible_person_name="Maria Rossi",
        responsible_person_email="maria.rossi@example.com",
        target_completion_date="2026-02-28",
    )
    assert ca["status"] == "pending"
    assert ca["completed_at"] is None
    assert ca["target_completion_date"] == date(2026, 2, 28)


def test_create_validates_fields(conn, ctx, nc):
    with pytest.raises(ValidationError) as exc:
        corrective_actions.create_corrective_action(
            conn, ctx, nc["id"], "fix", responsible_person_email="not-an-email", target_completion_date="soon"
        )
    assert set(exc.value.errors) == {"description", "responsible_person_email", "target_completion_date"}


def test_complete_stamps_and_leaves_nc_open(conn, ctx, nc):
    ca = corrective_actions.create_corrective_action(conn, ctx, nc["id"], "Install a new extinguisher")
    done = corrective_actions.complete_corrective_action(conn, ctx, ca["id"])
    assert done["status"] == "completed"
    assert done["completed_at"]
    assert nonconformities.get_nonconformity(conn, ctx, nc["id"])["status"] == "open"
    # completing twice is harmless
    again = corrective_actions.complete_corrective_action(conn, ctx, ca["id"])
    assert again["completed_at"] == done["completed_at"]


def test_cannot_complete_under_closed_nc(conn, ctx, nc):
    ca = corrective_actions.create_corrective_action(conn, ctx, nc["id"], "Install a new extinguisher")
    nonconformities.close_nonconformity(conn, ctx, nc["id"])
    with pytest.raises(ConflictError):
        corrective_actions.complete_corrective_action(conn, ctx, ca["id"])
    with pytest.raises(ConflictError):
        corrective_actions.create_corrective_action(conn, ctx, nc["id"], "Another action")


def test_cancelled_cannot_complete(conn, ctx, nc):
    ca = corrective_actions.create_corrective_action(conn, ctx, nc["id"], "Install a new extinguisher")
    corrective_actions.update_corrective_action(conn, ctx, ca["id"], status="cancelled")
    with pytest.raises(ConflictError):
        corrective_actions.complete_corrective_action(conn, ctx, ca["id"])


def test_update_to_completed_follows_complete_rules(conn, ctx, nc):
    cancelled = corrective_actions.create_corrective_action(conn, ctx, nc["id"], "Install a new extinguisher")
    corrective_actions.update_corrective_action(conn, ctx, cancelled["id"], status="cancelled")
    with pytest.raises(ConflictError):
        corrective_actions.update_corrective_action(conn, ctx, cancelled["id"], status="completed")
    assert corrective_actions.get_corrective_action(conn, ctx, cancelled["id"])["status"] == "cancelled"

    ca = corrective_actions.create_corrective_action(conn, ctx, nc["id"], "Train staff on extinguisher checks")
    nonconformities.close_nonconformity(conn, ctx, nc["id"])
    with pytest.raises(ConflictError):
        corrective_actions.update_corrective_action(conn, ctx, ca["id"], status="completed")
    stored = corrective_actions.get_corrective_action(conn, ctx, ca["id"])
    assert stored["status"] == "pending"
    assert stored["completed_at"] is None


def test_update_to_completed_stamps_once(conn, ctx, nc):
    ca = corrective_actions.create_corrective_action(conn, ctx, nc["id"], "Install a new extinguisher")
    done = corrective_actions.update_corrective_action(conn, ctx, ca["id"], status="completed")
    assert done["status"] == "completed"
    assert done["completed_at"]
    again = corrective_actions.update_corrective_action(conn, ctx, ca["id"], status="completed", root_cause="No inspection schedule")
    assert again["completed_at"] == done["completed_at"]
    assert again["root_cause"] == "No inspection schedule"


def test_update_fields(conn, ctx, nc):
    ca = corrective_actions.create_corrective_action(conn, ctx, nc["id"], "Install a new extinguisher")
    updated = corrective_actions.update_corrective_action(
        conn, ctx, ca["id"], root_cause="No inspection schedule", status="in_progress"
    )
    assert updated["root_cause"] == "No inspection schedule"
    assert updated["status"] == "in_progress"
    with pytest.raises(ValidationError):
        corrective_actions.update_corrective_action(conn, ctx, ca["id"], owner="someone")
    with pytest.raises(ValidationError):
        corrective_actions.update_corrective_action(conn, ctx, ca["id"])


def test_cross_tenant(conn, ctx, other_ctx, nc):
    ca = corrective_actions.create_corrective_action(conn, ctx, nc["id"], "Install a new extinguisher")
    with pytest.raises(NotFound):
        corrective_actions.create_corrective_action(conn, other_ctx, nc["id"], "Foreign action")
    with pytest.raises(NotFound):
        corrective_actions.get_corrective_action(conn, other_ctx, ca["id"])
    with pytest.raises(Unauthorized):
        corrective_actions.complete_corrective_action(conn, other_ctx, ca["id"])
    with pytest.raises(Unauthorized):
        corrective_actions.update_corrective_action(conn, other_ctx, ca["id"], status="cancelled")
    assert corrective_actions.list_corrective_actions(conn, other_ctx) == []


def test_list_by_nc_and_audit(conn, ctx, nc):
    ca = corrective_actions.create_corrective_action(conn, ctx, nc["id"], "Install a new extinguisher")
    assert [c["id"] for c in corrective_actions.list_corrective_actions(conn, ctx, nonconformity_id=nc["id"])] == [ca["id"]]
    assert [c["id"] for c in corrective_actions.list_corrective_actions(conn, ctx, audit_id=nc["audit_id"])] == [ca["id"]]
