import pytest

from backend.app import templates
from backend.app.errors import NotFound, ValidationError


def test_create_template_and_add_questions(conn, ctx):
    tpl = templates.create_template(conn, ctx, "Warehouse inspection", "Monthly")
    assert tpl["questions"] == []
    q1 = templates.add_question(conn, ctx, tpl["id"], "Racks anchored?")
    q2 = templates.add_question(conn, ctx, tpl["id"], "Aisles clear?")
    assert (q1["sort_order"], q2["sort_order"]) == (1, 2)

    fetched = templates.get_template(conn, ctx, tpl["id"])
    assert [q["question"] for q in fetched["questions"]] == ["Racks anchored?", "Aisles clear?"]


def test_template_title_validated(conn, ctx):
    with pytest.raises(ValidationError) as exc:
        templates.create_template(conn, ctx, "  ab ")
    assert "title" in exc.value.errors


def test_empty_question_rejected(conn, ctx, make_template):
    tpl = make_template(ctx, questions=())
    with pytest.raises(ValidationError):
        templates.add_question(conn, ctx, tpl["id"], "   ")


def test_soft_delete_hides_question_and_is_idempotent(conn, ctx, make_template):
    tpl = make_template(ctx, questions=("A?", "B?", "C?"))
    victim = tpl["questions"][1]
    templates.soft_delete_question(conn, ctx, victim["id"], tpl["id"])
    templates.soft_delete_question(conn, ctx, victim["id"], tpl["id"])

    remaining = templates.get_template(conn, ctx, tpl["id"])["questions"]
    assert [q["question"] for q in remaining] == ["A?", "C?"]
    # tombstoned row is still in the table
    row = conn.exec_driver_sql(
        "SELECT deleted_at FROM template_questions WHERE id = ?", (victim["id"],)
    ).first()
    assert row[0] is not None

    # a new question does not reuse the tombstoned slot
    added = templates.add_question(conn, ctx, tpl["id"], "D?")
    assert added["sort_order"] == 4


def test_soft_delete_unknown_question(conn, ctx, make_template):
    tpl = make_template(ctx, questions=("A?",))
    other = make_template(ctx, questions=("Z?",))
    with pytest.raises(NotFound):
        templates.soft_delete_question(conn, ctx, other["questions"][0]["id"], tpl["id"])


def test_templates_are_tenant_scoped(conn, ctx, other_ctx, make_template):
    tpl = make_template(ctx)
    assert [t["id"] for t in templates.list_templates(conn, ctx)] == [tpl["id"]]
    assert templates.list_templates(conn, other_ctx) == []
    with pytest.raises(NotFound):
        templates.get_template(conn, other_ctx, tpl["id"])
    with pytest.raises(NotFound):
        templates.add_question(conn, other_ctx, tpl["id"], "Injected?")
