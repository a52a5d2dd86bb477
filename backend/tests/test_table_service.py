import pytest

from domain.errors import NotFoundError, StateConflictError


@pytest.fixture
def table(services):
    return services.tables.create_table("4", "Window 4")


def test_link_tags_single_session_bill_with_table(services, ps_device, table):
    session, bill = services.sessions.start_session("ps1")
    linked, linked_bill = services.tables.link_session_to_table(session.session_id, table.table_id)
    assert linked_bill.bill_id == bill.bill_id
    assert linked_bill.table_id == table.table_id
    assert "Linked to Window 4" in linked_bill.notes


def test_link_moves_session_onto_tables_open_bill(services, ps_device, pc_device, table):
    first, table_bill = services.sessions.start_session("ps1", table_id=table.table_id)
    second, own_bill = services.sessions.start_session("pc1")

    linked, bill = services.tables.link_session_to_table(second.session_id, table.table_id)

    assert bill.bill_id == table_bill.bill_id
    assert linked.bill_id == table_bill.bill_id
    assert set(bill.session_ids) == {first.session_id, second.session_id}
    # The emptied bill was merged into the table's bill.
    assert services.repo.get_bill(own_bill.bill_id) is None
    assert f"Merged from {own_bill.bill_number}" in bill.notes


def test_start_with_table_reuses_open_bill(services, ps_device, pc_device, table):
    first, bill = services.sessions.start_session("ps1", table_id=table.table_id)
    second, same = services.sessions.start_session("pc1", table_id=table.table_id)
    assert same.bill_id == bill.bill_id
    assert same.session_ids == [first.session_id, second.session_id]


def test_unlink_splits_shared_bill(services, ps_device, pc_device, table):
    first, table_bill = services.sessions.start_session("ps1", table_id=table.table_id)
    second, _ = services.sessions.start_session("pc1", table_id=table.table_id)

    unlinked, own_bill = services.tables.unlink_session_from_table(second.session_id)

    assert own_bill.bill_id != table_bill.bill_id
    assert own_bill.table_id is None
    assert unlinked.bill_id == own_bill.bill_id
    assert services.repo.get_bill(table_bill.bill_id).session_ids == [first.session_id]


def test_unlink_single_session_clears_table(services, ps_device, table):
    session, bill = services.sessions.start_session("ps1", table_id=table.table_id)
    _, same = services.tables.unlink_session_from_table(session.session_id)
    assert same.bill_id == bill.bill_id
    assert same.table_id is None


def test_unlink_requires_table(services, ps_device):
    session, _ = services.sessions.start_session("ps1")
    with pytest.raises(StateConflictError):
        services.tables.unlink_session_from_table(session.session_id)


def test_move_session_between_bills(services, ps_device, pc_device):
    first, first_bill = services.sessions.start_session("ps1")
    services.clock.advance(hours=1)
    services.sessions.end_session(first.session_id)
    second, second_bill = services.sessions.start_session("pc1")

    moved, target = services.tables.move_session_to_bill(first.session_id, second_bill.bill_id)

    assert moved.bill_id == second_bill.bill_id
    assert target.total == 20
    assert services.repo.get_bill(first_bill.bill_id) is None
    assert services.repo.list_bills_containing_session(first.session_id)[0].bill_id == second_bill.bill_id


def test_move_rolls_back_on_failure(services, ps_device, pc_device, monkeypatch):
    first, first_bill = services.sessions.start_session("ps1")
    second, second_bill = services.sessions.start_session("pc1")

    def fail(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(services.billing, "attach_session", fail)
    with pytest.raises(RuntimeError):
        services.tables.move_session_to_bill(first.session_id, second_bill.bill_id)

    assert services.repo.get_bill(first_bill.bill_id).session_ids == [first.session_id]
    assert services.repo.get_session(first.session_id).bill_id == first_bill.bill_id


def test_move_to_paid_bill_rejected(services, ps_device, pc_device):
    first, _ = services.sessions.start_session("ps1")
    second, second_bill = services.sessions.start_session("pc1")
    services.clock.advance(hours=1)
    services.sessions.end_session(second.session_id)
    services.billing.add_payment(second_bill.bill_id, 15)
    with pytest.raises(StateConflictError):
        services.tables.move_session_to_bill(first.session_id, second_bill.bill_id)


def test_link_unknown_table(services, ps_device):
    session, _ = services.sessions.start_session("ps1")
    with pytest.raises(NotFoundError):
        services.tables.link_session_to_table(session.session_id, "missing")


def test_duplicate_table_number_rejected(services, table):
    with pytest.raises(StateConflictError):
        services.tables.create_table("4")
