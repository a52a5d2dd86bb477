from application.events import VenueEventType
from domain.bill import Bill


def _corrupt_add(repo, bill_id, session_id):
    bill = repo.get_bill(bill_id)
    bill.session_ids.append(session_id)
    repo.update_bill(bill)


def _drain(event_bus):
    events = []
    while event_bus.pending_count():
        events.append(event_bus._queue.get_nowait())
    return events


def test_clean_state_is_noop(services, ps_device):
    services.sessions.start_session("ps1")
    report = services.reconciliation.reconcile()
    assert report.sessions_scanned == 1
    assert not report.changed
    assert report.errors == 0


def test_duplicate_reference_removed_and_bill_kept(services, ps_device, pc_device):
    first, first_bill = services.sessions.start_session("ps1")
    second, second_bill = services.sessions.start_session("pc1")
    _corrupt_add(services.repo, second_bill.bill_id, first.session_id)

    report = services.reconciliation.reconcile()

    assert report.references_removed == 1
    assert report.bills_merged == 0 and report.bills_deleted == 0
    assert services.repo.get_bill(second_bill.bill_id).session_ids == [second.session_id]
    assert services.repo.get_bill(first_bill.bill_id).session_ids == [first.session_id]


def test_missing_reference_re_added(services, ps_device):
    session, bill = services.sessions.start_session("ps1")
    services.clock.advance(hours=1)
    services.sessions.end_session(session.session_id)
    stored = services.repo.get_bill(bill.bill_id)
    stored.session_ids = []
    services.repo.update_bill(stored)

    report = services.reconciliation.reconcile()

    assert report.references_added == 1
    repaired = services.repo.get_bill(bill.bill_id)
    assert repaired.session_ids == [session.session_id]
    assert repaired.total == 20


def test_emptied_bill_merged_preferring_same_table(services, ps_device, pc_device, repo, clock):
    table = services.tables.create_table("9")
    first, table_bill = services.sessions.start_session("ps1", table_id=table.table_id)
    clock.advance(minutes=5)
    # A newer open bill elsewhere must lose to the same-table bill.
    newer = services.billing.create_bill("default", "Walk-in")
    services.billing.add_order(newer.bill_id, 5)
    clock.advance(minutes=5)

    stray = services.billing.create_bill("default", "Stray", table_id=table.table_id)
    stray.session_ids.append(first.session_id)
    stray.notes = "stale copy"
    repo.update_bill(stray)

    report = services.reconciliation.reconcile()

    assert report.references_removed == 1
    assert report.bills_merged == 1
    assert repo.get_bill(stray.bill_id) is None
    target = repo.get_bill(table_bill.bill_id)
    assert f"Merged from {stray.bill_number}: stale copy" in target.notes
    assert "Merged" not in repo.get_bill(newer.bill_id).notes


def test_emptied_bill_merged_into_newest_without_table(services, ps_device, repo, clock):
    first, first_bill = services.sessions.start_session("ps1")
    clock.advance(minutes=5)
    newest = services.billing.create_bill("default", "Walk-in")
    services.billing.add_order(newest.bill_id, 5)
    clock.advance(minutes=5)
    stray = services.billing.create_bill("default", "Stray")
    stray.session_ids.append(first.session_id)
    repo.update_bill(stray)

    services.reconciliation.reconcile()

    assert repo.get_bill(stray.bill_id) is None
    assert "Merged from" in repo.get_bill(newest.bill_id).notes


def test_emptied_bill_deleted_without_target(services, ps_device, repo):
    session, bill = services.sessions.start_session("ps1")
    services.clock.advance(hours=1)
    services.sessions.end_session(session.session_id)
    services.billing.add_payment(bill.bill_id, 20)

    stray = services.billing.create_bill("default", "Stray")
    stray.session_ids.append(session.session_id)
    repo.update_bill(stray)

    report = services.reconciliation.reconcile()

    assert report.bills_deleted == 1
    assert repo.get_bill(stray.bill_id) is None
    assert repo.get_session(session.session_id).bill_id == bill.bill_id


def test_second_run_is_noop(services, ps_device, pc_device, repo):
    first, first_bill = services.sessions.start_session("ps1")
    second, second_bill = services.sessions.start_session("pc1")
    _corrupt_add(repo, second_bill.bill_id, first.session_id)
    stored = repo.get_bill(first_bill.bill_id)
    stored.session_ids = []
    repo.update_bill(stored)

    services.reconciliation.reconcile()
    snapshot = {bill.bill_id: bill for bill in repo.list_bills()}
    report = services.reconciliation.reconcile()

    assert not report.changed
    assert {bill.bill_id: bill for bill in repo.list_bills()} == snapshot


def test_no_session_points_at_a_deleted_bill(services, ps_device, pc_device, repo):
    first, _ = services.sessions.start_session("ps1")
    second, second_bill = services.sessions.start_session("pc1")
    stray = services.billing.create_bill("default", "Stray")
    stray.session_ids.extend([first.session_id, second.session_id])
    repo.update_bill(stray)

    services.reconciliation.reconcile()

    bill_ids = {bill.bill_id for bill in repo.list_bills()}
    for session in repo.list_sessions():
        assert session.bill_id in bill_ids
        containing = repo.list_bills_containing_session(session.session_id)
        assert [bill.bill_id for bill in containing] == [session.bill_id]


def test_dangling_pointer_counted_not_modified(services, ps_device, repo):
    session, bill = services.sessions.start_session("ps1")
    repo.delete_bill(bill.bill_id)

    report = services.reconciliation.reconcile()

    assert report.dangling_pointers == 1
    assert repo.get_session(session.session_id).bill_id == bill.bill_id


def test_failure_on_one_bill_does_not_stop_the_sweep(services, ps_device, pc_device, repo, monkeypatch):
    first, _ = services.sessions.start_session("ps1")
    second, _ = services.sessions.start_session("pc1")
    broken = services.billing.create_bill("default", "Broken")
    broken.session_ids.append(first.session_id)
    repo.update_bill(broken)
    other = services.billing.create_bill("default", "Other")
    other.session_ids.append(second.session_id)
    other.order_ids.append("keep-me")
    repo.update_bill(other)

    real_recalculate = services.billing.recalculate_bill

    def flaky(bill: Bill):
        if bill.bill_id == broken.bill_id:
            raise RuntimeError("write failed")
        return real_recalculate(bill)

    monkeypatch.setattr(services.billing, "recalculate_bill", flaky)
    report = services.reconciliation.reconcile()

    assert report.errors == 1
    assert second.session_id not in repo.get_bill(other.bill_id).session_ids
    # The failed repair was rolled back as a unit.
    assert repo.get_bill(broken.bill_id).session_ids == [first.session_id]


def test_reconcile_publishes_event_only_when_changed(services, ps_device, pc_device, repo):
    first, _ = services.sessions.start_session("ps1")
    second, second_bill = services.sessions.start_session("pc1")
    _drain(services.event_bus)

    services.reconciliation.reconcile()
    assert _drain(services.event_bus) == []

    _corrupt_add(repo, second_bill.bill_id, first.session_id)
    services.reconciliation.reconcile()
    events = _drain(services.event_bus)
    assert [event.event_type for event in events] == [VenueEventType.BILLS_RECONCILED]
    assert events[0].payload["references_removed"] == 1


def test_organization_filter(services, ps_device, repo):
    session, bill = services.sessions.start_session("ps1")
    report = services.reconciliation.reconcile("other-org")
    assert report.sessions_scanned == 0


def test_session_repointed_by_a_merge_keeps_its_new_bill(services, ps_device, pc_device, repo, monkeypatch):
    first, first_bill = services.sessions.start_session("ps1")
    services.clock.advance(minutes=1)
    second, second_bill = services.sessions.start_session("pc1")
    # first_bill lost its own session and picked up a foreign one.
    bill = repo.get_bill(first_bill.bill_id)
    bill.session_ids = [second.session_id]
    repo.update_bill(bill)

    real_recalculate = services.billing.recalculate_bill
    calls = {"first_bill": 0}

    def fail_once(target: Bill):
        if target.bill_id == first_bill.bill_id:
            calls["first_bill"] += 1
            if calls["first_bill"] == 1:
                raise RuntimeError("write failed")
        return real_recalculate(target)

    monkeypatch.setattr(services.billing, "recalculate_bill", fail_once)
    report = services.reconciliation.reconcile()

    assert report.errors == 1
    assert repo.get_bill(first_bill.bill_id) is None
    assert repo.get_session(first.session_id).bill_id == second_bill.bill_id
    assert sorted(repo.get_bill(second_bill.bill_id).session_ids) == sorted(
        [first.session_id, second.session_id]
    )
