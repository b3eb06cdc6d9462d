from datetime import date

import pytest
from fastapi import HTTPException
from sqlalchemy import event, text

from conftest import as_actor, make_appointment
from mobipet.models.appointment import Appointment, PaymentStatus
from mobipet.models.clinical_report import ClinicalReport
from mobipet.models.notification import Notification
from mobipet.models.time_proposal import TimeProposal
from mobipet.services import appointments


def _notifications_for(db, user_id: str) -> list[Notification]:
    return db.query(Notification).filter(Notification.user_id == user_id).all()


def test_accept_confirms_and_notifies_owner(db, owner, vet, pet, integrations, mailer) -> None:
    appointment = make_appointment(db, owner.id, pet_id=pet.id)

    result = appointments.accept(db, appointment.id, as_actor(vet), integrations)

    assert result.status == 'confirmed'
    assert result.vet_id == vet.id
    assert result.accepted_at is not None
    assert [n.type for n in _notifications_for(db, owner.id)] == ['appointment_accepted']
    assert mailer.sent == [(owner.email, 'Your appointment for Buddy has been accepted')]


def test_accept_with_start_moves_straight_to_in_progress(db, owner, vet, integrations) -> None:
    appointment = make_appointment(db, owner.id)

    result = appointments.accept(db, appointment.id, as_actor(vet), integrations, start=True)

    assert result.status == 'in_progress'


@pytest.mark.parametrize('action', ['accept', 'decline', 'propose'])
def test_non_vet_status_change_is_forbidden_and_leaves_status(db, owner, integrations, action) -> None:
    appointment = make_appointment(db, owner.id)
    actor = as_actor(owner)

    with pytest.raises(HTTPException) as exception_info:
        if action == 'accept':
            appointments.accept(db, appointment.id, actor, integrations)
        elif action == 'decline':
            appointments.decline(db, appointment.id, actor, integrations)
        else:
            appointments.propose(db, appointment.id, actor, integrations, date(2026, 11, 3), '10:00 - 12:00 PM')

    assert exception_info.value.status_code == 403
    db.expire_all()
    assert db.get(Appointment, appointment.id).status == 'waiting_for_vet'


def test_accept_missing_appointment_is_not_found(db, vet, integrations) -> None:
    with pytest.raises(HTTPException) as exception_info:
        appointments.accept(db, 999, as_actor(vet), integrations)

    assert exception_info.value.status_code == 404


def test_accept_requires_waiting_for_vet(db, owner, vet, integrations) -> None:
    appointment = make_appointment(db, owner.id, status='pending')

    with pytest.raises(HTTPException) as exception_info:
        appointments.accept(db, appointment.id, as_actor(vet), integrations)

    assert exception_info.value.status_code == 409


def test_vet_cannot_act_on_another_vets_appointment(db, owner, vet, other_vet, integrations) -> None:
    appointment = make_appointment(db, owner.id, status='confirmed', vet_id=other_vet.id)

    with pytest.raises(HTTPException) as exception_info:
        appointments.start(db, appointment.id, as_actor(vet), integrations)

    assert exception_info.value.status_code == 404


def test_stale_write_is_rejected_with_conflict(db, owner, vet, integrations) -> None:
    appointment = make_appointment(db, owner.id)
    assert appointment.version == 1

    # Another request commits first and bumps the version under us.
    db.execute(text('UPDATE appointments SET version = version + 1 WHERE id = :id'), {'id': appointment.id})

    with pytest.raises(HTTPException) as exception_info:
        appointments.accept(db, appointment.id, as_actor(vet), integrations)

    assert exception_info.value.status_code == 409
    db.expire_all()
    assert db.get(Appointment, appointment.id).status == 'waiting_for_vet'
    assert _notifications_for(db, owner.id) == []


def test_decline_records_reason_and_releases_authorization(db, owner, vet, other_vet, integrations, gateway) -> None:
    appointment = make_appointment(db, owner.id, status='time_proposed')
    db.add(TimeProposal(
        appointment_id=appointment.id,
        vet_id=other_vet.id,
        proposed_date=date(2026, 11, 5),
        proposed_time_range='Afternoon',
    ))
    db.commit()

    result = appointments.decline(db, appointment.id, as_actor(vet), integrations, reason='Outside service area')

    assert result.status == 'declined'
    assert result.decline_reason == 'Outside service area'
    assert result.payment_status == PaymentStatus.RELEASED.value
    assert gateway.cancelled == ['pi_existing']
    assert {p.status for p in db.query(TimeProposal).all()} == {'declined'}
    assert [n.type for n in _notifications_for(db, owner.id)] == ['appointment_declined']


def test_propose_mirrors_fields_without_assigning_vet(db, owner, vet, integrations, mailer) -> None:
    appointment = make_appointment(db, owner.id)

    result = appointments.propose(
        db, appointment.id, as_actor(vet), integrations, date(2026, 11, 3), ' 10:00 - 12:00 PM ', message='Earlier?',
    )

    assert result.status == 'time_proposed'
    assert result.vet_id is None
    assert result.proposed_by == vet.id
    assert result.proposed_date == date(2026, 11, 3)
    assert result.proposed_time == '10:00 - 12:00 PM'
    proposal = db.query(TimeProposal).one()
    assert (proposal.vet_id, proposal.status) == (vet.id, 'pending')
    assert [n.type for n in _notifications_for(db, owner.id)] == ['time_proposed']
    assert len(mailer.sent) == 1


def test_propose_requires_date_and_time(db, owner, vet, integrations) -> None:
    appointment = make_appointment(db, owner.id)

    with pytest.raises(HTTPException) as exception_info:
        appointments.propose(db, appointment.id, as_actor(vet), integrations, date(2026, 11, 3), '  ')

    assert exception_info.value.status_code == 400


def test_owner_accepts_latest_proposal_and_siblings_are_declined(db, owner, vet, other_vet, integrations) -> None:
    appointment = make_appointment(db, owner.id)
    appointments.propose(db, appointment.id, as_actor(vet), integrations, date(2026, 11, 3), 'Morning')
    appointments.propose(db, appointment.id, as_actor(other_vet), integrations, date(2026, 11, 4), 'Afternoon')

    result = appointments.owner_respond(db, appointment.id, as_actor(owner), integrations, appointments.ACCEPT_PROPOSAL)

    assert result.status == 'confirmed'
    assert result.date == date(2026, 11, 4)
    assert result.time_slot == 'Afternoon'
    assert result.vet_id == other_vet.id
    assert result.proposed_date is None
    assert result.proposed_by is None
    statuses = {p.vet_id: p.status for p in db.query(TimeProposal).all()}
    assert statuses == {vet.id: 'declined', other_vet.id: 'accepted'}
    assert [n.type for n in _notifications_for(db, other_vet.id)] == ['time_proposal_accepted']


def test_owner_declining_proposal_cancels_and_releases(db, owner, vet, integrations, gateway) -> None:
    appointment = make_appointment(db, owner.id)
    appointments.propose(db, appointment.id, as_actor(vet), integrations, date(2026, 11, 3), 'Morning')

    result = appointments.owner_respond(
        db, appointment.id, as_actor(owner), integrations, appointments.DECLINE_PROPOSAL,
    )

    assert result.status == 'cancelled'
    assert result.proposed_time is None
    assert gateway.cancelled == ['pi_existing']
    assert db.query(TimeProposal).one().status == 'declined'


def test_owner_cannot_accept_a_mirrored_proposal_that_is_no_longer_pending(db, owner, vet, integrations) -> None:
    appointment = make_appointment(
        db,
        owner.id,
        status='time_proposed',
        proposed_by=vet.id,
        proposed_date=date(2026, 11, 3),
        proposed_time='Morning',
    )
    db.add(TimeProposal(
        appointment_id=appointment.id,
        vet_id=vet.id,
        proposed_date=date(2026, 11, 3),
        proposed_time_range='Morning',
        status='declined',
    ))
    db.commit()

    with pytest.raises(HTTPException) as exception_info:
        appointments.owner_respond(db, appointment.id, as_actor(owner), integrations, appointments.ACCEPT_PROPOSAL)

    assert exception_info.value.status_code == 409
    db.expire_all()
    assert db.get(Appointment, appointment.id).status == 'time_proposed'
    assert db.query(TimeProposal).one().status == 'declined'


def test_owner_respond_rejects_unknown_decision(db, owner, integrations) -> None:
    appointment = make_appointment(db, owner.id, status='time_proposed')

    with pytest.raises(HTTPException) as exception_info:
        appointments.owner_respond(db, appointment.id, as_actor(owner), integrations, 'maybe')

    assert exception_info.value.status_code == 400


def test_owner_cannot_respond_for_someone_else(db, owner, vet, integrations) -> None:
    appointment = make_appointment(db, 'someone-else', status='time_proposed')

    with pytest.raises(HTTPException) as exception_info:
        appointments.owner_respond(db, appointment.id, as_actor(owner), integrations, appointments.ACCEPT_PROPOSAL)

    assert exception_info.value.status_code == 404
    assert exception_info.value.detail == 'Appointment not found or access denied.'


def test_complete_writes_report_and_captures_payment(db, owner, vet, pet, integrations, gateway, mailer) -> None:
    appointment = make_appointment(db, owner.id, pet_id=pet.id, status='confirmed', vet_id=vet.id)
    report = appointments.ClinicalReportInput(
        shared_notes='Healthy and happy.',
        confidential_notes='Slight tartar.',
        additional_services=[{'name': 'Nail trim', 'price': 25}],
        follow_up_recommended=True,
        follow_up_date=date(2027, 5, 1),
        follow_up_reason='Annual vaccination',
    )

    result = appointments.complete(db, appointment.id, as_actor(vet), integrations, report)

    assert result.appointment.status == 'completed'
    assert result.appointment.completed_at is not None
    assert result.payment_captured is True
    assert result.report.total_additional_cost == 25
    assert gateway.captured == ['pi_existing']
    assert db.get(Appointment, appointment.id).payment_status == PaymentStatus.CAPTURED.value
    assert db.query(ClinicalReport).count() == 1
    assert [n.type for n in _notifications_for(db, owner.id)] == ['appointment_completed']
    assert mailer.sent == [(owner.email, 'Appointment for Buddy completed - Visit Summary')]


def test_complete_survives_capture_failure(db, owner, vet, integrations, gateway) -> None:
    gateway.fail_capture = True
    appointment = make_appointment(db, owner.id, status='in_progress', vet_id=vet.id)

    result = appointments.complete(db, appointment.id, as_actor(vet), integrations, appointments.ClinicalReportInput())

    assert result.payment_captured is False
    db.expire_all()
    stored = db.get(Appointment, appointment.id)
    assert stored.status == 'completed'
    assert stored.payment_status == PaymentStatus.AUTHORIZED.value


def test_complete_survives_mailer_failure(db, owner, vet, integrations, mailer) -> None:
    def broken_send(to, subject, html):
        raise RuntimeError('mail service down')

    mailer.send = broken_send
    appointment = make_appointment(db, owner.id, status='confirmed', vet_id=vet.id)

    result = appointments.complete(db, appointment.id, as_actor(vet), integrations, appointments.ClinicalReportInput())

    assert result.appointment.status == 'completed'


def test_cancel_removes_children_before_appointment(db, engine, owner, vet, integrations, gateway) -> None:
    appointment = make_appointment(db, owner.id, status='confirmed', vet_id=vet.id)
    db.add_all([
        Notification(user_id=owner.id, appointment_id=appointment.id, type='appointment_accepted', message='ok'),
        TimeProposal(
            appointment_id=appointment.id,
            vet_id=vet.id,
            proposed_date=date(2026, 11, 3),
            proposed_time_range='Morning',
            status='accepted',
        ),
        ClinicalReport(appointment_id=appointment.id, vet_id=vet.id),
    ])
    db.commit()
    appointment_id = appointment.id

    deleted_tables = []

    def record_delete(conn, cursor, statement, parameters, context, executemany):
        if statement.lstrip().upper().startswith('DELETE FROM'):
            deleted_tables.append(statement.split()[2])

    event.listen(engine, 'before_cursor_execute', record_delete)
    try:
        result = appointments.cancel(db, appointment_id, as_actor(owner), integrations)
    finally:
        event.remove(engine, 'before_cursor_execute', record_delete)

    assert result == {'appointment_id': appointment_id, 'deleted_notifications': 1, 'deleted_proposals': 1}
    assert deleted_tables == ['notifications', 'time_proposals', 'clinical_reports', 'appointments']
    assert db.get(Appointment, appointment_id) is None
    assert db.query(TimeProposal).count() == 0
    assert db.query(ClinicalReport).count() == 0
    vet_notifications = _notifications_for(db, vet.id)
    assert [(n.type, n.appointment_id) for n in vet_notifications] == [('appointment_cancelled', None)]
    assert _notifications_for(db, owner.id) == []
    assert gateway.cancelled == ['pi_existing']


def test_cancel_rejects_terminal_or_running_appointments(db, owner, vet, integrations) -> None:
    appointment = make_appointment(db, owner.id, status='in_progress', vet_id=vet.id)

    with pytest.raises(HTTPException) as exception_info:
        appointments.cancel(db, appointment.id, as_actor(owner), integrations)

    assert exception_info.value.status_code == 409
    assert db.get(Appointment, appointment.id) is not None


def test_cancel_by_vet_is_forbidden(db, owner, vet, integrations) -> None:
    appointment = make_appointment(db, owner.id)

    with pytest.raises(HTTPException) as exception_info:
        appointments.cancel(db, appointment.id, as_actor(vet), integrations)

    assert exception_info.value.status_code == 403


def test_open_requests_lists_unassigned_waiting_appointments(db, owner, vet) -> None:
    waiting = make_appointment(db, owner.id)
    make_appointment(db, owner.id, status='confirmed', vet_id=vet.id)
    make_appointment(db, 'owner-2', status='pending')

    assert [a.id for a in appointments.list_open_requests(db)] == [waiting.id]
