from datetime import date

import pytest
from fastapi import HTTPException

from conftest import as_actor, make_appointment
from mobipet.models.clinical_report import ClinicalReport
from mobipet.services import reports


@pytest.fixture
def completed(db, owner, vet, pet):
    appointment = make_appointment(db, owner.id, pet_id=pet.id, status='completed', vet_id=vet.id)
    db.add(ClinicalReport(
        appointment_id=appointment.id,
        pet_id=pet.id,
        vet_id=vet.id,
        shared_notes='Healthy and happy.',
        confidential_notes='Owner hesitant about dental work.',
        additional_services=[{'name': 'Nail trim', 'price': 15}],
        total_additional_cost=15,
        follow_up_recommended=True,
        follow_up_date=date(2027, 5, 1),
    ))
    db.commit()
    return appointment


def test_owner_reads_report_without_confidential_notes(db, owner, completed) -> None:
    view = reports.get_report(db, completed.id, as_actor(owner))

    assert view.report.shared_notes == 'Healthy and happy.'
    assert view.include_confidential is False


def test_assigned_vet_and_admin_see_confidential_notes(db, vet, admin_user, completed) -> None:
    assert reports.get_report(db, completed.id, as_actor(vet)).include_confidential is True
    assert reports.get_report(db, completed.id, as_actor(admin_user)).include_confidential is True


def test_other_vet_cannot_read_report(db, other_vet, completed) -> None:
    with pytest.raises(HTTPException) as exception_info:
        reports.get_report(db, completed.id, as_actor(other_vet))

    assert exception_info.value.status_code == 404


def test_missing_report_is_not_found(db, owner, vet) -> None:
    appointment = make_appointment(db, owner.id, status='confirmed', vet_id=vet.id)

    with pytest.raises(HTTPException) as exception_info:
        reports.get_report(db, appointment.id, as_actor(owner))

    assert exception_info.value.status_code == 404
    assert exception_info.value.detail == 'Report not found.'


def test_owner_emails_report_to_themselves(db, owner, completed, mailer) -> None:
    sent_to = reports.email_report(db, completed.id, as_actor(owner), mailer, reports.RECIPIENT_PET_OWNER)

    assert sent_to == owner.email
    assert mailer.sent == [(owner.email, 'Veterinary Report for Buddy')]


def test_owner_cannot_email_the_vet_copy(db, owner, completed, mailer) -> None:
    with pytest.raises(HTTPException) as exception_info:
        reports.email_report(db, completed.id, as_actor(owner), mailer, reports.RECIPIENT_VET)

    assert exception_info.value.status_code == 403
    assert mailer.sent == []


def test_vet_copy_includes_confidential_notes(db, vet, completed) -> None:
    captured = []

    class RecordingMailer:
        def send(self, to, subject, html):
            captured.append((to, html))

    reports.email_report(db, completed.id, as_actor(vet), RecordingMailer(), reports.RECIPIENT_VET)

    assert captured[0][0] == vet.email
    assert 'Owner hesitant about dental work.' in captured[0][1]
    assert 'Nail trim' in captured[0][1]


def test_owner_copy_leaves_confidential_notes_out(db, owner, completed) -> None:
    captured = []

    class RecordingMailer:
        def send(self, to, subject, html):
            captured.append(html)

    reports.email_report(db, completed.id, as_actor(owner), RecordingMailer(), reports.RECIPIENT_PET_OWNER)

    assert 'Healthy and happy.' in captured[0]
    assert 'Owner hesitant' not in captured[0]


def test_unknown_recipient_type_is_rejected(db, owner, completed, mailer) -> None:
    with pytest.raises(HTTPException) as exception_info:
        reports.email_report(db, completed.id, as_actor(owner), mailer, 'neighbour')

    assert exception_info.value.status_code == 400


def test_mail_failure_is_reported(db, owner, completed) -> None:
    class BrokenMailer:
        def send(self, to, subject, html):
            raise RuntimeError('mail service down')

    with pytest.raises(HTTPException) as exception_info:
        reports.email_report(db, completed.id, as_actor(owner), BrokenMailer(), reports.RECIPIENT_PET_OWNER)

    assert exception_info.value.status_code == 502
