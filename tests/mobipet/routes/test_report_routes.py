import pytest

from conftest import bearer, make_appointment, make_user
from mobipet.models.clinical_report import ClinicalReport
from mobipet.models.user import ROLE_PET_OWNER, ROLE_VET


@pytest.fixture
def appointment_id(session_factory) -> int:
    with session_factory() as session:
        make_user(session, 'owner-1', ROLE_PET_OWNER)
        make_user(session, 'vet-1', ROLE_VET)
        appointment = make_appointment(session, 'owner-1', status='completed', vet_id='vet-1')
        session.add(ClinicalReport(
            appointment_id=appointment.id,
            vet_id='vet-1',
            shared_notes='Healthy and happy.',
            confidential_notes='Watch the left hip.',
        ))
        session.commit()
        return appointment.id


def test_owner_sees_shared_notes_only(client, appointment_id) -> None:
    response = client.get(f'/appointments/{appointment_id}/report', headers=bearer('owner-1'))

    assert response.status_code == 200
    assert response.json()['shared_notes'] == 'Healthy and happy.'
    assert response.json()['confidential_notes'] is None


def test_assigned_vet_sees_confidential_notes(client, appointment_id) -> None:
    response = client.get(f'/appointments/{appointment_id}/report', headers=bearer('vet-1'))

    assert response.json()['confidential_notes'] == 'Watch the left hip.'


def test_email_report_to_owner(client, appointment_id, mailer) -> None:
    response = client.post(
        f'/appointments/{appointment_id}/report/email',
        json={'recipient_type': 'pet_owner'},
        headers=bearer('owner-1'),
    )

    assert response.status_code == 200
    assert response.json() == {'success': True, 'recipient': 'owner-1@example.com'}
    assert mailer.sent == [('owner-1@example.com', 'Veterinary Report for your pet')]


def test_email_report_rejects_unknown_recipient(client, appointment_id) -> None:
    response = client.post(
        f'/appointments/{appointment_id}/report/email',
        json={'recipient_type': 'everyone'},
        headers=bearer('vet-1'),
    )

    assert response.status_code == 422
