import pytest
from fastapi import HTTPException

from conftest import make_appointment, make_user
from mobipet.models.user import ROLE_ADMIN, ROLE_PET_OWNER, ROLE_VET, User
from mobipet.services import admin


def _apply(db, email='Dr.Jane@Example.com', full_name='Jane Doe'):
    return admin.submit_application(
        db,
        full_name,
        email,
        phone='0400 000 000',
        license_number='WA-1234',
        years_experience=8,
        specialties=['surgery', 'dentistry'],
    )


def test_stats_count_users_by_role(db, owner, vet, other_vet, pet) -> None:
    make_appointment(db, owner.id)

    assert admin.get_stats(db) == {
        'total_pet_owners': 1,
        'total_vets': 2,
        'total_appointments': 1,
        'total_pets': 1,
    }


def test_list_users_filters_by_role(db, owner, vet, admin_user) -> None:
    assert [u.id for u in admin.list_users(db, ROLE_VET)] == [vet.id]
    assert len(admin.list_users(db)) == 3


def test_set_user_role(db, owner) -> None:
    assert admin.set_user_role(db, owner.id, ROLE_ADMIN).role == ROLE_ADMIN

    with pytest.raises(HTTPException) as exception_info:
        admin.set_user_role(db, owner.id, 'superuser')
    assert exception_info.value.status_code == 400

    with pytest.raises(HTTPException) as exception_info:
        admin.set_user_role(db, 'missing', ROLE_VET)
    assert exception_info.value.status_code == 404


def test_submit_application_normalises_email(db) -> None:
    application = _apply(db)

    assert application.email == 'dr.jane@example.com'
    assert application.status == admin.APPLICATION_PENDING
    assert application.specialties == ['surgery', 'dentistry']


def test_submit_application_requires_name_and_email(db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        admin.submit_application(db, '  ', 'vet@example.com')

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'Full name and email are required.'


def test_duplicate_application_is_a_conflict(db) -> None:
    _apply(db)

    with pytest.raises(HTTPException) as exception_info:
        _apply(db, email='DR.JANE@example.com')

    assert exception_info.value.status_code == 409


def test_approving_creates_a_vet_account_and_welcomes_them(db, mailer) -> None:
    application = _apply(db)

    reviewed, user = admin.review_application(db, application.id, admin.REVIEW_APPROVE, send_email=True, mailer=mailer)

    assert reviewed.status == admin.APPLICATION_APPROVED
    assert reviewed.reviewed_at is not None
    assert user.role == ROLE_VET
    assert (user.first_name, user.last_name) == ('Jane', 'Doe')
    assert db.query(User).filter(User.email == 'dr.jane@example.com').count() == 1
    assert mailer.sent == [('dr.jane@example.com', 'Welcome to MobiPet')]


def test_approving_promotes_an_existing_account(db) -> None:
    existing = make_user(db, 'user-7', ROLE_PET_OWNER, email='dr.jane@example.com')
    application = _apply(db)

    _, user = admin.review_application(db, application.id, admin.REVIEW_APPROVE)

    assert user.id == existing.id
    assert user.role == ROLE_VET


def test_declining_leaves_users_untouched(db) -> None:
    application = _apply(db)

    reviewed, user = admin.review_application(db, application.id, admin.REVIEW_DECLINE, notes='Licence not verified')

    assert user is None
    assert reviewed.status == admin.APPLICATION_DECLINED
    assert reviewed.notes == 'Licence not verified'
    assert db.query(User).count() == 0


def test_review_is_one_shot(db) -> None:
    application = _apply(db)
    admin.review_application(db, application.id, admin.REVIEW_DECLINE)

    with pytest.raises(HTTPException) as exception_info:
        admin.review_application(db, application.id, admin.REVIEW_APPROVE)

    assert exception_info.value.status_code == 409


@pytest.mark.parametrize('action, application_id, status_code', [('promote', 1, 400), ('approve', 999, 404)])
def test_review_rejects_bad_requests(db, action, application_id, status_code) -> None:
    _apply(db)

    with pytest.raises(HTTPException) as exception_info:
        admin.review_application(db, application_id, action)

    assert exception_info.value.status_code == status_code
