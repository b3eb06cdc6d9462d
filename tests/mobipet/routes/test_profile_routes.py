import pytest
from fastapi import HTTPException

from conftest import as_actor
from mobipet.auth.dependencies import AuthContext
from mobipet.models.user import ROLE_VET, User
from mobipet.routes.auth_routes import me
from mobipet.routes.profile_routes import UpdateProfileRequest, get_profile, update_profile


def test_me_echoes_the_resolved_context() -> None:
    response = me(context=AuthContext('vet-1', ROLE_VET, 'vet@example.com'))

    assert response.model_dump() == {'id': 'vet-1', 'role': ROLE_VET, 'email': 'vet@example.com'}


def test_first_profile_read_creates_the_user_row(db) -> None:
    context = AuthContext('vet-7', ROLE_VET, 'new.vet@example.com')

    profile = get_profile(context=context, db=db)

    assert profile.id == 'vet-7'
    assert profile.role == ROLE_VET
    assert db.query(User).count() == 1


def test_profile_without_email_claim_cannot_be_created(db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_profile(context=AuthContext('anon', ROLE_VET), db=db)

    assert exception_info.value.status_code == 400


def test_update_profile_request_treats_blank_as_cleared() -> None:
    request = UpdateProfileRequest(phone='  ', city=' Fremantle ')

    assert request.phone is None
    assert request.city == 'Fremantle'


def test_update_profile_only_touches_sent_fields(db, owner) -> None:
    updated = update_profile(UpdateProfileRequest(phone='0400 111 222'), context=as_actor(owner), db=db)

    assert updated.phone == '0400 111 222'
    assert updated.first_name == 'Olivia'
