from datetime import datetime

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy.orm import Session

from mobipet.auth.dependencies import AuthContext, require_pet_owner
from mobipet.core.errors import ConflictError, NotFoundError
from mobipet.database import get_db
from mobipet.models.appointment import Appointment
from mobipet.models.pet import Pet
from mobipet.services import store
from mobipet.services.appointment_states import TERMINAL_STATUSES

router = APIRouter(tags=['pets'])


class PetFields(BaseModel):
    breed: str | None = None
    age: int | None = None
    weight: float | None = None
    image: str | None = None
    medical_history: dict | list | None = None

    @field_validator('age')
    @classmethod
    def validate_age(cls, value: int | None) -> int | None:
        if value is not None and value < 0:
            raise ValueError('Age cannot be negative.')
        return value

    @field_validator('weight')
    @classmethod
    def validate_weight(cls, value: float | None) -> float | None:
        if value is not None and value <= 0:
            raise ValueError('Weight must be positive.')
        return value


class CreatePetRequest(PetFields):
    name: str
    type: str

    @field_validator('name', 'type')
    @classmethod
    def validate_required_text(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Name and type are required.')
        return normalized


class UpdatePetRequest(PetFields):
    name: str | None = None
    type: str | None = None


class PetResponse(BaseModel):
    id: int
    owner_id: str
    name: str
    type: str
    breed: str | None = None
    age: int | None = None
    weight: float | None = None
    image: str | None = None
    medical_history: dict | list | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


def get_owned_pet(db: Session, pet_id: int, owner_id: str) -> Pet:
    pet = store.get_pet(db, pet_id)
    if pet is None or pet.owner_id != owner_id:
        raise NotFoundError('Pet not found.')
    return pet


@router.get('', response_model=list[PetResponse])
def list_pets(
    context: AuthContext = Depends(require_pet_owner),
    db: Session = Depends(get_db),
):
    return db.query(Pet).filter(Pet.owner_id == context.identity).order_by(Pet.created_at.asc()).all()


@router.post('', response_model=PetResponse, status_code=status.HTTP_201_CREATED)
def create_pet(
    data: CreatePetRequest,
    context: AuthContext = Depends(require_pet_owner),
    db: Session = Depends(get_db),
):
    pet = Pet(owner_id=context.identity, **data.model_dump())
    db.add(pet)
    store.commit(db)
    db.refresh(pet)
    return pet


@router.patch('/{pet_id}', response_model=PetResponse)
def update_pet(
    pet_id: int,
    data: UpdatePetRequest,
    context: AuthContext = Depends(require_pet_owner),
    db: Session = Depends(get_db),
):
    pet = get_owned_pet(db, pet_id, context.identity)
    for name, value in data.model_dump(exclude_unset=True).items():
        if name in ('name', 'type') and not (value or '').strip():
            continue
        setattr(pet, name, value)
    store.commit(db)
    db.refresh(pet)
    return pet


@router.delete('/{pet_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_pet(
    pet_id: int,
    context: AuthContext = Depends(require_pet_owner),
    db: Session = Depends(get_db),
):
    pet = get_owned_pet(db, pet_id, context.identity)
    active = db.query(Appointment.id).filter(
        Appointment.pet_id == pet.id,
        Appointment.status.notin_(tuple(TERMINAL_STATUSES)),
    ).first()
    if active is not None:
        raise ConflictError('This pet has an active appointment.')

    db.delete(pet)
    store.commit(db)
