from datetime import date, datetime

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy.orm import Session

from mobipet.auth.dependencies import AuthContext, get_auth_context
from mobipet.database import get_db
from mobipet.services import time_proposals
from mobipet.services.integrations import Integrations, get_integrations

router = APIRouter(tags=['time-proposals'])


class CreateTimeProposalRequest(BaseModel):
    appointment_id: int
    proposed_date: date
    proposed_time_range: str
    proposed_exact_time: str | None = None
    message: str | None = None

    @field_validator('proposed_time_range')
    @classmethod
    def validate_time_range(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Missing required fields.')
        return normalized


class RespondToProposalRequest(BaseModel):
    status: str

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        return value.strip().lower()


class TimeProposalResponse(BaseModel):
    id: int
    appointment_id: int
    vet_id: str
    proposed_date: date
    proposed_time_range: str
    proposed_exact_time: str | None = None
    message: str | None = None
    status: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


@router.post('', response_model=TimeProposalResponse, status_code=status.HTTP_201_CREATED)
def create_time_proposal(
    data: CreateTimeProposalRequest,
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
    integrations: Integrations = Depends(get_integrations),
):
    return time_proposals.submit_proposal(
        db,
        data.appointment_id,
        context,
        integrations,
        data.proposed_date,
        data.proposed_time_range,
        proposed_exact_time=data.proposed_exact_time,
        message=data.message,
    )


@router.get('', response_model=list[TimeProposalResponse])
def list_time_proposals(
    appointment_id: int = Query(...),
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    return time_proposals.list_proposals(db, appointment_id, context)


@router.patch('/{proposal_id}', response_model=TimeProposalResponse)
def respond_to_time_proposal(
    proposal_id: int,
    data: RespondToProposalRequest,
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
    integrations: Integrations = Depends(get_integrations),
):
    return time_proposals.respond_to_proposal(db, proposal_id, context, integrations, data.status)


@router.delete('/{proposal_id}', status_code=status.HTTP_204_NO_CONTENT)
def withdraw_time_proposal(
    proposal_id: int,
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    time_proposals.withdraw_proposal(db, proposal_id, context)
