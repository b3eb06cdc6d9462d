from fastapi import APIRouter, Depends
from pydantic import BaseModel

from mobipet.auth.dependencies import AuthContext, get_auth_context

router = APIRouter(tags=['auth'])


class MeResponse(BaseModel):
    id: str
    role: str
    email: str | None = None


@router.get('/me', response_model=MeResponse)
def me(context: AuthContext = Depends(get_auth_context)):
    return MeResponse(id=context.identity, role=context.role, email=context.email)
