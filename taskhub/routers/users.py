from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.dependencies import get_current_user, get_db
from taskhub.models.user import User as UserModel
from taskhub.schemas.user import UserLookupResponse, UserPublic, UserResponse
from taskhub.services.auth import get_user_by_email

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me", response_model=UserResponse)
async def read_users_me(current_user: UserModel = Depends(get_current_user)):
    return current_user


@router.get("/lookup/{email}", response_model=UserLookupResponse)
async def lookup_user(
    email: str,
    db: AsyncSession = Depends(get_db),
    current_user: UserModel = Depends(get_current_user),
):
    email = email.strip()
    if not email:
        raise HTTPException(status_code=400, detail="Email is required")
    user = await get_user_by_email(db, email)
    if not user:
        return {"message": "User not found", "data": False}
    return {"message": "User found", "data": UserPublic.model_validate(user)}
