from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_scheduling.auth import jwt_handler
from clinic_scheduling.database import get_db
from clinic_scheduling.models.user import ADMIN_ROLE, DOCTOR_ROLE, User

security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except Exception as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    email = payload.get("sub")
    if not email:
        raise HTTPException(status_code=401, detail="Invalid token subject")

    user = await db.scalar(select(User).where(User.email == email))
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def is_admin(user: User) -> bool:
    return user.role == ADMIN_ROLE


def require_provider_access(user: User, provider_id: int) -> None:
    """Doctors act on their own schedule; admins act on anyone's."""
    if is_admin(user):
        return
    if user.role == DOCTOR_ROLE and user.id == provider_id:
        return
    raise HTTPException(status_code=403, detail="Only the doctor or an admin can manage this schedule.")


def require_patient_access(user: User, patient_id: int) -> None:
    if is_admin(user) or user.id == patient_id:
        return
    raise HTTPException(status_code=403, detail="Patients can only act on their own appointments.")
