from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from sqlalchemy.orm import Session

from ..core.exceptions import UserNotFoundError
from ..core.stock import INTEGER_MAX
from ..crud.users import ROLES, archive_user, create_user, get_user, list_users, update_user
from ..db.session import get_db
from ..deps.auth import require_admin
from ..models.user import User
from ..schemas.user import UserCreate, UserOut, UserUpdate

# Managing actors is an administrator task end to end.
router = APIRouter(prefix="/api/v1/users", tags=["users"], dependencies=[Depends(require_admin)])


def _get_or_404(db: Session, user_id: int) -> User:
    user = get_user(db, user_id)
    if user is None:
        raise UserNotFoundError()
    return user


@router.get("", response_model=list[UserOut])
def api_list_users(role: Optional[str] = Query(default=None), db: Session = Depends(get_db)):
    if role is not None and role not in ROLES:
        raise HTTPException(status_code=400, detail=f"role must be one of {sorted(ROLES)}")
    return [UserOut.model_validate(user) for user in list_users(db, role=role)]


@router.get("/{user_id}", response_model=UserOut)
def api_get_user(user_id: int = Path(ge=1, le=INTEGER_MAX), db: Session = Depends(get_db)):
    return UserOut.model_validate(_get_or_404(db, user_id))


@router.post("", response_model=UserOut, status_code=201)
def api_create_user(payload: UserCreate, db: Session = Depends(get_db)):
    try:
        user = create_user(db, payload.model_dump())
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return UserOut.model_validate(user)


@router.put("/{user_id}", response_model=UserOut)
def api_update_user(
    payload: UserUpdate,
    user_id: int = Path(ge=1, le=INTEGER_MAX),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    user = _get_or_404(db, user_id)
    changes = payload.model_dump(exclude_none=True)
    if user.id == admin.id and changes.get("role", admin.role) != admin.role:
        raise HTTPException(status_code=400, detail="Administrators cannot change their own role")
    try:
        updated = update_user(db, user, changes)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return UserOut.model_validate(updated)


@router.delete("/{user_id}")
def api_delete_user(
    user_id: int = Path(ge=1, le=INTEGER_MAX),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    user = _get_or_404(db, user_id)
    if user.id == admin.id:
        raise HTTPException(status_code=400, detail="Administrators cannot delete themselves")
    archive_user(db, user)
    return {"status": "archived", "id": user_id}
