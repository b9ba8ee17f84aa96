from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from clinic_backend.auth import jwt_handler
from clinic_backend.auth.dependencies import get_current_user, require_roles
from clinic_backend.core import config
from clinic_backend.models.user import UserRole


def _credentials(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme='Bearer', credentials=token)


def test_token_round_trip_carries_user_id_and_role() -> None:
    payload = jwt_handler.decode_access_token(jwt_handler.create_access_token(7, UserRole.DOCTOR))

    assert payload['sub'] == '7'
    assert payload['role'] == 'doctor'


def test_get_current_user_loads_the_subject(db, patient) -> None:
    token = jwt_handler.create_access_token(patient.id, patient.role)

    assert get_current_user(credentials=_credentials(token), db=db).id == patient.id


def test_get_current_user_rejects_expired_tokens(db, patient) -> None:
    expired = jwt.encode(
        {'sub': str(patient.id), 'exp': datetime.now(timezone.utc) - timedelta(minutes=1)},
        config.JWT_SECRET_KEY,
        algorithm=config.JWT_ALGORITHM,
    )

    with pytest.raises(HTTPException) as exception_info:
        get_current_user(credentials=_credentials(expired), db=db)

    assert exception_info.value.status_code == 401
    assert exception_info.value.detail == 'Invalid token'


def test_get_current_user_rejects_unknown_and_inactive_users(db, make_user) -> None:
    inactive = make_user(UserRole.PATIENT, is_active=False)

    with pytest.raises(HTTPException) as unknown:
        get_current_user(credentials=_credentials(jwt_handler.create_access_token(999, 'patient')), db=db)
    with pytest.raises(HTTPException) as disabled:
        get_current_user(credentials=_credentials(jwt_handler.create_access_token(inactive.id, 'patient')), db=db)

    assert unknown.value.status_code == 401
    assert disabled.value.status_code == 403


def test_require_roles_gates_by_role(patient, doctor) -> None:
    checker = require_roles(UserRole.DOCTOR)

    assert checker(current_user=doctor) is doctor
    with pytest.raises(HTTPException) as exception_info:
        checker(current_user=patient)
    assert exception_info.value.status_code == 403
