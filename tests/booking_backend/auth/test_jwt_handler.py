import jwt
import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from booking_backend import issue_token
from booking_backend.auth import jwt_handler
from booking_backend.auth.dependencies import get_current_actor
from booking_backend.core import config
from booking_backend.core.actor import Actor, ActorRole


def _bearer(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme='Bearer', credentials=token)


def test_token_round_trips_actor() -> None:
    actor = Actor(role=ActorRole.PRACTITIONER, actor_id=7)

    payload = jwt_handler.decode_access_token(jwt_handler.create_access_token(actor))

    assert payload['sub'] == '7'
    assert payload['role'] == 'PRACTITIONER'
    assert jwt_handler.actor_from_claims(payload) == actor


def test_get_current_actor_accepts_valid_token() -> None:
    token = jwt_handler.create_access_token(Actor(role=ActorRole.ADMIN, actor_id=1))

    assert get_current_actor(_bearer(token)) == Actor(role=ActorRole.ADMIN, actor_id=1)


def test_get_current_actor_rejects_garbage() -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_current_actor(_bearer('not-a-token'))

    assert exception_info.value.status_code == 401
    assert exception_info.value.detail == 'Invalid token'


def test_get_current_actor_rejects_expired_token() -> None:
    token = jwt_handler.create_access_token(Actor(role=ActorRole.ADMIN, actor_id=1), expires_minutes=-5)

    with pytest.raises(HTTPException) as exception_info:
        get_current_actor(_bearer(token))

    assert exception_info.value.status_code == 401


@pytest.mark.parametrize(
    'claims',
    [
        {'sub': '1', 'role': 'SUPERUSER'},
        {'sub': 'abc', 'role': 'ADMIN'},
        {'role': 'ADMIN'},
    ],
)
def test_get_current_actor_rejects_bad_subject(claims) -> None:
    token = jwt.encode(claims, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)

    with pytest.raises(HTTPException) as exception_info:
        get_current_actor(_bearer(token))

    assert exception_info.value.status_code == 401
    assert exception_info.value.detail == 'Invalid token subject'


def test_issue_token_prints_usable_token(capsys: pytest.CaptureFixture[str]) -> None:
    assert issue_token.main(['--role', 'REQUESTER', '--actor-id', '12']) == 0

    token = capsys.readouterr().out.strip()
    assert get_current_actor(_bearer(token)) == Actor(role=ActorRole.REQUESTER, actor_id=12)


def test_issue_token_refuses_in_production(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    monkeypatch.setattr(config, 'APP_ENV', 'production')

    assert issue_token.main(['--role', 'ADMIN', '--actor-id', '1']) == 1
    assert capsys.readouterr().out == ''
