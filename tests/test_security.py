"""JWT 工具与异常处理测试。"""
from datetime import timedelta

from jose import jwt

from netwatch.core.config import settings
from netwatch.core.exceptions import AlertNotFoundError, NotFoundError
from netwatch.core.security import create_access_token, decode_token


class TestTokens:
    def test_round_trip_claims(self):
        payload = decode_token(create_access_token("7"))
        assert payload["sub"] == "7"
        assert payload["type"] == "access"

    def test_expired(self):
        assert decode_token(create_access_token("7", expires_delta=timedelta(seconds=-1))) is None

    def test_tampered(self):
        token = jwt.encode({"sub": "7", "type": "access"}, "wrong-key", algorithm=settings.jwt_algorithm)
        assert decode_token(token) is None

    def test_garbage(self):
        assert decode_token("not.a.token") is None


class TestAlertNotFoundError:
    def test_is_not_found(self):
        err = AlertNotFoundError(12)
        assert isinstance(err, NotFoundError)
        assert err.status_code == 404
        assert err.message == "Alert not found or access denied"
        assert err.detail == "alert_id=12"
