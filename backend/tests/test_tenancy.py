"""
Tests for the Tenant/Role Gate and bearer-token verification.
"""

import uuid
from datetime import timedelta

import pytest

from core.errors import AuthorizationError, UnauthenticatedError, ValidationError
from core.security import create_access_token, hash_password, verify, verify_password
from core.tenancy import Caller, RequiredRole, Role, bind_tenant, require_role

COMPANY_ID = uuid.UUID("00000000-0000-0000-0000-0000000000a1")
OTHER_COMPANY_ID = uuid.UUID("00000000-0000-0000-0000-0000000000b2")


@pytest.fixture
def company_caller():
    return Caller(user_id=uuid.uuid4(), role=Role.COMPANY, company_id=COMPANY_ID)


@pytest.fixture
def admin():
    return Caller(user_id=uuid.uuid4(), role=Role.ADMIN)


class TestRequireRole:
    def test_any_accepts_everyone(self, company_caller, admin):
        assert require_role(company_caller, RequiredRole.ANY) is company_caller
        assert require_role(admin, RequiredRole.ANY) is admin

    def test_admin_only(self, company_caller, admin):
        assert require_role(admin, RequiredRole.ADMIN) is admin
        with pytest.raises(AuthorizationError) as exc_info:
            require_role(company_caller, RequiredRole.ADMIN)
        assert exc_info.value.context["required_role"] == "admin"

    def test_company_only(self, company_caller, admin):
        assert require_role(company_caller, RequiredRole.COMPANY) is company_caller
        with pytest.raises(AuthorizationError):
            require_role(admin, RequiredRole.COMPANY)


class TestBindTenant:
    def test_own_company_binds(self, company_caller):
        assert bind_tenant(company_caller, COMPANY_ID) == COMPANY_ID
        assert bind_tenant(company_caller, str(COMPANY_ID)) == COMPANY_ID

    def test_other_company_is_forbidden(self, company_caller):
        with pytest.raises(AuthorizationError) as exc_info:
            bind_tenant(company_caller, OTHER_COMPANY_ID)
        assert exc_info.value.status_code == 403

    def test_admin_has_no_tenant(self, admin):
        with pytest.raises(AuthorizationError):
            bind_tenant(admin, COMPANY_ID)

    def test_malformed_company_id_is_validation_error(self, company_caller):
        with pytest.raises(ValidationError) as exc_info:
            bind_tenant(company_caller, "not-a-uuid")
        assert exc_info.value.status_code == 422
        assert exc_info.value.context["field"] == "company_id"


class TestTokens:
    def test_company_token_round_trips_to_caller(self):
        user_id = uuid.uuid4()
        token = create_access_token({"sub": str(user_id), "role": "company", "company_id": str(COMPANY_ID)})
        caller = verify(token)
        assert caller == Caller(user_id=user_id, role=Role.COMPANY, company_id=COMPANY_ID)

    def test_admin_token_has_no_company(self):
        token = create_access_token({"sub": str(uuid.uuid4()), "role": "admin", "company_id": None})
        caller = verify(token)
        assert caller.is_admin
        assert caller.company_id is None

    def test_expired_token_is_rejected(self):
        token = create_access_token(
            {"sub": str(uuid.uuid4()), "role": "admin"}, expires_delta=timedelta(seconds=-1)
        )
        with pytest.raises(UnauthenticatedError):
            verify(token)

    def test_garbage_token_is_rejected(self):
        with pytest.raises(UnauthenticatedError):
            verify("not-a-jwt")

    def test_unknown_role_is_rejected(self):
        token = create_access_token({"sub": str(uuid.uuid4()), "role": "superuser"})
        with pytest.raises(UnauthenticatedError):
            verify(token)

    def test_company_token_without_company_is_rejected(self):
        token = create_access_token({"sub": str(uuid.uuid4()), "role": "company"})
        with pytest.raises(UnauthenticatedError):
            verify(token)


def test_password_hashing():
    hashed = hash_password("correct-horse")
    assert hashed != "correct-horse"
    assert verify_password("correct-horse", hashed)
    assert not verify_password("wrong", hashed)
