import pytest

from maintenancehub.users.models import Company
from maintenancehub.users.models import User
from maintenancehub.users.tests.factories import CompanyFactory
from maintenancehub.users.tests.factories import UserFactory


@pytest.fixture
def company(db) -> Company:
    return CompanyFactory()


@pytest.fixture
def user(db, company) -> User:
    return UserFactory(company=company)
