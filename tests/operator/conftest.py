import pytest
from eth_account import Account

from doubles import OPERATOR_KEY, USER_KEY


@pytest.fixture
def operator_account():
    return Account.from_key(OPERATOR_KEY)


@pytest.fixture
def user_account():
    return Account.from_key(USER_KEY)
