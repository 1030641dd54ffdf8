from datetime import datetime, timezone

import pytest

from domain.common.exceptions import DomainValidationException
from domain.user.entity import User


def test_set_online_reports_change_and_touches_timestamp():
    before = datetime(2024, 1, 1, tzinfo=timezone.utc)
    user = User(id=1, name="alice", online=False, updated_at=before)

    assert user.set_online(True) is True
    assert user.online is True
    assert user.updated_at > before


def test_set_online_same_value_is_not_a_change():
    user = User(id=1, online=True)

    assert user.set_online(True) is False
    assert user.updated_at is not None


@pytest.mark.parametrize("value", [1, 0, "true", None])
def test_non_boolean_online_is_rejected(value):
    user = User(id=1)

    with pytest.raises(DomainValidationException) as exc_info:
        user.set_online(value)

    assert exc_info.value.field == "online"
    assert user.online is False


def test_constructor_validates_online():
    with pytest.raises(DomainValidationException):
        User(id=1, online="yes")
