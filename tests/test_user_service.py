from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest

from application.dto import UserAppearanceUpdateDTO
from application.ports.realtime import Envelope
from application.services.user_service import UserApplicationService
from domain.common.exceptions import UserNotFoundException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.user.entity import User
from domain.user.repository import UserRepository


class InMemoryUserRepository(UserRepository):
    def __init__(self, users: Dict[int, User]):
        self._users = users

    async def get_by_id(self, user_id: int) -> Optional[User]:  # type: ignore[override]
        user = self._users.get(user_id)
        return User(**vars(user)) if user else None

    async def get_all(self) -> List[User]:  # type: ignore[override]
        return [User(**vars(u)) for _, u in sorted(self._users.items())]

    async def update(self, user: User) -> User:  # type: ignore[override]
        if user.id not in self._users:
            raise UserNotFoundException(str(user.id))
        self._users[user.id] = User(**vars(user))
        return user


class FakeUnitOfWork(AbstractUnitOfWork):
    def __init__(self, users: Dict[int, User], *, readonly: bool = False):
        super().__init__(readonly=readonly)
        self.user_repository = InMemoryUserRepository(users)
        self.commits = 0

    async def commit(self) -> None:
        self.commits += 1
        self._committed = True

    async def rollback(self) -> None:
        self._committed = False


class RecordingPublisher:
    def __init__(self) -> None:
        self.published: List[tuple] = []

    async def publish(self, channel: str, envelope: Envelope) -> None:
        self.published.append((channel, envelope))

    async def subscribe(self, handler) -> None:
        return None

    async def aclose(self) -> None:
        return None


class ExplodingPublisher(RecordingPublisher):
    async def publish(self, channel: str, envelope: Envelope) -> None:
        raise ConnectionError("broker down")


def _store() -> Dict[int, User]:
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    return {
        1: User(id=1, name="alice", online=False, created_at=now, updated_at=now),
        2: User(id=2, name="bob", online=True, created_at=now, updated_at=now),
    }


def _service(users, publisher, **kwargs) -> UserApplicationService:
    return UserApplicationService(
        uow_factory=lambda readonly=False: FakeUnitOfWork(users, readonly=readonly),
        publisher=publisher,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_update_publishes_serialized_user():
    users = _store()
    publisher = RecordingPublisher()
    svc = _service(users, publisher)

    dto = await svc.update_user(1, UserAppearanceUpdateDTO(online=True))

    assert dto.online is True
    assert users[1].online is True
    assert len(publisher.published) == 1
    channel, envelope = publisher.published[0]
    assert channel == "appearance_channel"
    assert envelope.type == "message"
    assert envelope.channel == "appearance_channel"
    assert envelope.data["id"] == 1
    assert envelope.data["online"] is True
    assert envelope.data["updated_at"].endswith("Z")


@pytest.mark.asyncio
async def test_update_missing_user_raises_and_publishes_nothing():
    publisher = RecordingPublisher()
    svc = _service(_store(), publisher)

    with pytest.raises(UserNotFoundException):
        await svc.update_user(404, UserAppearanceUpdateDTO(online=True))

    assert publisher.published == []


@pytest.mark.asyncio
async def test_update_without_online_keeps_flag_and_still_publishes():
    users = _store()
    publisher = RecordingPublisher()
    svc = _service(users, publisher)

    dto = await svc.update_user(2, UserAppearanceUpdateDTO())

    assert dto.online is True
    assert len(publisher.published) == 1


@pytest.mark.asyncio
async def test_publish_failure_does_not_undo_the_write():
    users = _store()
    svc = _service(users, ExplodingPublisher())

    dto = await svc.update_user(1, UserAppearanceUpdateDTO(online=True))

    assert dto.online is True
    assert users[1].online is True


@pytest.mark.asyncio
async def test_custom_channel_name_is_used():
    publisher = RecordingPublisher()
    svc = _service(_store(), publisher, channel="presence")

    await svc.update_user(1, UserAppearanceUpdateDTO(online=True))

    assert publisher.published[0][0] == "presence"


@pytest.mark.asyncio
async def test_list_does_not_publish_by_default():
    publisher = RecordingPublisher()
    svc = _service(_store(), publisher)

    users = await svc.list_users()

    assert [u.id for u in users] == [1, 2]
    assert publisher.published == []


@pytest.mark.asyncio
async def test_list_broadcast_switch_publishes_full_list():
    publisher = RecordingPublisher()
    svc = _service(_store(), publisher, broadcast_on_list=True)

    await svc.list_users()

    assert len(publisher.published) == 1
    _, envelope = publisher.published[0]
    assert [u["id"] for u in envelope.data] == [1, 2]


@pytest.mark.asyncio
async def test_list_broadcast_switch_skips_empty_list():
    publisher = RecordingPublisher()
    svc = _service({}, publisher, broadcast_on_list=True)

    assert await svc.list_users() == []
    assert publisher.published == []
