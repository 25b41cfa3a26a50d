from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from trackledger.core.errors import Conflict, InvalidPayload, UserNotFound
from trackledger.core.logging import log_context, log_event
from trackledger.core.security import policy
from trackledger.core.security.principal import Principal
from trackledger.core.security.roles import known_locations
from trackledger.core.store import RecordStore
from trackledger.core.tasks.schemas import new_id, now_iso

from .schemas import User, UserCreate, UserUpdate


def _find_user(users: list[User], user_id: str) -> tuple[int, User]:
    for index, user in enumerate(users):
        if user.id == user_id:
            return index, user
    raise UserNotFound(user_id)


def _parse(model: type[UserCreate] | type[UserUpdate], body: Any) -> Any:
    if not isinstance(body, dict):
        raise InvalidPayload("user body must be a JSON object")
    try:
        return model.model_validate(body)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ())) or "body"
        raise InvalidPayload(f"invalid user: {location}: {first.get('msg')}") from exc


def _check_locations(location: str | None, permissions: list[str] | None) -> None:
    catalogue = known_locations()
    if location is not None and location not in catalogue:
        raise InvalidPayload(f"unknown location: {location}")
    unknown = [item for item in permissions or [] if item not in catalogue]
    if unknown:
        raise InvalidPayload(f"unknown locations in permissions: {', '.join(unknown)}")


def _check_unique(users: list[User], username: str | None, email: str | None, skip_id: str | None = None) -> None:
    for user in users:
        if user.id == skip_id:
            continue
        if username is not None and user.username.casefold() == username.casefold():
            raise Conflict(f"username already exists: {username}")
        if email and user.email and user.email.casefold() == email.casefold():
            raise Conflict(f"email already exists: {email}")


def _admin_count(users: list[User]) -> int:
    return sum(1 for user in users if user.is_admin)


class UserDirectory:
    """Admin-only management of the user records that principals are issued from.

    The directory never stores or returns credentials; password material written by
    the credential service is kept on the record but stripped from every response.
    """

    def __init__(self, store: RecordStore) -> None:
        self.store = store
        self.logger = logging.getLogger("trackledger.users")

    def list_users(self, principal: Principal) -> list[User]:
        policy.require_manage_users(principal)
        return self.store.load_users()

    def get_user(self, principal: Principal, user_id: str) -> User:
        policy.require_manage_users(principal)
        _, user = _find_user(self.store.load_users(), user_id)
        return user

    def create_user(self, principal: Principal, body: Any) -> User:
        policy.require_manage_users(principal)
        request = _parse(UserCreate, body)
        _check_locations(request.location, request.permissions)

        with log_context(user_id=principal.id), self.store.users_transaction() as users:
            _check_unique(users, request.username, request.email)
            user = User(
                id=new_id("user"),
                username=request.username,
                email=request.email,
                role=request.role,
                location=request.location,
                permissions=[request.location] if request.permissions is None else request.permissions,
            )
            users.append(user)

        log_event(self.logger, "user_created", target=user.id, role=user.role, location=user.location)
        return user

    def update_user(self, principal: Principal, user_id: str, body: Any) -> User:
        policy.require_manage_users(principal)
        request = _parse(UserUpdate, body)
        changes = request.model_dump(exclude_none=True)
        _check_locations(request.location, request.permissions)

        with log_context(user_id=principal.id), self.store.users_transaction() as users:
            index, user = _find_user(users, user_id)
            _check_unique(users, request.username, request.email, skip_id=user_id)

            demoting = user.is_admin and changes.get("role", "admin") != "admin"
            if demoting and user_id == principal.id:
                raise Conflict("cannot change your own admin role")
            if demoting and _admin_count(users) <= 1:
                raise Conflict("cannot demote the last remaining admin")

            updated = user.model_copy(update={**changes, "updated_at": now_iso()})
            users[index] = updated

        log_event(self.logger, "user_updated", target=user_id, changed=sorted(changes))
        return updated

    def delete_user(self, principal: Principal, user_id: str) -> User:
        policy.require_manage_users(principal)
        if user_id == principal.id:
            raise Conflict("cannot delete your own account")

        with log_context(user_id=principal.id), self.store.users_transaction() as users:
            index, user = _find_user(users, user_id)
            if user.is_admin and _admin_count(users) <= 1:
                raise Conflict("cannot delete the last remaining admin")
            del users[index]

        log_event(self.logger, "user_deleted", target=user_id)
        return user
