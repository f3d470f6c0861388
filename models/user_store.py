"""
User lookups and writes needed by the auth service.

Unique-constraint conflicts come back as DuplicateError naming the field.
After an IntegrityError the field is found by re-querying, never by reading
the driver's error text.
"""
from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from models.user import User
from services.errors import DuplicateError


class UserStore:

    def __init__(self, storage):
        self._storage = storage

    def _query(self):
        return self._storage.get_session().query(User)

    def find_by_username(self, username: str) -> User | None:
        return self._query().filter(User.username == username).first()

    def find_by_email(self, email: str) -> User | None:
        return self._query().filter(User.email == email).first()

    def find_by_id(self, user_id: str) -> User | None:
        return self._storage.get(User, user_id)

    def conflicting_field(self, username: str, email: str) -> str | None:
        if self.find_by_email(email) is not None:
            return "email"
        if self.find_by_username(username) is not None:
            return "username"
        return None

    def create(self, username: str, email: str, password_hash: str) -> User:
        field = self.conflicting_field(username, email)
        if field:
            raise DuplicateError(field)

        user = User(username=username, email=email, password_hash=password_hash)
        self._storage.new(user)
        try:
            self._storage.save()
        except IntegrityError:
            # lost a race with a concurrent registration
            field = self.conflicting_field(username, email)
            if field:
                raise DuplicateError(field)
            raise
        return user

    def update_password_hash(self, user_id: str, new_hash: str) -> bool:
        user = self.find_by_id(user_id)
        if user is None:
            return False
        user.password_hash = new_hash
        self._storage.new(user)
        self._storage.save()
        return True
