"""Customer and user directories.

Like the workflow engine, every function here takes a snapshot and returns a
new one. Customer names match case-insensitively; usernames match exactly.
Passwords are stored only as salted hashes.
"""

from __future__ import annotations

import uuid
from dataclasses import replace
from typing import List, Optional, Sequence

from werkzeug.security import check_password_hash, generate_password_hash

from . import log
from .constants import UserRole
from .data_manager import Customer, User
from .exceptions import DuplicateRecordError, MissingReferenceError


def generate_identifier(prefix: str) -> str:
    return f"{prefix}{uuid.uuid4().hex[:12].upper()}"


def find_customer(customers: Sequence[Customer], name: str) -> Optional[Customer]:
    """Return the first customer whose name equals ``name`` ignoring case."""

    wanted = name.strip().casefold()
    for customer in customers:
        if customer.name.casefold() == wanted:
            return customer
    return None


def upsert_customer(
    customers: Sequence[Customer],
    name: str,
    phone: str,
    email: str,
    *,
    now: int,
) -> List[Customer]:
    """Record a visit for ``name``, creating the customer on first sight.

    For a returning customer only non-empty ``phone``/``email`` values replace
    the stored ones, ``last_visit`` moves to ``now`` and ``total_visits`` grows
    by one. Pre-existing case-variant duplicates are left alone; the first
    match wins.

    Raises:
        ValueError: If ``name`` is blank.
    """

    name = name.strip()
    if not name:
        raise ValueError("Customer name is required")

    existing = find_customer(customers, name)
    if existing is None:
        created = Customer(
            id=generate_identifier("CUST-"),
            name=name,
            phone=phone,
            email=email,
            last_visit=now,
            total_visits=1,
        )
        log.info("Registered new customer '%s' (%s)", name, created.id)
        return [*customers, created]

    updated = replace(
        existing,
        phone=phone or existing.phone,
        email=email or existing.email,
        last_visit=now,
        total_visits=existing.total_visits + 1,
    )
    log.debug("Customer '%s' visit #%d", existing.name, updated.total_visits)
    return [updated if customer is existing else customer for customer in customers]


def find_user(users: Sequence[User], user_id: str) -> User:
    for user in users:
        if user.id == user_id:
            return user
    log.warning("User lookup failed for id '%s'", user_id)
    raise MissingReferenceError(f"Unknown user id: {user_id}")


def add_user(
    users: Sequence[User],
    *,
    username: str,
    password: str,
    name: str,
    role: UserRole,
    is_active: bool = True,
) -> List[User]:
    """Append a new account with a hashed password.

    Raises:
        ValueError: If the username or password is blank.
        DuplicateRecordError: If ``username`` is already taken.
    """

    username = username.strip()
    if not username or not password:
        raise ValueError("Username and password are required")
    if any(user.username == username for user in users):
        raise DuplicateRecordError(f"Username already exists: {username}")

    user = User(
        id=generate_identifier("U-"),
        username=username,
        password=generate_password_hash(password),
        name=name or username,
        role=UserRole(role),
        is_active=is_active,
    )
    log.info("Added user '%s' with role %s", username, user.role.value)
    return [*users, user]


def set_user_active(users: Sequence[User], user_id: str, is_active: bool) -> List[User]:
    target = find_user(users, user_id)
    updated = replace(target, is_active=is_active)
    return [updated if user is target else user for user in users]


def remove_user(users: Sequence[User], user_id: str) -> List[User]:
    return [user for user in users if user.id != user_id]


def authenticate(users: Sequence[User], username: str, password: str) -> Optional[User]:
    """Return the active user matching the credentials, else ``None``."""

    for user in users:
        if user.username != username:
            continue
        if not user.is_active:
            log.warning("Login refused for inactive user '%s'", username)
            return None
        if user.password and check_password_hash(user.password, password):
            return user
        break
    log.warning("Failed login for '%s'", username)
    return None
