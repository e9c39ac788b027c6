from __future__ import annotations

import logging
from uuid import uuid4

from django.contrib.auth import get_user_model
from django.contrib.auth.hashers import make_password
from django.db import IntegrityError, transaction

from payments.intents import UserDetails

logger = logging.getLogger(__name__)


def _find_customer(email: str):
    User = get_user_model()
    return User.objects.filter(email__iexact=email).order_by("id").first()


def _available_username(email: str) -> str:
    """The email itself when no account holds it as a username, otherwise a generated one."""

    User = get_user_model()
    candidate = email[:150]
    if not User.objects.filter(username__iexact=candidate).exists():
        return candidate
    local_part = email.split("@", 1)[0][:100]
    return f"{local_part}-{uuid4().hex[:12]}"


def resolve_customer(details: UserDetails):
    """
    Look up the customer by email, creating a verified account on first sight.

    Emails are unique case-insensitively at the database level, so when two
    materializations race to create the same customer the loser's insert fails
    and it re-reads the winner's row instead.
    """

    email = details.email.strip().lower()
    if not email:
        raise ValueError("Customer email is required")

    customer = _find_customer(email)
    if customer is not None:
        return customer

    User = get_user_model()
    try:
        with transaction.atomic():
            customer = User.objects.create(
                username=_available_username(email),
                email=email,
                display_name=details.name[:120],
                phone=details.phone[:30],
                is_verified=True,
                password=make_password(None),
            )
    except IntegrityError:
        customer = _find_customer(email)
        if customer is None:
            raise
        logger.info("Customer %s was created concurrently; reusing id %s", email, customer.pk)
        return customer

    logger.info("Created customer %s (id %s)", email, customer.pk)
    return customer
