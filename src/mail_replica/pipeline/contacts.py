"""Contact extraction from normalized items."""

from __future__ import annotations

from collections.abc import Iterable

from mail_replica.models.state import Item
from mail_replica.models.types import ContactObservation
from mail_replica.utils.email import parse_address_list


def extract_contacts(items: Iterable[Item]) -> list[ContactObservation]:
    """Collapse the participants of a write batch into one observation per email.

    For each address the earliest and latest item dates are kept, along with
    the first non-empty display name in item order.

    Args:
        items: Items written in the same batch.

    Returns:
        Observations ordered by first appearance.
    """
    seen: dict[str, ContactObservation] = {}
    for item in items:
        for field in (item.from_, item.to, item.cc):
            for email, name in parse_address_list(field):
                current = seen.get(email)
                if current is None:
                    seen[email] = ContactObservation(
                        email=email,
                        name=name,
                        first_seen=item.date,
                        last_seen=item.date,
                    )
                    continue
                current.first_seen = min(current.first_seen, item.date)
                current.last_seen = max(current.last_seen, item.date)
                if not current.name and name:
                    current.name = name
    return list(seen.values())
