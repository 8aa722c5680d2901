"""
Contact graph rules.

Helpers shared by the resolver plus an auditor that checks a full snapshot
of the contact table against the graph invariants:

- every identity group has exactly one primary
- every secondary links directly to its group's primary
- the primary is the oldest (smallest id) contact in its group
- an (email, phone_number) pair appears at most once
"""

from collections import defaultdict
from typing import Dict, Iterable, List, Tuple

from app.models.contact import Contact, LinkPrecedence


def primary_id_of(contact: Contact) -> int:
    """Id of the primary this contact belongs to (its own id if it is one)."""
    if contact.link_precedence == LinkPrecedence.SECONDARY.value and contact.linked_id is not None:
        return contact.linked_id
    return contact.id


def order_by_age(a: Contact, b: Contact) -> Tuple[Contact, Contact]:
    """Return (older, newer). Ids are assigned monotonically, so smaller is older."""
    if a.id == b.id:
        raise ValueError(f"Cannot order contact {a.id} against itself")
    return (a, b) if a.id < b.id else (b, a)


class _DisjointSet:
    def __init__(self) -> None:
        self.parent: Dict[int, int] = {}

    def find(self, item: int) -> int:
        self.parent.setdefault(item, item)
        root = item
        while self.parent[root] != root:
            root = self.parent[root]
        while self.parent[item] != root:
            self.parent[item], item = root, self.parent[item]
        return root

    def union(self, a: int, b: int) -> None:
        ra, rb = self.find(a), self.find(b)
        if ra != rb:
            self.parent[max(ra, rb)] = min(ra, rb)


def group_contacts(contacts: Iterable[Contact]) -> List[List[Contact]]:
    """
    Split contacts into identity groups.

    Two contacts share a group when they share an email, a phone number or a
    link, directly or transitively. Groups and their members are id-ordered.
    """
    contacts = list(contacts)
    ids = {c.id for c in contacts}
    groups = _DisjointSet()
    first_with_email: Dict[str, int] = {}
    first_with_phone: Dict[str, int] = {}

    for contact in contacts:
        groups.find(contact.id)
        if contact.email is not None:
            groups.union(contact.id, first_with_email.setdefault(contact.email, contact.id))
        if contact.phone_number is not None:
            groups.union(contact.id, first_with_phone.setdefault(contact.phone_number, contact.id))
        if contact.linked_id is not None and contact.linked_id in ids:
            groups.union(contact.id, contact.linked_id)

    members: Dict[int, List[Contact]] = defaultdict(list)
    for contact in sorted(contacts, key=lambda c: c.id):
        members[groups.find(contact.id)].append(contact)
    return [members[root] for root in sorted(members)]


def find_invariant_violations(contacts: Iterable[Contact]) -> List[str]:
    """Describe every way this snapshot breaks the graph invariants. Empty means valid."""
    contacts = list(contacts)
    by_id = {c.id: c for c in contacts}
    violations: List[str] = []

    seen_pairs: Dict[Tuple[str, str], int] = {}
    for contact in sorted(contacts, key=lambda c: c.id):
        if contact.email is None or contact.phone_number is None:
            continue
        pair = (contact.email, contact.phone_number)
        if pair in seen_pairs:
            violations.append(
                f"contacts {seen_pairs[pair]} and {contact.id} share the pair ({contact.email}, {contact.phone_number})"
            )
        else:
            seen_pairs[pair] = contact.id

    for group in group_contacts(contacts):
        group_ids = [c.id for c in group]
        primaries = [c for c in group if c.link_precedence == LinkPrecedence.PRIMARY.value]
        if len(primaries) != 1:
            violations.append(f"group {group_ids} has {len(primaries)} primaries")
            continue

        primary = primaries[0]
        if primary.linked_id is not None:
            violations.append(f"primary {primary.id} has linked_id {primary.linked_id}")
        if primary.id != group_ids[0]:
            violations.append(f"group {group_ids} has primary {primary.id} but oldest contact is {group_ids[0]}")

        for contact in group:
            if contact is primary:
                continue
            if contact.link_precedence != LinkPrecedence.SECONDARY.value:
                violations.append(f"contact {contact.id} has unknown precedence {contact.link_precedence!r}")
            elif contact.linked_id != primary.id:
                target = by_id.get(contact.linked_id)
                detail = "a secondary" if target is not None and not target.is_primary else "outside its group"
                violations.append(
                    f"secondary {contact.id} links to {contact.linked_id} ({detail}) instead of primary {primary.id}"
                )

    return violations
