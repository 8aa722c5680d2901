"""
Audit the contact table against the identity graph invariants.

Loads every contact, groups them into identities and reports groups with
zero or several primaries, secondaries linking anywhere but their group's
primary, non-oldest primaries and duplicate (email, phone_number) pairs.

Exits with status 1 when violations are found.

Usage:
    python scripts/audit_contact_graph.py [--dump]
"""

import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from app.db.session import AsyncSessionLocal
from app.repositories.contact_repository import ContactRepository
from app.schemas.contact import ContactRead
from app.services.contact_graph import find_invariant_violations, group_contacts


async def audit_contact_graph(dump: bool = False) -> int:
    async with AsyncSessionLocal() as db:
        contacts = await ContactRepository(db).list_all()

    groups = group_contacts(contacts)
    violations = find_invariant_violations(contacts)

    print("\n" + "=" * 80)
    print("CONTACT GRAPH AUDIT")
    print("=" * 80)
    print(f"Contacts: {len(contacts)}")
    print(f"Identity groups: {len(groups)}")

    if dump:
        for group in groups:
            print("-" * 80)
            for contact in group:
                print(ContactRead.model_validate(contact).model_dump_json())

    print("-" * 80)
    if not violations:
        print("No invariant violations found")
        return 0

    print(f"{len(violations)} violation(s):")
    for violation in violations:
        print(f"  - {violation}")
    return 1


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--dump", action="store_true", help="print every contact, grouped by identity")
    args = parser.parse_args()
    sys.exit(asyncio.run(audit_contact_graph(dump=args.dump)))


if __name__ == "__main__":
    main()
