"""Identity resolution against the in-memory contact store."""

import asyncio
import random

import pytest

from app.errors import ConflictError, NotFoundError, StorageError, ValidationError
from app.models.contact import LinkPrecedence
from app.services.contact_graph import find_invariant_violations
from app.services.identity_resolver import IdentityResolver

pytestmark = pytest.mark.unit


def identify(service, email=None, phone_number=None):
    return asyncio.run(service.identify(email, phone_number))


def assert_graph_valid(store):
    assert find_invariant_violations(store.all()) == []


# -- new identities ----------------------------------------------------------


def test_new_pair_creates_single_primary(service, store):
    result = identify(service, "doc@hillvalley.edu", "123456")

    assert len(store) == 1
    contact = store[result.primary_contact_id]
    assert contact.email == "doc@hillvalley.edu"
    assert contact.phone_number == "123456"
    assert contact.link_precedence == LinkPrecedence.PRIMARY.value
    assert contact.linked_id is None

    assert result.emails == ["doc@hillvalley.edu"]
    assert result.phone_numbers == ["123456"]
    assert result.secondary_contact_ids == []


def test_same_pair_twice_is_idempotent(service, store):
    first = identify(service, "lorraine@hillvalley.edu", "123456")
    second = identify(service, "lorraine@hillvalley.edu", "123456")

    assert second.primary_contact_id == first.primary_contact_id
    assert second == first
    assert len(store) == 1


@pytest.mark.parametrize(
    "email, phone_number",
    [
        (None, None),
        ("", ""),
        ("", None),
    ],
)
def test_missing_both_fields_is_rejected(service, store, email, phone_number):
    with pytest.raises(ValidationError) as exc_info:
        identify(service, email, phone_number)

    assert exc_info.value.status_code == 400
    assert len(store) == 0


@pytest.mark.parametrize(
    "email, phone_number",
    [
        ("marty@hillvalley.edu", None),
        (None, "717171"),
        ("marty@hillvalley.edu", ""),
    ],
)
def test_single_unknown_field_cannot_create_identity(service, store, email, phone_number):
    with pytest.raises(ValidationError):
        identify(service, email, phone_number)

    assert len(store) == 0
    assert store.transactions_started == 1


# -- augmentation ------------------------------------------------------------


def test_new_phone_for_known_email_adds_secondary(service, store):
    identify(service, "lorraine@hillvalley.edu", "123456")

    result = identify(service, "lorraine@hillvalley.edu", "789012")

    assert len(store) == 2
    secondary = store[2]
    assert secondary.link_precedence == LinkPrecedence.SECONDARY.value
    assert secondary.linked_id == 1
    assert result.primary_contact_id == 1
    assert result.emails == ["lorraine@hillvalley.edu"]
    assert result.phone_numbers == ["123456", "789012"]
    assert result.secondary_contact_ids == [2]


def test_new_email_for_known_phone_adds_secondary(service, store):
    identify(service, "lorraine@hillvalley.edu", "123456")

    result = identify(service, "mcfly@hillvalley.edu", "123456")

    assert result.primary_contact_id == 1
    assert result.emails == ["lorraine@hillvalley.edu", "mcfly@hillvalley.edu"]
    assert result.phone_numbers == ["123456"]
    assert result.secondary_contact_ids == [2]


def test_secondary_anchor_links_new_contact_to_its_primary(service, store):
    identify(service, "george@hillvalley.edu", "111")
    identify(service, "george@hillvalley.edu", "222")  # secondary 2 -> 1

    result = identify(service, "mcfly@hillvalley.edu", "222")

    assert store[3].linked_id == 1
    assert result.primary_contact_id == 1
    assert result.secondary_contact_ids == [2, 3]
    assert_graph_valid(store)


def test_augmentation_locks_the_primary_row(service, store):
    identify(service, "george@hillvalley.edu", "111")
    store.locked_rows.clear()

    identify(service, "george@hillvalley.edu", "222")

    assert store.locked_rows == [1]
    assert store.locked_keys[-1] == ("george@hillvalley.edu", "222")


# -- read-only lookups -------------------------------------------------------


def test_email_only_returns_existing_identity_without_writes(service, store):
    identify(service, "lorraine@hillvalley.edu", "123456")
    identify(service, "mcfly@hillvalley.edu", "123456")

    result = identify(service, "mcfly@hillvalley.edu", None)

    assert len(store) == 2
    assert result.primary_contact_id == 1
    assert result.emails == ["lorraine@hillvalley.edu", "mcfly@hillvalley.edu"]


def test_phone_only_of_secondary_returns_primary_view(service, store):
    identify(service, "lorraine@hillvalley.edu", "123456")
    identify(service, "lorraine@hillvalley.edu", "999")

    result = identify(service, None, "999")

    assert len(store) == 2
    assert result.primary_contact_id == 1
    assert result.phone_numbers == ["123456", "999"]


def test_both_known_in_same_group_with_new_pair_creates_nothing(service, store):
    identify(service, "e1@example.com", "p1")
    identify(service, "e2@example.com", "p1")  # 2 -> 1
    identify(service, "e1@example.com", "p2")  # 3 -> 1

    result = identify(service, "e2@example.com", "p2")

    assert len(store) == 3
    assert result.primary_contact_id == 1
    assert result.emails == ["e1@example.com", "e2@example.com"]
    assert result.phone_numbers == ["p1", "p2"]
    assert result.secondary_contact_ids == [2, 3]


def test_both_known_primary_and_its_secondary_creates_nothing(service, store):
    identify(service, "e1@example.com", "p1")
    identify(service, "e2@example.com", "p1")  # 2 -> 1

    result = identify(service, "e2@example.com", "p1")

    assert len(store) == 2
    assert result.primary_contact_id == 1


def test_exact_pair_found_after_partial_match_is_not_duplicated(store):
    # Legacy row: the pair exists but a different, older row owns the phone
    store.add("old@example.com", "p1")
    store.add("e1@example.com", "p9", LinkPrecedence.SECONDARY, 1)
    store.add("e1@example.com", "p1", LinkPrecedence.SECONDARY, 1)

    async def run():
        async with store.transaction() as tx:
            resolver = IdentityResolver(tx)
            # phone lookup misses, email lookup hits: pair check must find row 3
            tx.get_by_phone = _returns_none
            return await resolver.resolve("e1@example.com", "p1")

    result = asyncio.run(run())

    assert len(store) == 3
    assert result.primary_contact_id == 1


async def _returns_none(*_args, **_kwargs):
    return None


# -- merges ------------------------------------------------------------------


def test_linking_two_primaries_merges_into_the_older(service, store):
    identify(service, "george@hillvalley.edu", "919191")
    identify(service, "biffsucks@hillvalley.edu", "717171")

    result = identify(service, "george@hillvalley.edu", "717171")

    assert len(store) == 2
    assert store[1].link_precedence == LinkPrecedence.PRIMARY.value
    assert store[1].linked_id is None
    assert store[2].link_precedence == LinkPrecedence.SECONDARY.value
    assert store[2].linked_id == 1
    assert result.primary_contact_id == 1
    assert result.emails == ["george@hillvalley.edu", "biffsucks@hillvalley.edu"]
    assert result.phone_numbers == ["919191", "717171"]
    assert result.secondary_contact_ids == [2]


def test_older_primary_survives_when_found_by_phone(service, store):
    identify(service, "e1@example.com", "p1")
    identify(service, "e2@example.com", "p2")

    result = identify(service, "e2@example.com", "p1")

    assert result.primary_contact_id == 1
    assert store[2].linked_id == 1
    assert result.emails == ["e1@example.com", "e2@example.com"]
    assert result.phone_numbers == ["p1", "p2"]


def test_merge_relinks_secondaries_of_demoted_primary(service, store):
    identify(service, "e1@example.com", "p1")
    identify(service, "e2@example.com", "p2")
    identify(service, "e3@example.com", "p2")  # 3 -> 2

    result = identify(service, "e1@example.com", "p2")

    assert len(store) == 3
    assert store[3].linked_id == 1
    assert store[2].linked_id == 1
    assert result.primary_contact_id == 1
    assert result.emails == ["e1@example.com", "e2@example.com", "e3@example.com"]
    assert result.phone_numbers == ["p1", "p2"]
    assert result.secondary_contact_ids == [2, 3]
    assert_graph_valid(store)


def test_merge_through_secondaries_of_two_groups(service, store):
    identify(service, "e1@example.com", "p1")
    identify(service, "e1@example.com", "p3")  # 2 -> 1
    identify(service, "e2@example.com", "p2")
    identify(service, "e4@example.com", "p2")  # 4 -> 3

    result = identify(service, "e4@example.com", "p3")

    assert len(store) == 4
    assert result.primary_contact_id == 1
    assert result.secondary_contact_ids == [2, 3, 4]
    assert [store[i].linked_id for i in (2, 3, 4)] == [1, 1, 1]
    assert_graph_valid(store)


def test_merge_locks_both_primaries_oldest_first(service, store):
    identify(service, "e1@example.com", "p1")
    identify(service, "e2@example.com", "p2")
    store.locked_rows.clear()

    identify(service, "e2@example.com", "p1")

    assert store.locked_rows == [1, 2]


def test_merged_identity_is_stable_afterwards(service, store):
    identify(service, "e1@example.com", "p1")
    identify(service, "e2@example.com", "p2")
    merged = identify(service, "e1@example.com", "p2")

    again = identify(service, "e1@example.com", "p2")
    by_phone = identify(service, None, "p2")

    assert again == merged
    assert by_phone == merged
    assert len(store) == 2


# -- legacy data and defensive paths ----------------------------------------


def test_duplicate_emails_resolve_through_lowest_id(service, store):
    store.add("dup@example.com", "p1")
    store.add("dup@example.com", "p2", LinkPrecedence.SECONDARY, 1)

    result = identify(service, "dup@example.com", None)

    assert result.primary_contact_id == 1
    assert result.phone_numbers == ["p1", "p2"]


def test_dangling_link_raises_not_found(service, store):
    store.add("ghost@example.com", "p1", LinkPrecedence.SECONDARY, 42)

    with pytest.raises(NotFoundError):
        identify(service, "ghost@example.com", None)


def test_chained_secondary_is_reported_as_conflict_then_storage_error(service, store):
    store.add("e1@example.com", "p1")
    store.add("e2@example.com", "p2", LinkPrecedence.SECONDARY, 1)
    store.add("e3@example.com", "p3", LinkPrecedence.SECONDARY, 2)  # chain

    with pytest.raises(StorageError) as exc_info:
        identify(service, "e3@example.com", "p4")

    assert not isinstance(exc_info.value, ConflictError)
    assert exc_info.value.payload["error"]["details"] == {"attempts": 3}
    assert store.transactions_started == 3
    assert len(store) == 3


# -- transactions and retries ------------------------------------------------


def test_conflict_is_retried_from_scratch(service, store):
    store.commit_failures.append(ConflictError())

    result = identify(service, "marty@hillvalley.edu", "555")

    assert store.transactions_started == 2
    assert len(store) == 1
    assert result.primary_contact_id == 2  # ids are not reused after rollback
    assert store.all()[0].id == 2


def test_retries_are_bounded(service, store):
    store.commit_failures.extend([ConflictError(), ConflictError(), ConflictError()])

    with pytest.raises(StorageError) as exc_info:
        identify(service, "marty@hillvalley.edu", "555")

    assert exc_info.value.code == "storage_error"
    assert store.transactions_started == 3
    assert len(store) == 0


def test_non_conflict_storage_error_is_not_retried(service, store):
    store.commit_failures.append(StorageError())

    with pytest.raises(StorageError):
        identify(service, "marty@hillvalley.edu", "555")

    assert store.transactions_started == 1
    assert len(store) == 0


def test_failed_merge_leaves_no_partial_writes(service, store):
    identify(service, "e1@example.com", "p1")
    identify(service, "e2@example.com", "p2")
    identify(service, "e3@example.com", "p2")
    store.commit_failures.extend([StorageError()])

    with pytest.raises(StorageError):
        identify(service, "e1@example.com", "p2")

    assert store[2].link_precedence == LinkPrecedence.PRIMARY.value
    assert store[2].linked_id is None
    assert store[3].linked_id == 2


def test_concurrent_identical_requests_create_one_primary(service, store):
    async def both():
        return await asyncio.gather(
            service.identify("doc@hillvalley.edu", "1955"),
            service.identify("doc@hillvalley.edu", "1955"),
        )

    first, second = asyncio.run(both())

    assert len(store) == 1
    assert first.primary_contact_id == second.primary_contact_id == 1


# -- invariants under arbitrary sequences -----------------------------------


@pytest.mark.parametrize("seed", [1, 7, 1955, 1985, 2015])
def test_invariants_hold_after_every_call(service, store, seed):
    rng = random.Random(seed)
    emails = [f"user{i}@example.com" for i in range(6)] + [None]
    phones = [f"55500{i}" for i in range(6)] + [None]
    known_ids = set()

    for _ in range(60):
        email, phone_number = rng.choice(emails), rng.choice(phones)
        before = len(store)
        try:
            result = identify(service, email, phone_number)
        except ValidationError:
            assert len(store) == before
            continue

        assert len(store) in (before, before + 1)
        assert store[result.primary_contact_id].is_primary
        assert result.secondary_contact_ids == sorted(result.secondary_contact_ids)
        if email is not None:
            assert email in result.emails
        if phone_number is not None:
            assert phone_number in result.phone_numbers

        current_ids = {c.id for c in store.all()}
        assert known_ids <= current_ids
        known_ids = current_ids
        assert_graph_valid(store)
