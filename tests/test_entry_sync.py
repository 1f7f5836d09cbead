import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from fakes import RecordingSleep
from notary.core.errors import TransactionFailed
from notary.ledger.identifiers import compute_entry_id, digest_of_blob
from notary.services.entry_sync import (
    EntryAction,
    EntrySynchronizer,
    build_entry_blob,
    plan_transition,
)
from notary.services.repository import RegistryEntryLinkRecord


class TickingClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 2, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


def _synchronizer(repository, connection, custodian, sleep=None) -> EntrySynchronizer:
    return EntrySynchronizer(
        enabled=True,
        repository=repository,
        connection=connection,
        custodian=custodian,
        transaction_timeout_seconds=1,
        sleep=sleep or RecordingSleep(),
        clock=TickingClock(),
    )


def _link(revoked: bool) -> RegistryEntryLinkRecord:
    return RegistryEntryLinkRecord(
        job_posting_id="posting-1",
        entry_id="entry-1",
        registry_id="registry-1",
        tx_hash="0xabc",
        revoked=revoked,
    )


def test_plan_transition_covers_every_state() -> None:
    assert plan_transition(None, "draft") == EntryAction.CREATE
    assert plan_transition(None, "archived") == EntryAction.CREATE
    assert plan_transition(_link(False), "open") == EntryAction.UPDATE
    assert plan_transition(_link(False), "archived") == EntryAction.REVOKE
    assert plan_transition(_link(True), "archived") == EntryAction.NOOP
    assert plan_transition(_link(True), "open") == EntryAction.REINSTATE_AND_UPDATE


def test_posting_lifecycle_is_mirrored_on_the_ledger(
    chain, connection, repository, custodian, organization_account, make_posting
) -> None:
    synchronizer = _synchronizer(repository, connection, custodian)
    posting = make_posting("open")

    created = asyncio.run(synchronizer.sync(posting.id))
    assert created is not None
    assert created.entry_id == "entry-1"
    assert created.revoked is False
    first_hash = created.tx_hash

    repository.postings[posting.id] = replace(posting, status="archived")
    revoked = asyncio.run(synchronizer.sync(posting.id))
    assert revoked.entry_id == "entry-1"
    assert revoked.revoked is True

    again = asyncio.run(synchronizer.sync(posting.id))
    assert again.revoked is True

    repository.postings[posting.id] = replace(posting, status="open", title="Senior Research Software Engineer")
    reinstated = asyncio.run(synchronizer.sync(posting.id))
    assert reinstated.entry_id == "entry-1"
    assert reinstated.revoked is False
    assert reinstated.tx_hash != first_hash

    assert chain.call_names() == ["Entry.create", "Entry.revoke", "Entry.reinstate", "Entry.update"]
    assert repository.links[posting.id].revoked is False


def test_entry_is_signed_by_the_organization_account(
    chain, connection, repository, custodian, organization_account, make_posting
) -> None:
    posting = make_posting("open")

    asyncio.run(_synchronizer(repository, connection, custodian).sync(posting.id))

    name, params, signer = chain.calls[0]
    assert signer == organization_account.address
    assert params["registry_id"] == "registry-1"
    assert params["tx_hash"] == digest_of_blob(build_entry_blob(posting))


def test_missing_event_uses_recomputed_entry_id(
    chain, connection, repository, custodian, organization_account, make_posting
) -> None:
    chain.emit_entry_event = False
    posting = make_posting("open")

    link = asyncio.run(_synchronizer(repository, connection, custodian).sync(posting.id))

    digest = digest_of_blob(build_entry_blob(posting))
    assert link.entry_id == compute_entry_id(digest, "registry-1", "profile-1")


def test_missing_event_without_profile_uses_address_tier(
    chain, connection, repository, custodian, organization_account, make_posting
) -> None:
    chain.emit_entry_event = False
    organization_account.profile_id = None
    posting = make_posting("open")

    link = asyncio.run(_synchronizer(repository, connection, custodian).sync(posting.id))

    digest = digest_of_blob(build_entry_blob(posting))
    assert link.entry_id == compute_entry_id(digest, "registry-1", None, address=organization_account.address)


def test_posting_first_seen_archived_is_created_then_revoked(
    chain, connection, repository, custodian, organization_account, make_posting
) -> None:
    posting = make_posting("archived")

    link = asyncio.run(_synchronizer(repository, connection, custodian).sync(posting.id))

    assert chain.call_names() == ["Entry.create", "Entry.revoke"]
    assert link.revoked is True


def test_failed_revoke_of_archived_posting_is_retried_without_recreating(
    chain, connection, repository, custodian, organization_account, make_posting
) -> None:
    chain.scripted["Entry.revoke"] = [TransactionFailed("rejected")] * 4
    posting = make_posting("archived")
    synchronizer = _synchronizer(repository, connection, custodian)

    assert asyncio.run(synchronizer.sync(posting.id)) is None
    assert repository.links[posting.id].revoked is False

    link = asyncio.run(synchronizer.sync(posting.id))

    assert link.revoked is True
    assert chain.call_names().count("Entry.create") == 1
    assert chain.call_names()[-1] == "Entry.revoke"


def test_disabled_synchronizer_is_a_noop(repository) -> None:
    synchronizer = EntrySynchronizer(enabled=False, repository=repository)

    assert asyncio.run(synchronizer.sync("does-not-exist")) is None
    assert repository.writes == 0


def test_ledger_failure_is_logged_not_raised(
    chain, connection, repository, custodian, organization_account, make_posting, caplog
) -> None:
    sleep = RecordingSleep()
    chain.scripted["Entry.create"] = [TransactionFailed("pool full")] * 4
    posting = make_posting("open")

    with caplog.at_level(logging.ERROR, logger="notary.services.entry_sync"):
        result = asyncio.run(_synchronizer(repository, connection, custodian, sleep).sync(posting.id))

    assert result is None
    assert sleep.delays == [2.0, 4.0, 8.0]
    assert posting.id not in repository.links
    assert "failed to sync job posting posting-1" in caplog.text


def test_failed_revoke_leaves_link_active(
    chain, connection, repository, custodian, organization_account, make_posting
) -> None:
    posting = make_posting("open")
    synchronizer = _synchronizer(repository, connection, custodian)
    asyncio.run(synchronizer.sync(posting.id))

    chain.scripted["Entry.revoke"] = [TransactionFailed("rejected")] * 4
    repository.postings[posting.id] = replace(posting, status="archived")

    assert asyncio.run(synchronizer.sync(posting.id)) is None
    assert repository.links[posting.id].revoked is False


def test_organization_without_registry_makes_no_ledger_calls(
    chain, connection, repository, custodian, organization_account, make_posting
) -> None:
    organization_account.registry_id = None
    posting = make_posting("open")

    assert asyncio.run(_synchronizer(repository, connection, custodian).sync(posting.id)) is None
    assert chain.calls == []


def test_unknown_posting_makes_no_ledger_calls(chain, connection, repository, custodian) -> None:
    assert asyncio.run(_synchronizer(repository, connection, custodian).sync("missing")) is None
    assert chain.calls == []
