# src/record_ingest/claims.py

"""
The claim/complete protocol.

Every row is identified by the digest of its canonical form. A worker that
wants to act on a row first claims it with a conditional upsert, which only
succeeds when nobody is working on the row and nobody has finished it. The
version written by the claim is a fencing token: completion is a conditional
advance that only lands if that version is still the stored one.

    UNCLAIMED --try_claim--> IN_PROGRESS --complete--> COMPLETED

A rejected claim means the row is somebody else's (or already done) and the
caller must leave it alone. A rejected completion means another writer
landed in between; it is reported, never retried here. There is no
reclaim-after-timeout: a record left IN_PROGRESS by a crashed worker stays
unclaimable until it is repaired outside this service.
"""

import logging
import uuid
from dataclasses import dataclass

from .digest import canonicalize, digest
from .schemas import Row
from .store import Progress, RecordStore, Rejected, StoredRecord

logger = logging.getLogger(__name__)


# --- Claim outcomes ---


@dataclass(frozen=True)
class Claimed:
    """The caller now exclusively owns this record's progression."""

    record_id: str
    version: str


@dataclass(frozen=True)
class AlreadyHandled:
    """Another worker is processing the record or has finished it."""

    record_id: str


ClaimOutcome = Claimed | AlreadyHandled


# --- Completion outcomes ---


@dataclass(frozen=True)
class Completed:
    record_id: str


@dataclass(frozen=True)
class LockLost:
    """
    The stored version no longer matched the claim's version.

    ``observed`` is the record as re-read right after the rejection, or None
    when it could not be found.
    """

    record_id: str
    version: str
    observed: StoredRecord | None = None


CompleteOutcome = Completed | LockLost


def new_version_token() -> str:
    return str(uuid.uuid4())


class ClaimProtocol:
    """Drives a record through IN_PROGRESS to COMPLETED on top of a RecordStore."""

    def __init__(self, store: RecordStore, requester_id: str | None = None):
        self._store = store
        self._requester_id = requester_id or str(uuid.uuid4())

    @property
    def requester_id(self) -> str:
        return self._requester_id

    def try_claim(self, row: Row) -> ClaimOutcome:
        payload = canonicalize(row)
        record_id = digest(payload)

        result = self._store.conditional_upsert(
            record_id,
            new_version=new_version_token(),
            payload=payload,
            requester=self._requester_id,
        )
        if isinstance(result, Rejected):
            logger.info(
                "Record already claimed or completed. Nothing to process.",
                extra={"record_id": record_id},
            )
            return AlreadyHandled(record_id)

        logger.debug(
            "Claimed record.",
            extra={"record_id": record_id, "version": result.version},
        )
        return Claimed(record_id, result.version)

    def complete(self, record_id: str, version: str) -> CompleteOutcome:
        result = self._store.conditional_advance(
            record_id,
            expected_version=version,
            new_progress=Progress.COMPLETED,
            requester=self._requester_id,
        )
        if not isinstance(result, Rejected):
            logger.info(
                "Record completed.",
                extra={"record_id": record_id, "progress": result.progress},
            )
            return Completed(record_id)

        observed = self._store.get(record_id)
        logger.warning(
            "Optimistic lock failure. Record not updated.",
            extra={
                "record_id": record_id,
                "expected_version": version,
                "observed_version": observed.version if observed else None,
                "observed_progress": observed.progress if observed else None,
            },
        )
        return LockLost(record_id, version, observed)
