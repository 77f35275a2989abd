"""
Study partnerships — request, accept/decline, and listing.

A partnership starts as a ``pending`` entry in the requester's share policy.
Accepting flips it to ``accepted`` and writes a matching ``accepted`` entry
into the responder's policy; both sides must exist for the ``partners``
visibility tier to work in either direction. Declining only touches the
requester's entry. Accepted and declined are terminal here.
"""

from __future__ import annotations

import logging
import sqlite3

from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from audit import log_event
from db_stores import MemberDirectoryDB, SharePolicyStoreDB, StudyGroupStoreDB
from errors import (
    DuplicatePartnership,
    InvalidStatus,
    NotFound,
    NotMember,
    PartialPartnershipFailure,
    PartnershipNotFound,
    SelfReference,
)
from models import PartnerEntry, PartnershipStatus

logger = logging.getLogger(__name__)

RESPONSE_STATUSES = (PartnershipStatus.ACCEPTED, PartnershipStatus.DECLINED)


def parse_response_status(status: str) -> PartnershipStatus:
    try:
        parsed = PartnershipStatus(status)
    except ValueError:
        raise InvalidStatus() from None
    if parsed not in RESPONSE_STATUSES:
        raise InvalidStatus()
    return parsed


class PartnershipManager:
    """Runs the partnership workflow against the share policy store."""

    def __init__(self, write_attempts: int = 3, policies=SharePolicyStoreDB,
                 groups=StudyGroupStoreDB) -> None:
        self.write_attempts = write_attempts
        self.policies = policies
        self.groups = groups

    def _require_group(self, group_id: int) -> None:
        if self.groups.get(group_id) is None:
            raise NotFound()

    def request(self, group_id: int, requester_id: int, target_id: int) -> PartnerEntry:
        """Create a pending request from ``requester_id`` to ``target_id``."""
        self._require_group(group_id)
        if not (self.groups.is_active_member(group_id, requester_id)
                and self.groups.is_active_member(group_id, target_id)):
            raise NotMember("Both users must be active members of this group.")
        if requester_id == target_id:
            raise SelfReference()

        policy = self.policies.get_or_create(requester_id, group_id)
        if policy.partner(target_id) is not None:
            raise DuplicatePartnership()
        if not self.policies.add_partner(requester_id, group_id, target_id):
            # Another request for the same pair landed first
            raise DuplicatePartnership()

        log_event("partnership_requested", requester_id, f"group={group_id} target={target_id}")
        return self.policies.get(requester_id, group_id).partner(target_id)

    def respond(self, group_id: int, requester_id: int, responder_id: int,
                status: str | PartnershipStatus) -> PartnershipStatus:
        """Accept or decline the pending request ``requester_id`` sent to ``responder_id``."""
        status = parse_response_status(status)
        self._require_group(group_id)
        if not self.groups.is_active_member(group_id, responder_id):
            raise NotMember()

        policy = self.policies.get(requester_id, group_id)
        entry = policy.partner(responder_id) if policy else None
        if entry is None or entry.status != PartnershipStatus.PENDING:
            raise PartnershipNotFound()

        if status == PartnershipStatus.DECLINED:
            if not self.policies.set_partner_status(
                requester_id, group_id, responder_id, status, expected=PartnershipStatus.PENDING,
            ):
                raise PartnershipNotFound()
        else:
            self._accept(group_id, requester_id, responder_id)

        log_event(f"partnership_{status.value}", responder_id,
                  f"group={group_id} requester={requester_id}")
        return status

    def _accept(self, group_id: int, requester_id: int, responder_id: int) -> None:
        """Write both sides of an accepted partnership or neither."""
        if not self.policies.set_partner_status(
            requester_id, group_id, responder_id,
            PartnershipStatus.ACCEPTED, expected=PartnershipStatus.PENDING,
        ):
            raise PartnershipNotFound()

        try:
            for attempt in Retrying(
                retry=retry_if_exception_type(sqlite3.Error),
                wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
                stop=stop_after_attempt(self.write_attempts),
                reraise=True,
            ):
                with attempt:
                    self.policies.get_or_create(responder_id, group_id)
                    self.policies.upsert_partner(
                        responder_id, group_id, requester_id, PartnershipStatus.ACCEPTED,
                    )
        except sqlite3.Error as e:
            logger.error(
                "Reciprocal partnership write failed (group=%s requester=%s responder=%s): %s",
                group_id, requester_id, responder_id, e,
            )
            raise PartialPartnershipFailure(compensated=self._compensate(
                group_id, requester_id, responder_id,
            )) from e

    def _compensate(self, group_id: int, requester_id: int, responder_id: int) -> bool:
        """Put the requester's entry back to pending. Returns True on success."""
        try:
            self.policies.set_partner_status(
                requester_id, group_id, responder_id, PartnershipStatus.PENDING,
            )
            return True
        except sqlite3.Error as e:
            logger.critical(
                "Partnership left one-sided (group=%s requester=%s responder=%s): %s",
                group_id, requester_id, responder_id, e,
            )
            return False

    def partners_of(self, group_id: int, user_id: int) -> dict:
        """Accepted partners and outgoing pending requests, with identities."""
        policy = self.policies.get(user_id, group_id)
        if policy is None:
            return {"partners": [], "pending_requests": []}

        def render(entry: PartnerEntry) -> dict:
            return {**entry.to_dict(), "user": MemberDirectoryDB.identity(entry.partner_id).to_dict()}

        return {
            "partners": [render(p) for p in policy.partners if p.status == PartnershipStatus.ACCEPTED],
            "pending_requests": [render(p) for p in policy.partners if p.status == PartnershipStatus.PENDING],
        }

    def incoming_requests(self, group_id: int, user_id: int) -> list[dict]:
        return [
            {**r, "user": MemberDirectoryDB.identity(r["requester_id"]).to_dict()}
            for r in self.policies.incoming_requests(group_id, user_id)
        ]
