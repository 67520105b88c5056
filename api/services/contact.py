"""
Contact - the single record type of the identity graph.

A contact is one observed (email, phone) pair. Contacts that belong to the
same real-world identity form a cluster: exactly one primary (the oldest)
and any number of secondaries linked to it via linked_id.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class LinkPrecedence(str, Enum):
    """Position of a contact within its cluster."""

    PRIMARY = "primary"
    SECONDARY = "secondary"


@dataclass
class Contact:
    """
    A stored contact record.

    Identity: id is assigned by the store in creation order and never changes.
    Linking: primaries have no linked_id; secondaries point at their primary.
    """

    id: int
    email: Optional[str]
    phone_number: Optional[str]
    link_precedence: LinkPrecedence
    linked_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.link_precedence = LinkPrecedence(self.link_precedence)
        if self.link_precedence == LinkPrecedence.PRIMARY and self.linked_id is not None:
            raise ValueError(f"Primary contact {self.id} cannot have linked_id")
        if self.link_precedence == LinkPrecedence.SECONDARY and self.linked_id is None:
            raise ValueError(f"Secondary contact {self.id} requires linked_id")

    @property
    def is_primary(self) -> bool:
        return self.link_precedence == LinkPrecedence.PRIMARY

    @property
    def root_candidate_id(self) -> int:
        """This contact's id if primary, else the id it links to."""
        return self.id if self.is_primary else self.linked_id

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "phoneNumber": self.phone_number,
            "linkPrecedence": self.link_precedence.value,
            "linkedId": self.linked_id,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class ConsolidatedIdentity:
    """Merged view of one cluster, as returned to callers."""

    primary_contact_id: int
    emails: list[str] = field(default_factory=list)
    phone_numbers: list[str] = field(default_factory=list)
    secondary_contact_ids: list[int] = field(default_factory=list)

    @classmethod
    def from_cluster(cls, primary: Contact, members: list[Contact]) -> "ConsolidatedIdentity":
        """
        Build the view for a cluster.

        Emails and phone numbers are de-duplicated in first-seen order,
        starting with the primary's own values, then members by creation time.
        """
        ordered = [primary] + sorted(
            (c for c in members if c.id != primary.id),
            key=creation_order,
        )

        emails: list[str] = []
        phone_numbers: list[str] = []
        secondary_ids: list[int] = []
        for contact in ordered:
            if contact.email and contact.email not in emails:
                emails.append(contact.email)
            if contact.phone_number and contact.phone_number not in phone_numbers:
                phone_numbers.append(contact.phone_number)
            if not contact.is_primary:
                secondary_ids.append(contact.id)

        return cls(
            primary_contact_id=primary.id,
            emails=emails,
            phone_numbers=phone_numbers,
            secondary_contact_ids=secondary_ids,
        )

    def to_dict(self) -> dict:
        return {
            "primaryContactId": self.primary_contact_id,
            "emails": list(self.emails),
            "phoneNumbers": list(self.phone_numbers),
            "secondaryContactIds": list(self.secondary_contact_ids),
        }


def creation_order(contact: Contact) -> tuple:
    # Stores assign ids in creation order; id breaks created_at ties.
    created = contact.created_at.timestamp() if contact.created_at else 0.0
    return (created, contact.id)
