"""
Identity Resolver - links incoming (email, phone) pairs into contact clusters.

For each request:
1. Match - contacts sharing the email or the phone number
2. No match - store a new primary and stop
3. Root - the oldest primary reachable from the matches; any other primaries
   reached are demoted under it, along with their secondaries
4. Gather - the root's cluster
5. New information - store a secondary if the email or phone is unseen
6. Assemble - consolidated view of the (re-read) cluster

The whole procedure runs in one store transaction, so a failure leaves no
partial writes behind.
"""
import logging
from typing import Optional, Union

from api.services.contact import Contact, ConsolidatedIdentity, LinkPrecedence
from api.services.contact_store import ContactRepository, get_contact_store
from api.services.errors import RepositoryError, ValidationError
from api.services.identifiers import clean_email, clean_phone, is_valid_email
from config.settings import settings

logger = logging.getLogger(__name__)


class IdentityResolver:
    """
    Resolves contact details to a consolidated identity.

    Stateless apart from the injected store, so one instance can serve
    every request.
    """

    def __init__(
        self,
        store: Optional[ContactRepository] = None,
        normalize: Optional[bool] = None,
    ):
        """
        Initialize the resolver.

        Args:
            store: ContactRepository to use (default singleton)
            normalize: Normalize identifiers before matching (default from settings)
        """
        self._store = store or get_contact_store()
        self._normalize = settings.normalize_identifiers if normalize is None else normalize

    @property
    def store(self) -> ContactRepository:
        """Get the contact store."""
        return self._store

    def resolve(
        self,
        email: Optional[str] = None,
        phone_number: Union[str, int, None] = None,
    ) -> ConsolidatedIdentity:
        """
        Resolve an (email, phone) pair against stored contacts.

        Args:
            email: Email address, or None
            phone_number: Phone number, or None

        Returns:
            ConsolidatedIdentity for the cluster the pair belongs to

        Raises:
            ValidationError: if neither identifier is supplied
            RepositoryError: if the store fails; nothing is written in that case
        """
        email = clean_email(email, normalize=self._normalize)
        phone_number = clean_phone(phone_number, normalize=self._normalize)

        if not email and not phone_number:
            raise ValidationError("at least one identifier required")
        if email and not is_valid_email(email):
            logger.warning(f"Resolving malformed email address: {email!r}")

        with self._store.transaction():
            return self._resolve(email, phone_number)

    def _resolve(self, email: Optional[str], phone_number: Optional[str]) -> ConsolidatedIdentity:
        matches = self._store.find_by_email_or_phone(email, phone_number)
        logger.debug(f"{len(matches)} contact(s) matched email={email!r} phone={phone_number!r}")

        if not matches:
            contact = self._store.insert(email, phone_number, LinkPrecedence.PRIMARY)
            logger.info(f"Created primary contact {contact.id}")
            return ConsolidatedIdentity(
                primary_contact_id=contact.id,
                emails=[email] if email else [],
                phone_numbers=[phone_number] if phone_number else [],
                secondary_contact_ids=[],
            )

        known = {c.id: c for c in matches}
        root_ids = sorted({self._root_id(c, known) for c in matches})
        root_primary_id = root_ids[0]
        root = self._store.find_by_id(root_primary_id)
        if root is None:
            raise RepositoryError("resolve", f"root contact {root_primary_id} not found")

        for other_root_id in root_ids[1:]:
            self._merge_into(root_primary_id, other_root_id)

        cluster = self._store.find_cluster(root_primary_id)
        known_emails = {c.email for c in cluster if c.email}
        known_phones = {c.phone_number for c in cluster if c.phone_number}

        if (email and email not in known_emails) or (phone_number and phone_number not in known_phones):
            contact = self._store.insert(
                email, phone_number, LinkPrecedence.SECONDARY, linked_id=root_primary_id
            )
            logger.info(f"Created secondary contact {contact.id} under primary {root_primary_id}")
            cluster = self._store.find_cluster(root_primary_id)

        primary = next((c for c in cluster if c.id == root_primary_id), root)
        return ConsolidatedIdentity.from_cluster(primary, cluster)

    def _root_id(self, contact: Contact, known: dict[int, Contact]) -> int:
        """
        Follow linked_id from a contact to its primary.

        Stored links normally point straight at a primary; longer chains
        left behind by older data are walked until a primary is reached.
        """
        visited = set()
        while not contact.is_primary:
            if contact.id in visited:
                raise RepositoryError("resolve", f"link cycle through contact {contact.id}")
            visited.add(contact.id)
            parent = known.get(contact.linked_id) or self._store.find_by_id(contact.linked_id)
            if parent is None:
                raise RepositoryError(
                    "resolve", f"contact {contact.id} links to missing contact {contact.linked_id}"
                )
            contact = parent
        return contact.id

    def _merge_into(self, root_id: int, demoted_id: int) -> None:
        """Demote a younger primary under root_id and re-parent its secondaries."""
        for member in self._store.find_cluster(demoted_id):
            if member.id == demoted_id:
                continue
            self._store.update(member.id, LinkPrecedence.SECONDARY, root_id)

        self._store.update(demoted_id, LinkPrecedence.SECONDARY, root_id)
        logger.info(f"Merged cluster {demoted_id} into primary {root_id}")


# Singleton instance
_identity_resolver: Optional[IdentityResolver] = None


def get_identity_resolver() -> IdentityResolver:
    """Get singleton IdentityResolver instance."""
    global _identity_resolver
    if _identity_resolver is None:
        _identity_resolver = IdentityResolver()
    return _identity_resolver


def reset_identity_resolver() -> None:
    """Reset the singleton (used by tests)."""
    global _identity_resolver
    _identity_resolver = None
