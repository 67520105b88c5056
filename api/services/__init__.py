"""
Identity Service Services Package.

This package contains the identity-linking logic and contact storage.
Use this module to import commonly-used services.

Example:
    from api.services import (
        get_identity_resolver,
        get_contact_store,
    )

Key service modules:
- contact: Contact model and consolidated identity view
- contact_store: ContactRepository contract, SQLite and in-memory stores
- identity_resolver: the linking / merging algorithm
- identifiers: email and phone cleaning
- errors: ValidationError and RepositoryError
"""

from api.services.contact import (
    Contact,
    ConsolidatedIdentity,
    LinkPrecedence,
)

from api.services.contact_store import (
    ContactRepository,
    ContactStore,
    InMemoryContactStore,
    get_contact_store,
    reset_contact_store,
)

from api.services.errors import (
    IdentityError,
    RepositoryError,
    ValidationError,
)

from api.services.identity_resolver import (
    IdentityResolver,
    get_identity_resolver,
    reset_identity_resolver,
)

__all__ = [
    "Contact",
    "ConsolidatedIdentity",
    "LinkPrecedence",
    "ContactRepository",
    "ContactStore",
    "InMemoryContactStore",
    "get_contact_store",
    "reset_contact_store",
    "IdentityError",
    "RepositoryError",
    "ValidationError",
    "IdentityResolver",
    "get_identity_resolver",
    "reset_identity_resolver",
]
