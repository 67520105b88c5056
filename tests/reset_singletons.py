"""
Centralized singleton reset utilities for testing.

These functions reset global singleton instances to prevent test pollution.
Singletons that persist across tests can cause:
- Contacts from one test showing up in another
- Mock stores leaking between tests
- Settings changes not taking effect

Usage in conftest.py:
    @pytest.fixture(autouse=True)
    def reset_singletons_after_test():
        yield
        reset_all_singletons()
"""


def reset_all_singletons() -> None:
    """
    Reset the resolver and contact store singletons.

    The resolver goes first since it holds a reference to the store.
    """
    from api.services.identity_resolver import reset_identity_resolver
    from api.services.contact_store import reset_contact_store

    reset_identity_resolver()
    reset_contact_store()
