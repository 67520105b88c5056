#!/usr/bin/env python3
"""
Check the contacts database for linking problems.

Reports secondaries that point at a missing contact, at another secondary
(a chain), or into a loop. Also reports primaries that carry a linked_id and
rows with neither an email nor a phone number. With --fix, chained
secondaries are re-parented directly onto their primary so every cluster is
one level deep again.

Usage:
    python scripts/check_contact_integrity.py [--db PATH] [--fix]
"""
import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from api.services.contact_store import ContactStore
from api.services.errors import RepositoryError

logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')
logger = logging.getLogger(__name__)


def check_integrity(db_path: str = None, fix: bool = False) -> dict:
    """
    Scan the contacts table and optionally repair chains.

    Returns:
        Stats dict with issue counts by kind and the number of contacts fixed
    """
    store = ContactStore(db_path=db_path)
    try:
        issues = store.find_integrity_issues()
        stats = {"contacts": store.count(), "issues": len(issues), "fixed": 0}
        for issue in issues:
            stats[issue.kind] = stats.get(issue.kind, 0) + 1
            logger.warning(f"Contact {issue.contact_id}: {issue.kind} ({issue.detail})")

        if fix and stats.get("chained_link"):
            stats["fixed"] = store.flatten_chains()
            logger.info(f"Re-parented {stats['fixed']} chained contact(s)")
        return stats
    finally:
        store.close()


def main():
    parser = argparse.ArgumentParser(description="Check contact linking integrity")
    parser.add_argument("--db", help="Path to contacts database (default from settings)")
    parser.add_argument("--fix", action="store_true", help="Re-parent chained secondaries")
    args = parser.parse_args()

    try:
        stats = check_integrity(db_path=args.db, fix=args.fix)
    except RepositoryError as e:
        logger.error(f"Integrity check failed: {e}")
        return 1

    print(f"Contacts: {stats['contacts']}")
    print(f"Issues:   {stats['issues']}")
    if args.fix:
        print(f"Fixed:    {stats['fixed']}")
    unresolved = stats["issues"] - stats["fixed"]
    return 1 if unresolved else 0


if __name__ == "__main__":
    sys.exit(main())
