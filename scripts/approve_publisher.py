#!/usr/bin/env python3
"""Emit deterministic SQL that approves or revokes a hiring publisher (company)."""

from __future__ import annotations

import argparse


def _quote_sql(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def render_sql(*, company_id: str | None, company_name: str | None, approved: bool) -> str:
    if company_id:
        target_where = f"id = {_quote_sql(company_id)}::uuid"
    else:
        assert company_name is not None
        target_where = f"name = {_quote_sql(company_name)}"

    flag = "true" if approved else "false"
    action = "approve" if approved else "revoke"

    return f"""-- Hiring publisher {action} SQL
-- Run in a privileged Postgres session. Only approved publishers can fan out postings;
-- revoking also stops backfill of their existing postings.

update companies
set is_approved = {flag}, updated_at = now()
where {target_where};

select id::text as id, name, is_approved
from companies
where {target_where};
"""


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit SQL to approve or revoke a hiring publisher.")
    identity_group = parser.add_mutually_exclusive_group(required=True)
    identity_group.add_argument("--company-id", help="companies.id (UUID)")
    identity_group.add_argument("--company-name", help="companies.name (exact match)")
    parser.add_argument(
        "--revoke",
        action="store_true",
        help="Revoke approval instead of granting it",
    )
    args = parser.parse_args()

    print(
        render_sql(
            company_id=args.company_id,
            company_name=args.company_name,
            approved=not args.revoke,
        )
    )


if __name__ == "__main__":
    main()
