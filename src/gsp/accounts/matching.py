from collections.abc import Iterable

from gsp.accounts.tokens import Account


def resolve_account_id(login_token: str | None, accounts: Iterable[Account]) -> str | None:
    """Account id whose login token equals ``login_token``, else None."""
    if not login_token:
        return None
    for account in accounts:
        if account.login_token == login_token:
            return account.account_id
    return None
