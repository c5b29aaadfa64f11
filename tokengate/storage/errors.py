from __future__ import annotations


class DuplicateUsernameError(ValueError):
    """A second principal tried to claim a username already in the directory."""

    def __init__(self, username: str) -> None:
        super().__init__(f"username {username!r} is already taken")
        self.username = username


class UnknownPrincipalError(LookupError):
    """A session was requested for a principal the directory does not hold."""

    def __init__(self, principal_id: str) -> None:
        super().__init__(f"no principal with id {principal_id!r}")
        self.principal_id = principal_id
