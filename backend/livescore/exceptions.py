from fastapi import HTTPException
from pydantic import BaseModel
from typing import Optional


class ProblemDetail(BaseModel):
    """RFC 7807 compliant error response."""

    type: str = "about:blank"
    title: str
    detail: Optional[str] = None
    status: int
    instance: Optional[str] = None
    code: str


class DomainException(Exception):
    """Base class for domain-specific exceptions."""

    def __init__(
        self,
        status_code: int,
        title: str,
        *,
        code: str,
        detail: str | None = None,
        type_: str = "about:blank",
    ) -> None:
        super().__init__(detail or title)
        self.status_code = status_code
        self.title = title
        self.detail = detail
        self.type = type_
        self.code = code

    def to_problem(self) -> ProblemDetail:
        return ProblemDetail(
            type=self.type,
            title=self.title,
            detail=self.detail,
            status=self.status_code,
            code=self.code,
        )


class MatchNotFound(DomainException):
    def __init__(self, match_id: str) -> None:
        super().__init__(
            status_code=404,
            title="Match not found",
            detail=f"match '{match_id}' not found",
            code="match_not_found",
        )


class MatchTransitionRejected(DomainException):
    def __init__(self, detail: str) -> None:
        super().__init__(
            status_code=409,
            title="Invalid transition",
            detail=detail,
            code="match_invalid_transition",
        )


class PersistenceFailure(DomainException):
    """The match store did not accept a state write."""

    def __init__(self, match_id: str, detail: str) -> None:
        super().__init__(
            status_code=503,
            title="Persistence failure",
            detail=f"match '{match_id}': {detail}",
            code="persistence_failure",
        )
        self.match_id = match_id


class BroadcastFailure(DomainException):
    """A live update could not be published to spectators."""

    def __init__(self, match_id: str, detail: str) -> None:
        super().__init__(
            status_code=503,
            title="Broadcast failure",
            detail=f"match '{match_id}': {detail}",
            code="broadcast_failure",
        )
        self.match_id = match_id


def http_problem(
    status_code: int,
    detail: str,
    code: str,
    *,
    headers: Optional[dict[str, str]] = None,
) -> HTTPException:
    """Create an HTTPException with an attached problem code."""

    exc = HTTPException(status_code=status_code, detail=detail, headers=headers)
    setattr(exc, "code", code)
    return exc
