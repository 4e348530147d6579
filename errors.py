"""Typed failures raised by the lending workflow and the catalog/registry helpers.

Each failure carries a ``kind`` (one of the broad categories below) and an
HTTP status code so the API layer can translate it without inspecting the
message text.
"""

from typing import Optional


class LendingError(Exception):
    kind = "lending_error"
    status_code = 400
    default_message = "Lending operation failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_detail(self) -> dict:
        return {"code": self.kind, "message": self.message}


# --- Kinds ---
class NotFoundError(LendingError):
    kind = "not_found"
    status_code = 404
    default_message = "Not found"


class InvalidStateError(LendingError):
    kind = "invalid_state"
    default_message = "Invalid state for this operation"


class UnavailableError(LendingError):
    kind = "unavailable"
    default_message = "Not available"


class DuplicateActiveIssueError(LendingError):
    kind = "duplicate_active_issue"
    default_message = "Book already issued to this member"


class NotAuthorizedError(LendingError):
    kind = "not_authorized"
    status_code = 403
    default_message = "Not enough permissions"


class ActiveReferenceExistsError(LendingError):
    kind = "active_reference_exists"
    default_message = "An active issue still references this record"


# --- Named failures ---
class BookNotFound(NotFoundError):
    default_message = "Book not found"


class MemberNotFound(NotFoundError):
    default_message = "User not found"


class TransactionNotFound(NotFoundError):
    default_message = "Transaction not found"


class TransactionNotPending(InvalidStateError):
    default_message = "Can only update pending transactions"


class InvalidTransactionState(InvalidStateError):
    default_message = "Invalid transaction for completion"


class NoActiveIssue(InvalidStateError):
    default_message = "No active issue found for this book"


class ReturnAlreadyRequested(InvalidStateError):
    default_message = "A return for this book is already in progress"


class BookUnavailable(UnavailableError):
    default_message = "Book not available"


class NoIssuedCopies(UnavailableError):
    default_message = "No issued copies to return"


class DuplicateIssue(DuplicateActiveIssueError):
    default_message = "You already have this book issued"


class NotAuthorized(NotAuthorizedError):
    pass


class ActiveIssueCannotBeDeleted(ActiveReferenceExistsError):
    default_message = "Cannot delete active issue transaction. Please complete return first."


class BookHasActiveIssues(ActiveReferenceExistsError):
    default_message = "Cannot delete book that is currently issued"


class MemberHasActiveIssues(ActiveReferenceExistsError):
    default_message = "Cannot delete user with active book issues. Please return all books first."
