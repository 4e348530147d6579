from datetime import datetime, timedelta

import pytest

import errors
import lending
import models

T0 = datetime(2024, 3, 1, 10, 0, 0)


def assert_copies_consistent(book):
    assert book.available_copies >= 0
    assert book.available_copies + book.issued_copies == book.total_copies


def issue_to(db, member, book, admin, now=T0):
    txn = lending.request_issue(member.id, book.id, db)
    return lending.decide(txn.id, "approved", admin.id, db, now=now)


def return_from(db, member, book, admin, now):
    ret = lending.request_return(member.id, book.id, db)
    lending.decide(ret.id, "approved", admin.id, db, now=now)
    return lending.complete_return(ret.id, admin.id, db, now=now)


def active_issue_count(db, member, book):
    return db.query(models.Transaction).filter(
        models.Transaction.user_id == member.id,
        models.Transaction.book_id == book.id,
        models.Transaction.type == models.TYPE_ISSUE,
        models.Transaction.status == models.STATUS_APPROVED,
        models.Transaction.returned_at.is_(None),
    ).count()


class TestRequestIssue:
    def test_creates_pending_transaction_without_touching_book(self, db, member, book):
        txn = lending.request_issue(member.id, book.id, db, notes="for class")

        assert txn.type == models.TYPE_ISSUE
        assert txn.status == models.STATUS_PENDING
        assert txn.notes == "for class"
        db.refresh(book)
        assert book.available_copies == 5
        assert book.issued_copies == 0
        assert member.issued_books == []

    def test_no_copies_left_is_unavailable(self, db, member, make_book):
        empty = make_book(total_copies=2, available_copies=0)
        with pytest.raises(errors.BookUnavailable) as exc:
            lending.request_issue(member.id, empty.id, db)
        assert exc.value.kind == "unavailable"

    def test_inactive_book_is_unavailable(self, db, member, make_book):
        retired = make_book(is_active=False)
        with pytest.raises(errors.BookUnavailable):
            lending.request_issue(member.id, retired.id, db)

    def test_missing_book_is_unavailable(self, db, member):
        with pytest.raises(errors.BookUnavailable):
            lending.request_issue(member.id, 9999, db)

    def test_unknown_member(self, db, book):
        with pytest.raises(errors.MemberNotFound):
            lending.request_issue(9999, book.id, db)

    def test_duplicate_active_issue(self, db, member, book, admin_user):
        issue_to(db, member, book, admin_user)
        with pytest.raises(errors.DuplicateIssue) as exc:
            lending.request_issue(member.id, book.id, db)
        assert exc.value.kind == "duplicate_active_issue"

    def test_duplicate_pending_request(self, db, member, book):
        lending.request_issue(member.id, book.id, db)
        with pytest.raises(errors.DuplicateIssue):
            lending.request_issue(member.id, book.id, db)


class TestDecide:
    def test_approve_issue_takes_copy_and_records_member_entry(self, db, member, book, admin_user):
        txn = lending.request_issue(member.id, book.id, db)

        approved = lending.decide(txn.id, "approved", admin_user.id, db, notes="ok", now=T0)

        assert approved.status == models.STATUS_APPROVED
        assert approved.approved_by == admin_user.id
        assert approved.issued_at == T0
        assert approved.due_date == T0 + timedelta(days=14)
        assert approved.notes == "ok"
        db.refresh(book)
        assert book.available_copies == 4
        assert book.issued_copies == 1
        assert_copies_consistent(book)
        db.refresh(member)
        assert len(member.issued_books) == 1
        entry = member.issued_books[0]
        assert entry.book_id == book.id
        assert entry.due_date == T0 + timedelta(days=14)
        assert entry.returned is False

    def test_reject_leaves_book_and_member_alone(self, db, member, book, admin_user):
        txn = lending.request_issue(member.id, book.id, db, notes="please")

        rejected = lending.decide(txn.id, "rejected", admin_user.id, db)

        assert rejected.status == models.STATUS_REJECTED
        assert rejected.approved_by == admin_user.id
        assert rejected.notes == "please"
        db.refresh(book)
        assert book.available_copies == 5
        db.refresh(member)
        assert member.issued_books == []

    def test_second_decision_fails_without_mutating_again(self, db, member, book, admin_user):
        txn = issue_to(db, member, book, admin_user)

        with pytest.raises(errors.TransactionNotPending) as exc:
            lending.decide(txn.id, "approved", admin_user.id, db)
        assert exc.value.kind == "invalid_state"
        with pytest.raises(errors.TransactionNotPending):
            lending.decide(txn.id, "rejected", admin_user.id, db)

        db.refresh(book)
        db.refresh(member)
        assert book.available_copies == 4
        assert len(member.issued_books) == 1

    def test_requires_admin(self, db, member, other_member, book):
        txn = lending.request_issue(member.id, book.id, db)
        with pytest.raises(errors.NotAuthorized) as exc:
            lending.decide(txn.id, "approved", other_member.id, db)
        assert exc.value.status_code == 403
        db.refresh(txn)
        assert txn.status == models.STATUS_PENDING

    def test_unknown_transaction(self, db, admin_user):
        with pytest.raises(errors.TransactionNotFound):
            lending.decide(12345, "approved", admin_user.id, db)

    def test_unsupported_outcome(self, db, member, book, admin_user):
        txn = lending.request_issue(member.id, book.id, db)
        with pytest.raises(errors.InvalidStateError):
            lending.decide(txn.id, "completed", admin_user.id, db)

    def test_last_copy_race_is_settled_at_approval(self, db, member, other_member, admin_user, make_book):
        single = make_book(title="Rare", total_copies=1)
        first = lending.request_issue(member.id, single.id, db)
        second = lending.request_issue(other_member.id, single.id, db)

        lending.decide(first.id, "approved", admin_user.id, db, now=T0)
        with pytest.raises(errors.BookUnavailable):
            lending.decide(second.id, "approved", admin_user.id, db, now=T0)

        db.refresh(second)
        db.refresh(single)
        db.refresh(other_member)
        assert second.status == models.STATUS_PENDING
        assert single.available_copies == 0
        assert_copies_consistent(single)
        assert other_member.issued_books == []

    def test_approving_a_second_issue_of_the_same_book_is_refused(self, db, member, book, admin_user):
        issue_to(db, member, book, admin_user)
        # a second pending request for the same pair, e.g. from an older client
        stray = models.Transaction(
            user_id=member.id, book_id=book.id, type=models.TYPE_ISSUE, status=models.STATUS_PENDING
        )
        db.add(stray)
        db.commit()

        with pytest.raises(errors.DuplicateIssue):
            lending.decide(stray.id, "approved", admin_user.id, db)
        assert active_issue_count(db, member, book) == 1
        db.refresh(book)
        assert book.available_copies == 4


class TestReturns:
    def test_request_return_needs_active_issue(self, db, member, book):
        with pytest.raises(errors.NoActiveIssue):
            lending.request_return(member.id, book.id, db)

    def test_request_return_creates_separate_pending_transaction(self, db, member, book, admin_user):
        issue = issue_to(db, member, book, admin_user)

        ret = lending.request_return(member.id, book.id, db, notes="done")

        assert ret.id != issue.id
        assert ret.type == models.TYPE_RETURN
        assert ret.status == models.STATUS_PENDING
        db.refresh(issue)
        assert issue.status == models.STATUS_APPROVED
        assert issue.returned_at is None

    def test_second_return_request_is_refused(self, db, member, book, admin_user):
        issue_to(db, member, book, admin_user)
        lending.request_return(member.id, book.id, db)
        with pytest.raises(errors.ReturnAlreadyRequested):
            lending.request_return(member.id, book.id, db)

    def test_complete_requires_approved_return(self, db, member, book, admin_user):
        issue = issue_to(db, member, book, admin_user)
        ret = lending.request_return(member.id, book.id, db)

        with pytest.raises(errors.InvalidTransactionState):
            lending.complete_return(ret.id, admin_user.id, db)
        with pytest.raises(errors.InvalidTransactionState):
            lending.complete_return(issue.id, admin_user.id, db)
        db.refresh(book)
        assert book.available_copies == 4

    def test_complete_unknown_transaction(self, db, admin_user):
        with pytest.raises(errors.TransactionNotFound):
            lending.complete_return(424242, admin_user.id, db)

    def test_complete_requires_admin(self, db, member, book, admin_user):
        issue_to(db, member, book, admin_user)
        ret = lending.request_return(member.id, book.id, db)
        lending.decide(ret.id, "approved", admin_user.id, db)
        with pytest.raises(errors.NotAuthorized):
            lending.complete_return(ret.id, member.id, db)

    def test_on_time_return_has_no_fine(self, db, member, book, admin_user):
        issue = issue_to(db, member, book, admin_user, now=T0)

        done = return_from(db, member, book, admin_user, now=T0 + timedelta(days=10))

        assert done.status == models.STATUS_COMPLETED
        db.refresh(issue)
        assert issue.is_overdue is False
        assert issue.fine_amount == 0
        assert issue.fine_paid is False

    def test_overdue_return_is_fined_two_per_day(self, db, member, book, admin_user):
        issue = issue_to(db, member, book, admin_user, now=T0)

        return_from(db, member, book, admin_user, now=T0 + timedelta(days=20))

        db.refresh(issue)
        assert issue.is_overdue is True
        assert issue.fine_amount == 12

    def test_partial_day_late_counts_as_a_full_day(self, db, member, book, admin_user):
        issue = issue_to(db, member, book, admin_user, now=T0)

        return_from(db, member, book, admin_user, now=T0 + timedelta(days=14, hours=1))

        db.refresh(issue)
        assert issue.is_overdue is True
        assert issue.fine_amount == 2

    def test_member_can_borrow_again_after_return(self, db, member, book, admin_user):
        issue_to(db, member, book, admin_user, now=T0)
        return_from(db, member, book, admin_user, now=T0 + timedelta(days=3))

        issue_to(db, member, book, admin_user, now=T0 + timedelta(days=4))

        db.refresh(member)
        assert [entry.returned for entry in member.issued_books] == [True, False]
        assert active_issue_count(db, member, book) == 1

    def test_no_issued_copies_rolls_back(self, db, member, book, admin_user):
        issue_to(db, member, book, admin_user)
        ret = lending.request_return(member.id, book.id, db)
        lending.decide(ret.id, "approved", admin_user.id, db)
        # counters drifted out from under the ledger
        book.available_copies = book.total_copies
        db.commit()

        with pytest.raises(errors.NoIssuedCopies):
            lending.complete_return(ret.id, admin_user.id, db)

        db.refresh(ret)
        db.refresh(member)
        assert ret.status == models.STATUS_APPROVED
        assert member.issued_books[0].returned is False
        assert active_issue_count(db, member, book) == 1

    def test_return_book_copy_with_nothing_issued(self, db, book):
        with pytest.raises(errors.NoIssuedCopies):
            lending.return_book_copy(book.id, db)


class TestDeleteTransaction:
    def test_active_issue_cannot_be_deleted(self, db, member, book, admin_user):
        issue = issue_to(db, member, book, admin_user)
        with pytest.raises(errors.ActiveIssueCannotBeDeleted) as exc:
            lending.delete_transaction(issue.id, admin_user.id, db)
        assert exc.value.kind == "active_reference_exists"
        assert db.query(models.Transaction).filter_by(id=issue.id).count() == 1

    def test_rejected_request_can_be_deleted(self, db, member, book, admin_user):
        txn = lending.request_issue(member.id, book.id, db)
        lending.decide(txn.id, "rejected", admin_user.id, db)

        lending.delete_transaction(txn.id, admin_user.id, db)

        assert db.query(models.Transaction).filter_by(id=txn.id).count() == 0

    def test_returned_issue_can_be_deleted(self, db, member, book, admin_user):
        issue = issue_to(db, member, book, admin_user, now=T0)
        return_from(db, member, book, admin_user, now=T0 + timedelta(days=1))

        lending.delete_transaction(issue.id, admin_user.id, db)

        assert db.query(models.Transaction).filter_by(id=issue.id).count() == 0

    def test_missing_transaction(self, db, admin_user):
        with pytest.raises(errors.TransactionNotFound):
            lending.delete_transaction(777, admin_user.id, db)


def test_full_lending_cycle(db, member, book, admin_user):
    txn = lending.request_issue(member.id, book.id, db)
    db.refresh(book)
    assert txn.status == models.STATUS_PENDING
    assert book.available_copies == 5

    lending.decide(txn.id, "approved", admin_user.id, db, now=T0)
    db.refresh(book)
    db.refresh(member)
    assert (book.available_copies, book.issued_copies) == (4, 1)
    assert len(member.issued_books) == 1
    assert txn.due_date == T0 + timedelta(days=14)

    ret = lending.request_return(member.id, book.id, db)
    assert (ret.type, ret.status) == (models.TYPE_RETURN, models.STATUS_PENDING)
    lending.decide(ret.id, "approved", admin_user.id, db, now=T0 + timedelta(days=7))

    done = lending.complete_return(ret.id, admin_user.id, db, now=T0 + timedelta(days=7))

    assert done.status == models.STATUS_COMPLETED
    assert done.returned_at == T0 + timedelta(days=7)
    db.refresh(book)
    db.refresh(member)
    db.refresh(txn)
    assert (book.available_copies, book.issued_copies) == (5, 0)
    assert_copies_consistent(book)
    assert member.issued_books[0].returned is True
    assert member.issued_books[0].returned_at == T0 + timedelta(days=7)
    assert txn.returned_at == T0 + timedelta(days=7)
    assert txn.is_active_issue is False
