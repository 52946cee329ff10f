"""Request lifecycle: the status state machine of exchange requests and the
book ownership/availability changes each transition triggers.

Every operation returns a ``Result``; domain failures never raise. Store
errors propagate unchanged.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Dict, Generic, List, Optional, Set, Tuple, TypeVar

from dataBase import DuplicateDocumentError
from models.book_models import BookStatus
from models.request_models import RequestKind, RequestStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")

# (collection, document id, fields to restore, state the document must still be in)
Undo = Tuple[str, str, Dict[str, Any], Dict[str, Any]]


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    INVALID_STATE = "invalid_state"
    VALIDATION = "validation_error"


@dataclass(frozen=True)
class LifecycleError:
    kind: ErrorKind
    message: str
    code: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Result(Generic[T]):
    value: Optional[T] = None
    error: Optional[LifecycleError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str, code: Optional[str] = None, **details) -> "Result[T]":
        return cls(error=LifecycleError(kind, message, code, details))


class _Abort(Exception):
    """Unwinds a store transaction carrying the failure to report."""

    def __init__(self, result: Result):
        super().__init__(result.error.message)
        self.result = result


OWNER = "owner"
REQUESTER = "requester"

TRANSITIONS: Dict[RequestStatus, Set[RequestStatus]] = {
    RequestStatus.PENDING: {RequestStatus.ACCEPTED, RequestStatus.REJECTED, RequestStatus.CANCELLED},
    RequestStatus.ACCEPTED: {RequestStatus.COMPLETED, RequestStatus.CANCELLED},
    RequestStatus.REJECTED: set(),
    RequestStatus.COMPLETED: set(),
    RequestStatus.CANCELLED: set(),
}

# Which party may move a request into each status
ALLOWED_ACTORS: Dict[RequestStatus, Set[str]] = {
    RequestStatus.ACCEPTED: {OWNER},
    RequestStatus.REJECTED: {OWNER},
    RequestStatus.CANCELLED: {REQUESTER},
    RequestStatus.COMPLETED: {REQUESTER, OWNER},
}

FORBIDDEN_MESSAGES = {
    RequestStatus.ACCEPTED: "Only book owner can accept or reject requests",
    RequestStatus.REJECTED: "Only book owner can accept or reject requests",
    RequestStatus.CANCELLED: "Only requester can cancel the request",
}

DELETABLE = (RequestStatus.CANCELLED, RequestStatus.REJECTED)


def is_legal(current: RequestStatus, target: RequestStatus) -> bool:
    return target in TRANSITIONS[current]


def _invalid_transition(current: str, target: str) -> Result:
    return Result.failure(
        ErrorKind.INVALID_STATE,
        f"Cannot change status from {current} to {target}",
        code="invalid_transition",
        current=current,
        requested=target,
    )


class RequestLifecycleManager:
    def __init__(self, store):
        self.store = store

    @staticmethod
    def parties(request: Dict[str, Any], actor_id: str) -> Set[str]:
        roles = set()
        if request.get("requester") == actor_id:
            roles.add(REQUESTER)
        if request.get("owner") == actor_id:
            roles.add(OWNER)
        return roles

    async def request_transfer(
        self,
        requester_id: str,
        book_id: str,
        kind: RequestKind,
        offered_book_id: Optional[str] = None,
    ) -> Result[Dict[str, Any]]:
        """Open a pending request from ``requester_id`` for ``book_id``."""
        kind = RequestKind(kind)
        book = await self.store.find_one("books", {"id": book_id})
        if not book or not book.get("isActive", True):
            return self._refused(Result.failure(ErrorKind.NOT_FOUND, "Book not found"))
        if book.get("status") != BookStatus.AVAILABLE.value:
            return self._refused(Result.failure(ErrorKind.INVALID_STATE, "Book is not available for requests"))
        if book.get("owner") == requester_id:
            return self._refused(Result.failure(ErrorKind.INVALID_STATE, "You cannot request your own book"))

        existing = await self.store.find_one(
            "requests",
            {"requester": requester_id, "book": book["id"], "status": RequestStatus.PENDING.value},
        )
        if existing:
            return self._refused(self._duplicate())

        document = {
            "requester": requester_id,
            "book": book["id"],
            "owner": book["owner"],
            "type": kind.value,
            "status": RequestStatus.PENDING.value,
            "rating": {},
        }

        if kind == RequestKind.EXCHANGE:
            if not offered_book_id:
                return self._refused(Result.failure(
                    ErrorKind.INVALID_STATE, "Exchange requests must include an offered book"
                ))
            offered = await self.store.find_one("books", {"id": offered_book_id})
            if not offered or not offered.get("isActive", True):
                return self._refused(Result.failure(ErrorKind.NOT_FOUND, "Offered book not found"))
            if offered.get("owner") != requester_id or offered.get("status") != BookStatus.AVAILABLE.value:
                return self._refused(Result.failure(
                    ErrorKind.INVALID_STATE, "Offered book is not valid or not available"
                ))
            document["offeredBooks"] = offered["id"]

        try:
            request = await self.store.insert_one("requests", document)
        except DuplicateDocumentError:
            return self._refused(self._duplicate())

        logger.info(
            "Request %s created: %s wants book %s (%s)",
            request["id"], requester_id, book["id"], kind.value,
        )
        return Result.success(request)

    async def transition(self, request_id: str, actor_id: str, target_status: RequestStatus) -> Result[Dict[str, Any]]:
        """Move a request to ``target_status`` on behalf of ``actor_id``."""
        target = RequestStatus(target_status)
        request = await self.store.find_one("requests", {"id": request_id})
        if not request:
            return self._refused(Result.failure(ErrorKind.NOT_FOUND, "Request not found"))

        roles = self.parties(request, actor_id)
        if not roles:
            return self._refused(Result.failure(ErrorKind.FORBIDDEN, "Not authorized to update this request"))
        allowed = ALLOWED_ACTORS.get(target)
        if allowed is not None and not roles & allowed:
            message = FORBIDDEN_MESSAGES.get(target, "Not authorized to update this request")
            return self._refused(Result.failure(ErrorKind.FORBIDDEN, message))

        return await self._apply(request, target)

    async def admin_cancel(self, request_id: str) -> Result[Dict[str, Any]]:
        """Moderation cancel: same edge and side effects as a requester cancel."""
        request = await self.store.find_one("requests", {"id": request_id})
        if not request:
            return self._refused(Result.failure(ErrorKind.NOT_FOUND, "Request not found"))
        return await self._apply(request, RequestStatus.CANCELLED)

    async def rate(
        self,
        request_id: str,
        rater_id: str,
        rating: float,
        review: Optional[str] = None,
    ) -> Result[Dict[str, Any]]:
        """Record one side's rating of a completed request and credit the other party."""
        request = await self.store.find_one("requests", {"id": request_id})
        if not request:
            return self._refused(Result.failure(ErrorKind.NOT_FOUND, "Request not found"))
        if request.get("status") != RequestStatus.COMPLETED.value:
            return self._refused(Result.failure(ErrorKind.INVALID_STATE, "Can only rate completed requests"))

        roles = self.parties(request, rater_id)
        if not roles:
            return self._refused(Result.failure(ErrorKind.FORBIDDEN, "Not authorized to rate this request"))

        if REQUESTER in roles:
            side, counterparty = REQUESTER, request["owner"]
        else:
            side, counterparty = OWNER, request["requester"]

        if (request.get("rating") or {}).get(f"{side}Rating") is not None:
            return self._refused(self._already_rated())

        fields = {f"rating.{side}Rating": rating}
        if review is not None:
            fields[f"rating.{side}Review"] = review

        undo: List[Undo] = []
        try:
            async with self.store.transaction() as atomic:
                updated = await self.store.update_one(
                    "requests",
                    request["id"],
                    fields,
                    expected={"status": RequestStatus.COMPLETED.value, f"rating.{side}Rating": None},
                )
                if updated is None:
                    raise _Abort(self._already_rated())
                undo.append(("requests", request["id"], dict.fromkeys(fields), {f"rating.{side}Rating": rating}))
                await self._guarded(atomic, undo, self.store.fold_rating("users", counterparty, rating))
        except _Abort as abort:
            return self._refused(abort.result)

        logger.info("Request %s rated %s by %s", request["id"], rating, side)
        return Result.success(updated)

    async def rate_book(self, book_id: str, rater_id: str, rating: float) -> Result[Dict[str, Any]]:
        """Rate a book received through a completed request, once per request."""
        book = await self.store.find_one("books", {"id": book_id})
        if not book or not book.get("isActive", True):
            return self._refused(Result.failure(ErrorKind.NOT_FOUND, "Book not found"))

        received = {"book": book["id"], "requester": rater_id, "status": RequestStatus.COMPLETED.value}
        if not await self.store.count("requests", received):
            return self._refused(Result.failure(
                ErrorKind.INVALID_STATE,
                "You can only rate books you have received through completed requests",
            ))
        request = await self.store.find_one("requests", {**received, "rating.bookRating": None})
        if request is None:
            return self._refused(self._book_already_rated())

        undo: List[Undo] = []
        try:
            async with self.store.transaction() as atomic:
                marked = await self.store.update_one(
                    "requests", request["id"], {"rating.bookRating": rating}, expected={"rating.bookRating": None}
                )
                if marked is None:
                    raise _Abort(self._book_already_rated())
                undo.append(("requests", request["id"], {"rating.bookRating": None}, {"rating.bookRating": rating}))
                updated = await self._guarded(atomic, undo, self.store.fold_rating("books", book["id"], rating))
        except _Abort as abort:
            return self._refused(abort.result)

        logger.info("Book %s rated %s by %s", book["id"], rating, rater_id)
        return Result.success(updated)

    async def delete(self, request_id: str, actor_id: str) -> Result[Dict[str, Any]]:
        request = await self.store.find_one("requests", {"id": request_id})
        if not request:
            return self._refused(Result.failure(ErrorKind.NOT_FOUND, "Request not found"))
        if request.get("requester") != actor_id:
            return self._refused(Result.failure(ErrorKind.FORBIDDEN, "Not authorized to delete this request"))
        if request.get("status") not in {status.value for status in DELETABLE}:
            return self._refused(Result.failure(
                ErrorKind.INVALID_STATE, "Can only delete cancelled or rejected requests"
            ))

        deleted = await self.store.delete_one(
            "requests",
            request["id"],
            expected={"status": {"$in": [status.value for status in DELETABLE]}},
        )
        if not deleted:
            return self._refused(Result.failure(
                ErrorKind.INVALID_STATE, "Can only delete cancelled or rejected requests"
            ))

        logger.info("Request %s deleted by %s", request["id"], actor_id)
        return Result.success({"id": request["id"]})

    async def cancel_for_book(self, book_id: str) -> int:
        """Cancel every open request for a book taken out of circulation."""
        return await self._cancel_open({"book": book_id})

    async def cancel_for_user(self, user_id: str) -> int:
        """Cancel every open request a deactivated user takes part in."""
        return await self._cancel_open({"$or": [{"requester": user_id}, {"owner": user_id}]})

    async def _cancel_open(self, filters: Dict[str, Any]) -> int:
        cancelled = await self.store.update_many(
            "requests",
            {**filters, "status": RequestStatus.PENDING.value},
            {"status": RequestStatus.CANCELLED.value},
        )
        # Accepted requests hold a book, so they go through the state machine
        accepted = await self.store.find_many("requests", {**filters, "status": RequestStatus.ACCEPTED.value})
        for request in accepted:
            if (await self._apply(request, RequestStatus.CANCELLED)).ok:
                cancelled += 1
        return cancelled

    async def _apply(self, request: Dict[str, Any], target: RequestStatus) -> Result[Dict[str, Any]]:
        current = RequestStatus(request["status"])
        if not is_legal(current, target):
            return self._refused(_invalid_transition(current.value, target.value))

        fields: Dict[str, Any] = {"status": target.value}
        restore: Dict[str, Any] = {"status": current.value}
        if target == RequestStatus.COMPLETED:
            fields["completedAt"] = datetime.now(timezone.utc)
            restore["completedAt"] = request.get("completedAt")

        undo: List[Undo] = []
        try:
            async with self.store.transaction() as atomic:
                updated = await self.store.update_one(
                    "requests", request["id"], fields, expected={"status": current.value}
                )
                if updated is None:
                    latest = await self.store.find_one("requests", {"id": request["id"]})
                    if latest is None:
                        raise _Abort(Result.failure(ErrorKind.NOT_FOUND, "Request not found"))
                    logger.warning(
                        "Request %s changed to %s while moving %s -> %s",
                        request["id"], latest["status"], current.value, target.value,
                    )
                    raise _Abort(_invalid_transition(latest["status"], target.value))
                undo.append(("requests", request["id"], restore, {"status": target.value}))
                await self._guarded(atomic, undo, self._apply_book_effects(request, current, target, undo))
        except _Abort as abort:
            return self._refused(abort.result)

        logger.info("Request %s moved %s -> %s", request["id"], current.value, target.value)
        return Result.success(updated)

    async def _apply_book_effects(
        self,
        request: Dict[str, Any],
        current: RequestStatus,
        target: RequestStatus,
        undo: List[Undo],
    ):
        """Book writes for a transition; each successful write records its inverse in ``undo``."""
        if target == RequestStatus.ACCEPTED:
            book = await self.store.update_one(
                "books",
                request["book"],
                {"status": BookStatus.NOT_AVAILABLE.value},
                expected={"status": BookStatus.AVAILABLE.value, "owner": request["owner"], "isActive": True},
            )
            if book is None:
                raise _Abort(Result.failure(ErrorKind.INVALID_STATE, "Book is no longer available"))
            undo.append((
                "books", request["book"],
                {"status": BookStatus.AVAILABLE.value}, {"status": BookStatus.NOT_AVAILABLE.value},
            ))

        elif target == RequestStatus.COMPLETED:
            book = await self.store.update_one(
                "books",
                request["book"],
                {"owner": request["requester"], "status": BookStatus.NOT_AVAILABLE.value},
            )
            if book is not None:
                undo.append(("books", request["book"], {"owner": request["owner"]}, {"owner": request["requester"]}))
            if request.get("type") == RequestKind.EXCHANGE.value and request.get("offeredBooks"):
                offered = await self.store.find_one("books", {"id": request["offeredBooks"]})
                moved = await self.store.update_one(
                    "books",
                    request["offeredBooks"],
                    {"owner": request["owner"], "status": BookStatus.NOT_AVAILABLE.value},
                )
                if offered is not None and moved is not None:
                    undo.append((
                        "books", offered["id"],
                        {"owner": offered.get("owner"), "status": offered.get("status")},
                        {"owner": request["owner"]},
                    ))

        elif target == RequestStatus.CANCELLED and current == RequestStatus.ACCEPTED:
            book = await self.store.update_one(
                "books",
                request["book"],
                {"status": BookStatus.AVAILABLE.value},
                expected={"owner": request["owner"]},
            )
            if book is not None:
                undo.append((
                    "books", request["book"],
                    {"status": BookStatus.NOT_AVAILABLE.value}, {"status": BookStatus.AVAILABLE.value},
                ))

    async def _guarded(self, atomic: bool, undo: List[Undo], writes: Awaitable[T]) -> T:
        """Await ``writes``; without a real transaction, revert ``undo`` if they fail."""
        try:
            return await writes
        except Exception:
            if not atomic:
                await self._revert(undo)
            raise

    async def _revert(self, undo: List[Undo]):
        for collection, document_id, fields, expected in reversed(undo):
            try:
                reverted = await self.store.update_one(collection, document_id, fields, expected=expected)
            except Exception:
                logger.exception("Could not revert %s %s", collection, document_id)
                continue
            if reverted is None:
                logger.error("Could not revert %s %s: document changed meanwhile", collection, document_id)

    @staticmethod
    def _duplicate() -> Result:
        return Result.failure(
            ErrorKind.INVALID_STATE,
            "You already have a pending request for this book",
            code="duplicate_request",
        )

    @staticmethod
    def _already_rated() -> Result:
        return Result.failure(
            ErrorKind.INVALID_STATE, "You have already rated this request", code="already_rated"
        )

    @staticmethod
    def _book_already_rated() -> Result:
        return Result.failure(
            ErrorKind.INVALID_STATE, "You have already rated this book", code="already_rated"
        )

    @staticmethod
    def _refused(result: Result) -> Result:
        logger.info("Refused (%s): %s", result.error.kind.value, result.error.message)
        return result
