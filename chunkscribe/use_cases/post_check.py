"""Generate-then-validate wrapper for structured inference steps.

with_post_check never raises on validation failure. It returns Parsed when
the validator accepts the output, or ValidationFailed carrying the last
output and its issues once the retry budget is spent.
"""

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, Iterable, Optional, TypeVar, Union

from chunkscribe.use_cases.concurrency import CancelToken

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CheckIssue:
    type: str
    details: str
    affected_ids: list[str] = field(default_factory=list)
    retryable: bool = True


@dataclass
class Parsed(Generic[T]):
    value: T
    attempts: int = 1

    @property
    def is_valid(self) -> bool:
        return True

    @property
    def issues(self) -> list[CheckIssue]:
        return []


@dataclass
class ValidationFailed(Generic[T]):
    value: T
    issues: list[CheckIssue]
    attempts: int = 1

    @property
    def is_valid(self) -> bool:
        return False

    def affected_ids(self) -> set[str]:
        return {i for issue in self.issues for i in issue.affected_ids}


CheckOutcome = Union[Parsed[T], ValidationFailed[T]]


def _summarize(issues: list[CheckIssue]) -> str:
    return "; ".join(f"{i.type}: {i.details}" for i in issues[:3]) + (
        f" (+{len(issues) - 3} more)" if len(issues) > 3 else ""
    )


async def with_post_check(
    generate: Callable[[], Awaitable[T]],
    validate: Callable[[T], list[CheckIssue]],
    max_retries: int = 1,
    step: str = "step",
    cancel: Optional[CancelToken] = None,
) -> "CheckOutcome[T]":
    """Run generate, validate the result, and regenerate up to max_retries times."""
    total = max_retries + 1
    attempt = 0
    while True:
        attempt += 1
        if cancel is not None:
            cancel.raise_if_cancelled()
        value = await generate()
        issues = validate(value)
        if not issues:
            if attempt > 1:
                logger.info(f"[{step}] post-check passed on attempt {attempt}")
            return Parsed(value, attempts=attempt)

        retryable = any(issue.retryable for issue in issues)
        if not retryable or attempt >= total:
            logger.warning(f"[{step}] post-check failed after {attempt} attempt(s): {_summarize(issues)}")
            return ValidationFailed(value, issues, attempts=attempt)
        logger.warning(f"[{step}] post-check failed ({_summarize(issues)}), regenerating")


def check_timings(items: Iterable, id_attr: str = "id") -> list[CheckIssue]:
    """Every item must satisfy 0 <= start < end."""
    bad = [
        str(getattr(item, id_attr, None) or position)
        for position, item in enumerate(items)
        if item.start < 0 or item.start >= item.end
    ]
    if not bad:
        return []
    return [CheckIssue("invalid_timing", f"{len(bad)} item(s) with start >= end", bad)]


def check_non_empty(items: Iterable, text_attr: str, id_attr: str = "id") -> list[CheckIssue]:
    empty = [
        str(getattr(item, id_attr, None) or position)
        for position, item in enumerate(items)
        if not (getattr(item, text_attr, None) or "").strip()
    ]
    if not empty:
        return []
    return [CheckIssue("empty_text", f"{len(empty)} item(s) with empty {text_attr}", empty)]


def check_unique_ids(ids: Iterable[Optional[str]]) -> list[CheckIssue]:
    seen: set[str] = set()
    duplicates: list[str] = []
    for item_id in ids:
        if item_id is None:
            continue
        if item_id in seen:
            duplicates.append(item_id)
        seen.add(item_id)
    if not duplicates:
        return []
    return [CheckIssue("duplicate_id", f"{len(duplicates)} duplicate id(s)", duplicates)]


def check_ids_present(expected: Iterable[str], produced: Iterable[str]) -> list[CheckIssue]:
    """Every expected id must appear in the produced output."""
    produced_set = set(produced)
    missing = [item_id for item_id in expected if item_id not in produced_set]
    if not missing:
        return []
    return [CheckIssue("missing_id", f"{len(missing)} id(s) missing from output", missing)]
