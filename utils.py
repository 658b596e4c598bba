# utils.py
"""General utility functions."""

import json
import logging
import time
from typing import Any, Callable, Iterable, List

from errors import PollTimeoutError

logger = logging.getLogger('vsprov.utils')


def ucfirst(value: str) -> str:
    """Upper-cases the first character of a string, leaving the rest untouched."""
    if not value:
        return value
    return value[0].upper() + value[1:]


def set_difference(left: Iterable[Any], right: Iterable[Any]) -> List[Any]:
    """Items of left that are not in right, in the order they appear in left."""
    right_items = list(right or [])
    return [item for item in (left or []) if item not in right_items]


def json_equal_ignoring(old: str, new: str, ignored_keys=("metadata",)) -> bool:
    """Compares two JSON documents after dropping the given top-level keys."""
    try:
        old_doc = json.loads(old)
        new_doc = json.loads(new)
    except (TypeError, ValueError):
        return False
    if isinstance(old_doc, dict):
        old_doc = {k: v for k, v in old_doc.items() if k not in ignored_keys}
    if isinstance(new_doc, dict):
        new_doc = {k: v for k, v in new_doc.items() if k not in ignored_keys}
    return old_doc == new_doc


def poll_until(fetch: Callable[[], Any], is_done: Callable[[Any], bool], interval: float,
               timeout: float, description: str = "operation",
               sleep=time.sleep, clock=time.monotonic):
    """
    Calls fetch every interval seconds until is_done returns True.

    :param fetch: Returns the current status.
    :param is_done: Returns True to stop, False to keep polling. May raise to abort.
    :param interval: Seconds between polls.
    :param timeout: Overall time budget in seconds.
    :param description: Used in log and timeout messages.
    :return: The status that satisfied is_done.
    """
    deadline = clock() + timeout
    while True:
        status = fetch()
        logger.debug(f"Polling {description}: {status}")
        if is_done(status):
            return status
        if clock() + interval > deadline:
            raise PollTimeoutError(f"timeout while waiting for {description}")
        sleep(interval)


def moref(vim_type, value, stub=None):
    """Builds a managed object reference of the given type for a moref value."""
    if not value:
        return None
    return vim_type(value, stub)


def moref_value(obj) -> str:
    """Returns the moref value of a managed object, or an empty string."""
    if obj is None:
        return ""
    return obj._moId


def slice_to_strings(values) -> List[str]:
    return [str(v) for v in (values or []) if v is not None]


def normalize_folder_path(path: str) -> str:
    """Strips leading and trailing slashes and collapses duplicate separators."""
    return "/".join(part for part in (path or "").split("/") if part)
