"""Tests for verbosity-levelled logging."""

import io

import pytest

from cpmsched.logger import get_logger, setup_logger


@pytest.mark.parametrize(
    ("verbosity", "expected"),
    [
        (0, []),
        (1, ["delayed B"]),
        (2, ["delayed B", "checked B"]),
        (3, ["delayed B", "checked B", "pass detail"]),
    ],
)
def test_verbosity_levels(verbosity: int, expected: list[str]) -> None:
    stream = io.StringIO()
    setup_logger(verbosity, stream)
    logger = get_logger()

    logger.changes("delayed B")
    logger.checks("checked B")
    logger.debug("pass detail")

    assert stream.getvalue().splitlines() == expected


def test_reconfiguring_replaces_handler() -> None:
    first, second = io.StringIO(), io.StringIO()
    setup_logger(1, first)
    setup_logger(1, second)

    get_logger().changes("once")

    assert first.getvalue() == ""
    assert second.getvalue() == "once\n"
