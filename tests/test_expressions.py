from __future__ import annotations

import asyncio

from nivek_brain.expressions import EXPRESSION_KEYWORDS, ExpressionSynchronizer, detect_expression
from nivek_brain.models import Expression, ExpressionTrigger


class StubRobot:
    def __init__(self, connected: bool = True, fail: bool = False) -> None:
        self.connected = connected
        self.fail = fail
        self.played: list[Expression] = []

    async def play_expression(self, expression: Expression) -> bool:
        if self.fail:
            raise RuntimeError("bridge exploded")
        if not self.connected:
            return False
        self.played.append(expression)
        return True


def test_keyword_table_keeps_declared_category_order() -> None:
    assert [expression for expression, _ in EXPRESSION_KEYWORDS] == [
        Expression.HAPPY,
        Expression.CURIOUS,
        Expression.THINKING,
        Expression.SURPRISE,
        Expression.SAD,
        Expression.NOD,
        Expression.SHAKE,
    ]


def test_first_matching_category_wins() -> None:
    # "agree" would match nod, but happy is scanned first.
    assert detect_expression("That's great, I agree!") == Expression.HAPPY


def test_matching_is_case_insensitive_substring() -> None:
    assert detect_expression("WOW that is big") == Expression.SURPRISE
    assert detect_expression("Really?") == Expression.CURIOUS
    assert detect_expression("I know that.") == Expression.SHAKE


def test_unmatched_text_falls_back_to_neutral() -> None:
    assert detect_expression("The sky is blue.") == Expression.NEUTRAL


def test_thinking_signal_sends_thinking_expression() -> None:
    robot = StubRobot()
    command = asyncio.run(ExpressionSynchronizer(robot).on_thinking())

    assert command is not None
    assert command.expression == Expression.THINKING
    assert command.triggered_by == ExpressionTrigger.THINKING
    assert robot.played == [Expression.THINKING]


def test_reply_expression_is_dropped_when_robot_disconnected() -> None:
    robot = StubRobot(connected=False)

    command = asyncio.run(ExpressionSynchronizer(robot).on_reply("I'm so glad!"))

    assert command is None
    assert robot.played == []


def test_disabled_sync_sends_nothing() -> None:
    robot = StubRobot()

    command = asyncio.run(ExpressionSynchronizer(robot, enabled=False).on_reply("I'm so glad!"))

    assert command is None
    assert robot.played == []


def test_robot_failure_never_propagates() -> None:
    command = asyncio.run(ExpressionSynchronizer(StubRobot(fail=True)).on_reply("Sorry about that"))

    assert command is None
