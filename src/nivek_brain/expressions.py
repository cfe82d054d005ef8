"""Map conversational signals onto robot expressions."""

from __future__ import annotations

import logging
from typing import Protocol

from nivek_brain.models import Expression, ExpressionCommand, ExpressionTrigger

# Scanned top to bottom; the first category with any keyword contained in the
# lower-cased text wins. Order matters: "no" also matches inside "know".
EXPRESSION_KEYWORDS: tuple[tuple[Expression, tuple[str, ...]], ...] = (
    (Expression.HAPPY, ("happy", "glad", "great", "wonderful", "excited", "love", "enjoy", "!")),
    (Expression.CURIOUS, ("interesting", "wonder", "curious", "tell me", "how", "why", "?")),
    (Expression.THINKING, ("hmm", "let me think", "considering", "perhaps", "maybe")),
    (Expression.SURPRISE, ("wow", "amazing", "incredible", "unexpected", "surprising")),
    (Expression.SAD, ("sorry", "unfortunately", "sad", "difficult", "hard")),
    (Expression.NOD, ("yes", "agree", "right", "exactly", "correct", "indeed")),
    (Expression.SHAKE, ("no", "don't", "won't", "can't", "disagree")),
)

DEFAULT_EXPRESSION = Expression.NEUTRAL


def detect_expression(
    text: str,
    table: tuple[tuple[Expression, tuple[str, ...]], ...] = EXPRESSION_KEYWORDS,
    default: Expression = DEFAULT_EXPRESSION,
) -> Expression:
    lowered = text.lower()
    for expression, keywords in table:
        for keyword in keywords:
            if keyword in lowered:
                return expression
    return default


class ExpressionSink(Protocol):
    """Anything that can play an expression, typically the robot channel."""

    async def play_expression(self, expression: Expression) -> bool: ...


class ExpressionSynchronizer:
    """Resolves expressions for thinking/reply signals and forwards them.

    Delivery is fire-and-forget. When sync is disabled or the robot is not
    connected the command is dropped; it is never retried or raised.
    """

    def __init__(
        self,
        sink: ExpressionSink | None = None,
        *,
        enabled: bool = True,
        logger: logging.Logger | None = None,
    ) -> None:
        self._sink = sink
        self.enabled = enabled
        self._logger = logger or logging.getLogger("nivek_brain.expressions")

    def attach(self, sink: ExpressionSink | None) -> None:
        self._sink = sink

    def resolve(self, text: str) -> Expression:
        return detect_expression(text)

    async def on_thinking(self) -> ExpressionCommand | None:
        return await self._deliver(ExpressionCommand(Expression.THINKING, ExpressionTrigger.THINKING))

    async def on_reply(self, text: str) -> ExpressionCommand | None:
        if not text:
            return None
        command = ExpressionCommand(self.resolve(text), ExpressionTrigger.REPLY_TEXT)
        return await self._deliver(command)

    async def _deliver(self, command: ExpressionCommand) -> ExpressionCommand | None:
        if not self.enabled or self._sink is None:
            return None

        try:
            delivered = await self._sink.play_expression(command.expression)
        except Exception:  # noqa: BLE001 - the robot is optional, never fail a turn over it.
            self._logger.debug("expression_delivery_failed", exc_info=True)
            return None

        if not delivered:
            return None
        self._logger.info(
            "expression_sent",
            extra={"expression": command.expression.value, "triggered_by": command.triggered_by.value},
        )
        return command
