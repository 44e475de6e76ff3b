"""Operator prompts for the apply cycle."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from enum import Enum

import click

logger = logging.getLogger(__name__)

PROMPT_CHOICES = "[Y]es / [N]o / [C]ancel"


class UserDecision(str, Enum):
    YES = "yes"
    NO = "no"
    CANCEL = "cancel"


ANSWERS = {
    "y": UserDecision.YES,
    "yes": UserDecision.YES,
    "n": UserDecision.NO,
    "no": UserDecision.NO,
    "c": UserDecision.CANCEL,
    "cancel": UserDecision.CANCEL,
}


def parse_answer(text: str) -> UserDecision | None:
    """Map an answer to a decision; None for anything unrecognized."""
    return ANSWERS.get(text.strip().lower())


class ConsolePrompter:
    """Asks on the terminal until the operator gives a valid answer.

    End of input (Ctrl-D, closed stdin) counts as Cancel.
    """

    def ask(self, rule_id: str, title: str) -> UserDecision:
        question = f"Apply fix for {rule_id} ({title})? {PROMPT_CHOICES}"
        while True:
            try:
                answer = click.prompt(question, default="", show_default=False, prompt_suffix=": ")
            except click.Abort:
                return UserDecision.CANCEL
            decision = parse_answer(answer)
            if decision is not None:
                return decision
            click.echo(f"Please answer {PROMPT_CHOICES}.", err=True)


class ScriptedPrompter:
    """Replays fixed answers; used for tests and non-terminal callers."""

    def __init__(self, answers: Iterable[str | UserDecision]):
        self._answers = list(answers)
        self.asked: list[str] = []

    def ask(self, rule_id: str, title: str) -> UserDecision:
        self.asked.append(rule_id)
        while self._answers:
            answer = self._answers.pop(0)
            decision = answer if isinstance(answer, UserDecision) else parse_answer(answer)
            if decision is not None:
                return decision
            logger.debug("ignoring invalid scripted answer %r", answer)
        return UserDecision.CANCEL
