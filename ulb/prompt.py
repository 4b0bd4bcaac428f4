# SPDX-License-Identifier: LGPL-2.1-or-later

import dataclasses
import sys
from collections.abc import Mapping, Sequence
from typing import Any, Callable, TextIO

from ulb.config import (
    Bootloader,
    InitSystem,
    Profile,
    make_enum_parser,
    parse_boolean,
    profile_from_dict,
)
from ulb.distributions import Distribution
from ulb.log import Style, ValidationFailure, die


def parse_answer(answer: str) -> str:
    return answer


def parse_list(answer: str) -> list[str]:
    return [item.strip() for item in answer.split(",") if item.strip()]


def parse_choice(type: Any) -> Callable[[str], str]:
    parse = make_enum_parser(type)
    return lambda answer: str(parse(answer))


@dataclasses.dataclass(frozen=True)
class Question:
    key: str
    text: str
    parse: Callable[[str], Any] = parse_answer
    allow_empty: bool = False
    when: Callable[[Mapping[str, Any]], bool] = lambda answers: True


QUESTIONS: tuple[Question, ...] = (
    Question("distro_name", "Distro name: "),
    Question("base", f"Base ({', '.join(Distribution.values())}): ", parse_choice(Distribution)),
    Question("version", "Version: "),
    Question("init_system", f"Init system ({', '.join(InitSystem.values())}): ", parse_choice(InitSystem)),
    Question("bootloader", f"Bootloader ({', '.join(Bootloader.values())}): ", parse_choice(Bootloader)),
    Question("uefi_support", "UEFI support? (y/n): ", parse_boolean),
    Question("bios_support", "BIOS support? (y/n): ", parse_boolean),
    Question(
        "atomic",
        "Atomic distro? (y/n): ",
        parse_boolean,
        when=lambda answers: Distribution(answers["base"]).supports_atomic(),
    ),
    Question("packages", "Packages to install (comma-separated): ", parse_list, allow_empty=True),
    Question("packages_to_remove", "Packages to remove (comma-separated): ", parse_list, allow_empty=True),
)


class Prompter:
    def __init__(self, input: TextIO = sys.stdin, output: TextIO = sys.stdout) -> None:
        self.input = input
        self.output = output

    def say(self, text: str) -> None:
        self.output.write(f"{text}\n")
        self.output.flush()

    def ask(self, text: str) -> str:
        self.output.write(f"{Style.yellow}{text}{Style.reset}")
        self.output.flush()

        line = self.input.readline()
        if not line:
            die("Input ended before all questions were answered", exception=ValidationFailure)

        return line.strip()

    def interview(self, questions: Sequence[Question] = QUESTIONS) -> dict[str, Any]:
        """Ask every applicable question in turn. Answering 'back' returns to the previous question."""
        answers: dict[str, Any] = {}
        asked: list[int] = []
        i = 0

        while i < len(questions):
            q = questions[i]

            if not q.when(answers):
                answers.pop(q.key, None)
                i += 1
                continue

            answer = self.ask(q.text)

            if answer == "back":
                if asked:
                    i = asked.pop()
                    answers.pop(questions[i].key, None)
                continue

            if not answer and not q.allow_empty:
                self.say("An answer is required.")
                continue

            try:
                answers[q.key] = q.parse(answer)
            except ValidationFailure as e:
                self.say(f"{e}{f' ({e.hint})' if e.hint else ''}")
                continue

            asked.append(i)
            i += 1

        return answers


def prompt_profile(prompter: Prompter) -> Profile:
    prompter.say(f"{Style.blue}Interactive Build Mode{Style.reset}")
    prompter.say("Answer the questions to describe your image. Type 'back' to go back.")

    return profile_from_dict({**prompter.interview(), "format": "iso"}, source="interactive profile")
