"""Split member command strings into argument vectors.

Quoting rules:
    - whitespace outside quotes separates tokens
    - ``'...'`` is literal; no escape processing inside
    - ``"..."`` groups whitespace; ``\\`` escapes the next character
    - ``\\`` outside quotes also escapes the next character
    - empty tokens (``''``, ``""``, a lone trailing ``\\``) are dropped

An unterminated quote is reported separately from an empty command.
"""

from __future__ import annotations


class CommandSyntaxError(ValueError):
    """A member command string could not be tokenized."""


class EmptyCommandError(CommandSyntaxError):
    """The command string contains no tokens."""


class UnterminatedQuoteError(CommandSyntaxError):
    """A single or double quote was left open at end of input."""


def split_command(command: str) -> list[str]:
    """Return the argument vector for *command*.

    Raises:
        UnterminatedQuoteError: If a quote is still open at end of input.
        EmptyCommandError: If no non-empty token remains.
    """
    tokens: list[str] = []
    current: list[str] = []
    in_single = False
    in_double = False
    escape_next = False

    for ch in command or "":
        if escape_next:
            current.append(ch)
            escape_next = False
            continue
        if ch == "\\" and not in_single:
            escape_next = True
            continue
        if ch == "'" and not in_double:
            in_single = not in_single
            continue
        if ch == '"' and not in_single:
            in_double = not in_double
            continue
        if ch.isspace() and not in_single and not in_double:
            if current:
                tokens.append("".join(current))
            current = []
            continue
        current.append(ch)

    if in_single or in_double:
        quote = "'" if in_single else '"'
        raise UnterminatedQuoteError(f"Unterminated {quote} quote in command: {command!r}")
    if current:
        tokens.append("".join(current))
    if not tokens:
        raise EmptyCommandError("Empty command")
    return tokens
