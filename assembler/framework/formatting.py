from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Callable, Iterable

from assembler.framework.errors import FormattingFailure
from assembler.framework.interpolation import ExpressionEvaluator

Transformer = Callable[[bytes, str], bytes]

_LINE_BREAK = re.compile(r"\r\n|\r|\n")

_READ, _WRITE, _EXECUTE = 4, 2, 1


class LineEnding(Enum):
    KEEP = "keep"
    DOS = "dos"
    WINDOWS = "windows"
    UNIX = "unix"
    CRLF = "crlf"
    LF = "lf"

    @classmethod
    def parse(cls, value: str | None) -> "LineEnding":
        if value is None or not str(value).strip():
            return cls.KEEP
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            allowed = ", ".join(member.value for member in cls)
            raise FormattingFailure(
                f"Unsupported line ending: {value!r} (allowed: {allowed})"
            ) from exc

    @property
    def characters(self) -> str | None:
        if self is LineEnding.KEEP:
            return None
        if self in (LineEnding.UNIX, LineEnding.LF):
            return "\n"
        return "\r\n"


def mode_to_int(mode: str | None, logger: logging.Logger | None = None) -> int | None:
    """Parse an octal permission string; `None`/blank means "not set"."""

    if mode is None or not str(mode).strip():
        return None
    try:
        value = int(str(mode).strip(), 8)
    except ValueError as exc:
        raise FormattingFailure(f"Failed to parse mode as an octal number: {mode!r}") from exc
    verify_mode_sanity(value, logger)
    return value


def verify_mode_sanity(mode: int, logger: logging.Logger | None = None) -> bool:
    """Warn about modes that grant a wider class more than a narrower one."""

    problems: list[str] = []
    for access, label in ((_READ, "read"), (_WRITE, "write"), (_EXECUTE, "execute/list")):
        user = mode & (access << 6)
        group = mode & (access << 3)
        world = mode & access
        if not user and group:
            problems.append(f"Group has {label} access, but User does not.")
        if not user and world:
            problems.append(f"World has {label} access, but User does not.")
        if not group and world:
            problems.append(f"World has {label} access, but Group does not.")

    if problems and logger is not None:
        logger.warning(
            "The mode: %s contains nonsensical permissions:\n- %s",
            format(mode, "o"),
            "\n- ".join(problems),
        )
    return not problems


def is_property_file(name: str) -> bool:
    return name.lower().endswith(".properties")


def make_transformer(
    *,
    filtered: bool,
    line_ending: str | None,
    evaluator: ExpressionEvaluator | None,
    encoding: str | None = None,
    non_filtered_extensions: Iterable[str] = (),
) -> Transformer | None:
    """Build a content transformer for filtering and line-ending conversion.

    Returns None when the content passes through unchanged. Files whose
    extension is listed in `non_filtered_extensions` only get their line
    endings converted.
    """

    ending = LineEnding.parse(line_ending)
    if not filtered and ending is LineEnding.KEEP:
        return None
    if filtered and evaluator is None:
        raise FormattingFailure("Filtering requested without an expression evaluator")

    skipped = {ext.lower().lstrip(".") for ext in non_filtered_extensions}

    def _transform(content: bytes, name: str) -> bytes:
        extension = name.rsplit(".", 1)[-1].lower() if "." in name else ""
        apply_filter = filtered and extension not in skipped
        if not apply_filter and ending is LineEnding.KEEP:
            return content

        charset = encoding or ("iso-8859-1" if is_property_file(name) else "utf-8")
        try:
            text = content.decode(charset)
        except UnicodeDecodeError as exc:
            raise FormattingFailure(f"Cannot decode {name or '<content>'} as {charset}: {exc}") from exc
        if apply_filter and evaluator is not None:
            text = evaluator.evaluate(text)
        terminator = ending.characters
        if terminator is not None:
            text = _LINE_BREAK.sub(terminator, text)
        return text.encode(charset)

    return _transform
