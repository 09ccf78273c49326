"""Front matter splitting and parsing.

``---`` opens a YAML block and ``+++`` opens a TOML block; the same
delimiter closes it. A file that does not start with a delimiter has no
front matter.
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from sitekit.content.models import FrontMatter, FrontMatterFormat
from sitekit.errors import FrontMatterError

_DELIMITERS = {
    "---": FrontMatterFormat.YAML,
    "+++": FrontMatterFormat.TOML,
}


def split_front_matter(
    text: str, path: Path | str = "<string>"
) -> tuple[FrontMatterFormat, str, str]:
    """Split a content file into (format, raw front matter, body).

    Raises:
        FrontMatterError: If a block is opened but never closed.
    """
    text = text.removeprefix("\ufeff")
    lines = text.splitlines(keepends=True)
    if not lines:
        return FrontMatterFormat.NONE, "", ""

    opener = lines[0].strip()
    fmt = _DELIMITERS.get(opener)
    if fmt is None:
        return FrontMatterFormat.NONE, "", text

    for i in range(1, len(lines)):
        if lines[i].rstrip() == opener:
            raw = "".join(lines[1:i])
            body = "".join(lines[i + 1 :])
            return fmt, raw, body.lstrip("\n")

    raise FrontMatterError(path, f"missing closing {opener!r} delimiter")


def _load_raw(fmt: FrontMatterFormat, raw: str, path: Path | str) -> dict[str, Any]:
    if fmt is FrontMatterFormat.NONE or not raw.strip():
        return {}

    if fmt is FrontMatterFormat.TOML:
        try:
            return tomllib.loads(raw)
        except tomllib.TOMLDecodeError as exc:
            raise FrontMatterError(path, str(exc)) from exc

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise FrontMatterError(path, str(exc)) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise FrontMatterError(path, f"expected a mapping, got {type(data).__name__}")
    return data


def parse_front_matter(text: str, path: Path | str = "<string>") -> tuple[FrontMatter, str]:
    """Parse a content file into its front matter and Markdown body.

    Raises:
        FrontMatterError: On syntax errors, non-mapping blocks, or field
            values of the wrong type.
    """
    fmt, raw, body = split_front_matter(text, path)
    data = _load_raw(fmt, raw, path)
    try:
        return FrontMatter.from_mapping(data), body
    except (ValidationError, ValueError) as exc:
        raise FrontMatterError(path, str(exc)) from exc
