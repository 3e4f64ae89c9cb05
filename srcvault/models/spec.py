"""Input value parsing into repository specifications."""

from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict, Field

from srcvault.errors import SpecParseError

DEFAULT_REF = "master"

_NUMERIC = re.compile(r"^[+-]?\d+$")


class RepositorySpec(BaseModel):
    """A repository reference parsed from a single input value.

    Re-derived on every fetch and never persisted.
    """

    model_config = ConfigDict(frozen=True)

    uri: str = Field(..., description="Remote repository URI or path")
    ref: str = Field(default=DEFAULT_REF, description="Branch, tag or commit id")
    deep_clone: bool = Field(default=False, description="Keep history in the checkout")
    timeout: int | None = Field(default=None, description="Positional timeout override")
    options: dict[str, str] = Field(default_factory=dict)

    def to_value(self) -> str:
        """Serialize back to the input value grammar."""
        parts = [self.uri, self.ref]
        if self.timeout is not None:
            parts.append(str(self.timeout))
        elif self.deep_clone:
            parts.append("deepClone")
        parts.extend(f"{key}={value}" for key, value in self.options.items())
        return " ".join(parts)


def is_numeric(value: str) -> bool:
    """Check if a string is an optionally signed integer literal."""
    return bool(_NUMERIC.match(value))


def parse_input_value(value: str) -> RepositorySpec:
    """Parse ``<uri> [<ref>] [deepClone|timeout] [key=value ...]``.

    Any token containing ``=`` starts the options tail. A purely numeric
    third token is a timeout override rather than the deep clone flag.
    """
    parts = value.split()
    if not parts:
        raise SpecParseError("Empty input value")

    uri = parts[0]
    if "=" in uri:
        raise SpecParseError(f"Input value must start with a URI, got '{uri}'")

    positional: list[str] = []
    rest = parts[1:]
    while rest and "=" not in rest[0] and len(positional) < 2:
        positional.append(rest.pop(0))

    ref = positional[0] if positional else DEFAULT_REF
    deep_clone = False
    timeout: int | None = None
    if len(positional) > 1:
        flag = positional[1]
        if is_numeric(flag):
            timeout = int(flag)
        else:
            deep_clone = True

    options: dict[str, str] = {}
    for token in rest:
        if "=" not in token:
            raise SpecParseError(f"Expected key=value option in '{value}', got '{token}'")
        key, option_value = token.split("=", 1)
        if not key:
            raise SpecParseError(f"Option without a name in '{value}'")
        options[key] = option_value

    return RepositorySpec(
        uri=uri,
        ref=ref,
        deep_clone=deep_clone,
        timeout=timeout,
        options=options,
    )
