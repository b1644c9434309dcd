"""
core/resolver.py -- Safe resolution of card image paths from untrusted ids.

A card id such as "02-131_the_prophet" comes straight from the URL. Joining it
onto the image root naively would let "../" sequences or embedded separators
walk out of the root. ImageResolver builds the path and then proves it did
not escape, before the filesystem is ever asked whether the file exists.

Checks, in order (first failure wins):
  1. Shape: non-empty, no NUL byte.
  2. Set prefix: the id must start with two ASCII digits and "-"; the number
     must be a known card set. The set's directory name comes from SET_DIRS,
     never from the id.
  3. Length: normpath(subdir / id + suffix) must be exactly
     len(subdir) + len(id) + len(suffix) + 1 characters long. Any ".."
     collapse, doubled separator or "." segment changes the length.
  4. Depth: the candidate must sit directly in the set directory. A single
     embedded separator ("02-131/x") keeps the length but adds a level.
  5. Prefix: the real path of the candidate must sit under the real path of
     the root (commonpath). This also rejects symlinks pointing outside.
  6. Existence: the candidate must be a regular file.

1-5 raise MalformedIdentifierError (HTTP 400). 6 raises
ResourceNotFoundError (HTTP 404).

Layer rule: core/ is the kernel. Imports only from core/.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path

from core.errors import MalformedIdentifierError, ResourceNotFoundError

logger = logging.getLogger("wotapi.resolver")

# Card set number -> directory name under the image root.
SET_DIRS: dict[int, str] = {
    0: "promo",
    1: "premiere",
    2: "dark_prophecies",
    3: "children_of_the_dragon",
    4: "cycles",
}

# Suffix appended to the card id for each image variant.
VARIANT_SUFFIXES: dict[str, str] = {
    "full": ".jpg",
    "small": "_small.jpg",
}

_SET_PREFIX_RE = re.compile(r"^([0-9]{2})-")


@dataclass(frozen=True)
class ResolvedPath:
    """A file proven to lie inside the image root.

    identifier is the untrusted id that produced the path, kept for audit logs.
    """

    path: Path
    identifier: str
    variant: str = "full"


def set_number_from_identifier(identifier: str) -> int:
    """Return the card set number encoded in the first two characters of a card id.

    Raises MalformedIdentifierError if the id does not start with "NN-".
    """
    match = _SET_PREFIX_RE.match(identifier)
    if match is None:
        raise MalformedIdentifierError(identifier, "set_prefix")
    return int(match.group(1))


class ImageResolver:
    """Turns untrusted card ids into image paths under a fixed root.

    Usage:
        resolver = ImageResolver("/srv/wot/card_images")
        resolved = resolver.resolve("02-131_the_prophet")
        resolved.path   # /srv/wot/card_images/dark_prophecies/02-131_the_prophet.jpg
    """

    def __init__(self, root: str | os.PathLike) -> None:
        # Canonicalise once. All later comparisons are against this string.
        self.root = os.path.realpath(os.fspath(root))

    def resolve(self, identifier: str, variant: str = "full") -> ResolvedPath:
        suffix = VARIANT_SUFFIXES.get(variant)
        if suffix is None:
            raise ValueError(f"Unknown image variant {variant!r}")

        if not identifier or "\x00" in identifier:
            self._reject(identifier, "empty_or_nul")

        set_dir = SET_DIRS.get(set_number_from_identifier(identifier))
        if set_dir is None:
            self._reject(identifier, "unknown_set")

        subdir = os.path.join(self.root, set_dir)
        expected_length = len(subdir) + len(identifier) + len(suffix) + 1
        candidate = os.path.normpath(os.path.join(subdir, identifier + suffix))
        if len(candidate) != expected_length:
            self._reject(identifier, "length_mismatch")
        if os.path.dirname(candidate) != subdir:
            self._reject(identifier, "nested_path")

        try:
            real = os.path.realpath(candidate)
            inside = os.path.commonpath([self.root, real]) == self.root
        except (OSError, ValueError):
            inside = False
        if not inside:
            self._reject(identifier, "outside_root")

        path = Path(candidate)
        if not path.is_file():
            raise ResourceNotFoundError(identifier)

        logger.debug("Resolved card image %r (%s) -> %s", identifier, variant, path)
        return ResolvedPath(path=path, identifier=identifier, variant=variant)

    @staticmethod
    def _reject(identifier: str, reason: str) -> None:
        logger.warning("Rejected card image id %r: %s", identifier, reason)
        raise MalformedIdentifierError(identifier, reason)
