"""Pad-table substitution cipher used for encrypted broker arguments.

The broker ships a table of equal-length rows. Encrypting picks two
distinct rows, maps every character found in the first row to the
character at the same position in the second, and brackets the result
with both row indices encoded as ``chr(index + 32)``.
"""

from __future__ import annotations

import json
import logging
import os
import random
from pathlib import Path
from typing import Protocol, Sequence

from ..errors import CipherConfigError

logger = logging.getLogger(__name__)

CIPHER_ENV = "VISTARPC_CIPHER"
CIPHER_FILE_ENV = "VISTARPC_CIPHER_FILE"
INDEX_OFFSET = 32
MIN_ROWS = 3


class CipherProvider(Protocol):
    """Anything that can turn plaintext into broker ciphertext."""

    def encrypt(self, plaintext: str) -> str: ...


def parse_cipher_table(blob: str) -> list[str]:
    """Parse a pad table given as a JSON list or as one row per line."""
    text = (blob or "").strip()
    if not text:
        return []
    if text.startswith("["):
        try:
            loaded = json.loads(text)
        except json.JSONDecodeError as e:
            raise CipherConfigError(f"Invalid JSON cipher table: {e}") from e
        return [str(row).strip() for row in loaded if str(row).strip()]
    return [line.strip() for line in text.splitlines() if line.strip()]


class VistaCipher:
    """Pad-table cipher.

    Args:
        table: Cipher rows. At least three are required so that every left
            row leaves a right row other than itself and row 0.
        rng: Random source for row selection; injectable for tests.
    """

    def __init__(
        self, table: Sequence[str], rng: random.Random | None = None
    ) -> None:
        if len(table) < MIN_ROWS:
            raise CipherConfigError(
                f"Cipher table needs at least {MIN_ROWS} rows, got {len(table)}"
            )
        self._table = list(table)
        self._rng = rng or random.Random()

    @property
    def table(self) -> list[str]:
        return list(self._table)

    @classmethod
    def from_env(cls) -> VistaCipher:
        """Load the pad table from ``VISTARPC_CIPHER_FILE`` or ``VISTARPC_CIPHER``.

        Raises:
            CipherConfigError: If neither variable yields a table.
        """
        path = os.getenv(CIPHER_FILE_ENV)
        if path:
            try:
                rows = parse_cipher_table(Path(path).read_text(encoding="utf-8"))
            except OSError as e:
                raise CipherConfigError(f"Failed to read cipher file: {e}") from e
            if rows:
                logger.debug("Loaded %d cipher rows from %s", len(rows), path)
                return cls(rows)

        rows = parse_cipher_table(os.getenv(CIPHER_ENV, ""))
        if rows:
            return cls(rows)
        raise CipherConfigError(f"{CIPHER_ENV} not configured")

    def encrypt(self, plaintext: str) -> str:
        size = len(self._table)
        left = self._rng.randrange(size)
        # Row 0 is never the right row.
        right = self._rng.choice([i for i in range(1, size) if i != left])
        return (
            chr(left + INDEX_OFFSET)
            + self._translate(plaintext, self._table[left], self._table[right])
            + chr(right + INDEX_OFFSET)
        )

    def decrypt(self, ciphertext: str) -> str:
        if len(ciphertext) < 2:
            raise ValueError("Ciphertext too short")
        left = ord(ciphertext[0]) - INDEX_OFFSET
        right = ord(ciphertext[-1]) - INDEX_OFFSET
        if not (0 <= left < len(self._table) and 0 <= right < len(self._table)):
            raise ValueError("Ciphertext row indices out of range")
        return self._translate(
            ciphertext[1:-1], self._table[right], self._table[left]
        )

    @staticmethod
    def _translate(text: str, source: str, target: str) -> str:
        out = []
        for char in text:
            idx = source.find(char)
            if idx == -1 or idx >= len(target):
                out.append(char)
            else:
                out.append(target[idx])
        return "".join(out)


_provider: CipherProvider | None = None


def set_cipher_provider(provider: CipherProvider | None) -> None:
    """Install the provider used for encrypt-marked arguments.

    ``None`` clears it so the next lookup reloads from the environment.
    """
    global _provider
    _provider = provider


def get_cipher_provider() -> CipherProvider:
    """Return the installed provider, loading :class:`VistaCipher` on first use."""
    global _provider
    if _provider is None:
        _provider = VistaCipher.from_env()
    return _provider
