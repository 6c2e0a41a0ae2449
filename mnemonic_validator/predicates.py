from __future__ import annotations

from typing import Callable

from mnemonic import Mnemonic


Predicate = Callable[[str], bool]

VALID_WORD_COUNTS = (12, 15, 18, 21, 24)


class Bip39Predicate:
    """BIP39 phrase check: known words, allowed length, valid checksum."""

    def __init__(self, language: str = "english") -> None:
        self.language = language
        self._mnemo = Mnemonic(language)

    def __call__(self, text: str) -> bool:
        words = text.split()
        if len(words) not in VALID_WORD_COUNTS:
            return False
        return bool(self._mnemo.check(" ".join(words)))

    def __repr__(self) -> str:
        return f"Bip39Predicate(language={self.language!r})"


def available_languages() -> list[str]:
    return sorted(Mnemonic.list_languages())
