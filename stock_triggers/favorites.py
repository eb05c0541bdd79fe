from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Set, Union

log = logging.getLogger("favorites")


class FavoritesStore:
    """File-backed set of favorite symbols, capped at ``max_favorites``."""

    def __init__(self, path: Union[str, Path], max_favorites: int = 3) -> None:
        self._path = Path(path)
        self.max_favorites = int(max_favorites)

    @property
    def path(self) -> Path:
        return self._path

    def get(self) -> Set[str]:
        if not self._path.exists():
            return set()
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except json.JSONDecodeError as e:
            raise ValueError(f"Corrupt favorites file {self._path}: {e}") from e
        symbols = payload.get("symbols") if isinstance(payload, dict) else None
        if not isinstance(symbols, list):
            raise ValueError(f"Corrupt favorites file {self._path}: missing 'symbols' list")
        return {str(s).strip().upper() for s in symbols if str(s).strip()}

    def _save(self, symbols: Set[str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("w", encoding="utf-8") as handle:
            json.dump({"symbols": sorted(symbols)}, handle, indent=2)

    def add(self, symbol: str) -> bool:
        """Returns False when the store is full and ``symbol`` is not already in it."""
        sym = symbol.strip().upper()
        if not sym:
            raise ValueError("symbol must not be empty")
        current = self.get()
        if sym in current:
            return True
        if len(current) >= self.max_favorites:
            log.info("favorites_full symbol=%s max=%d", sym, self.max_favorites)
            return False
        current.add(sym)
        self._save(current)
        return True

    def remove(self, symbol: str) -> None:
        current = self.get()
        current.discard(symbol.strip().upper())
        self._save(current)

    def contains(self, symbol: str) -> bool:
        return symbol.strip().upper() in self.get()
