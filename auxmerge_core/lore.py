"""
Lore Retrieval for the Auxiliary Generator

Lore books are JSON files of keyword-tagged entries. Entries carrying the
configured keyword in their primary or secondary keys are handed to the
auxiliary prompt as world context.

Author: auxmerge contributors | 2026-10-19
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol

from .config import lore_entry_key

logger = logging.getLogger(__name__)


@dataclass
class LoreEntry:
    """
    Single lore entry.

    Attributes:
        uid: Entry identifier, unique within its book
        keys: Primary trigger keys
        secondary_keys: Secondary trigger keys
        content: Text handed to the generator
        comment: Human-readable title
        disabled: Entry is switched off for the primary model
    """
    uid: str
    keys: List[str] = field(default_factory=list)
    secondary_keys: List[str] = field(default_factory=list)
    content: str = ""
    comment: str = ""
    disabled: bool = False

    def matches_keyword(self, keyword: str) -> bool:
        """True if any primary or secondary key contains keyword (case-insensitive)."""
        needle = keyword.lower()
        return any(needle in k.lower() for k in self.keys + self.secondary_keys)

    def has_key(self, keyword: str) -> bool:
        needle = keyword.lower()
        return any(k.lower() == needle for k in self.keys)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uid": self.uid,
            "key": list(self.keys),
            "keysecondary": list(self.secondary_keys),
            "content": self.content,
            "comment": self.comment,
            "disable": self.disabled,
        }

    @classmethod
    def from_dict(cls, uid: str, data: Dict[str, Any]) -> "LoreEntry":
        return cls(
            uid=str(data.get("uid", uid)),
            keys=list(data.get("key") or []),
            secondary_keys=list(data.get("keysecondary") or []),
            content=data.get("content") or "",
            comment=data.get("comment") or "",
            disabled=bool(data.get("disable", False)),
        )


@dataclass
class LoreBook:
    """A named collection of lore entries keyed by uid."""
    name: str
    entries: Dict[str, LoreEntry] = field(default_factory=dict)

    def get_entry(self, uid: str) -> Optional[LoreEntry]:
        return self.entries.get(str(uid))

    def to_dict(self) -> Dict[str, Any]:
        return {"entries": {uid: e.to_dict() for uid, e in self.entries.items()}}

    @classmethod
    def from_dict(cls, name: str, data: Dict[str, Any]) -> "LoreBook":
        raw_entries = data.get("entries") or {}
        if isinstance(raw_entries, list):
            raw_entries = {str(e.get("uid", i)): e for i, e in enumerate(raw_entries)}
        entries = {str(uid): LoreEntry.from_dict(str(uid), e) for uid, e in raw_entries.items()}
        return cls(name=name, entries=entries)


@dataclass
class BoundEntry:
    """A lore entry listed together with the book that holds it."""
    book_name: str
    entry: LoreEntry

    @property
    def key(self) -> str:
        return lore_entry_key(self.book_name, self.entry.uid)


class LoreLibrary:
    """
    Directory of lore books (<name>.json), with an in-memory cache.
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)
        self._cache: Dict[str, LoreBook] = {}

    def _path(self, name: str) -> Path:
        return self.directory / f"{name}.json"

    @property
    def names(self) -> List[str]:
        if not self.directory.exists():
            return []
        return sorted(p.stem for p in self.directory.glob("*.json"))

    def exists(self, name: str) -> bool:
        return name in self._cache or self._path(name).exists()

    def load(self, name: str) -> Optional[LoreBook]:
        """Load a book, from cache when possible. Returns None if it does not exist."""
        if name in self._cache:
            return self._cache[name]

        path = self._path(name)
        if not path.exists():
            return None

        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        book = LoreBook.from_dict(name, data)
        self._cache[name] = book
        return book

    def save_book(self, book: LoreBook) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(book.name)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(book.to_dict(), f, indent=2, ensure_ascii=False)
        self._cache[book.name] = book
        logger.debug(f"Saved lore book: {book.name}")
        return path

    def invalidate(self, name: Optional[str] = None) -> None:
        if name is None:
            self._cache.clear()
        else:
            self._cache.pop(name, None)

    def resolve_bound(self, names: Iterable[str]) -> List[str]:
        """Keep only existing books, first occurrence order, no duplicates."""
        bound: List[str] = []
        for name in names:
            if name and name not in bound and self.exists(name):
                bound.append(name)
        return bound

    def bound_entries(self, books: Iterable[str]) -> List[BoundEntry]:
        """List every entry of the bound books. Unreadable books are logged and skipped."""
        result: List[BoundEntry] = []
        for name in self.resolve_bound(books):
            try:
                book = self.load(name)
            except (OSError, ValueError) as e:
                logger.error(f"Error loading entries from '{name}': {e}")
                continue
            if book is None:
                continue
            result.extend(BoundEntry(name, entry) for entry in book.entries.values())
        return result

    def modify_entry(self, book_name: str, uid: str, keyword: Optional[str], disable: bool) -> bool:
        """
        Tag an entry with keyword and/or disable it.

        Returns:
            False if the book or entry could not be found or written
        """
        try:
            book = self.load(book_name)
            if book is None:
                logger.error(f"Lore book not found: {book_name}")
                return False

            entry = book.get_entry(uid)
            if entry is None:
                logger.error(f"Entry not found: {lore_entry_key(book_name, uid)}")
                return False

            modified = False
            if keyword and not entry.has_key(keyword):
                entry.keys.append(keyword)
                modified = True

            if disable and not entry.disabled:
                entry.disabled = True
                modified = True

            if modified:
                self.save_book(book)
                logger.info(f"Modified entry: {lore_entry_key(book_name, uid)}")
            return True
        except (OSError, ValueError) as e:
            logger.error(f"Error modifying entry {lore_entry_key(book_name, uid)}: {e}")
            return False

    def apply_entry_modifications(
        self,
        selected_keys: Iterable[str],
        keyword: Optional[str],
        disable: bool,
    ) -> Dict[str, int]:
        """Apply modify_entry to every "book::uid" key. Malformed keys are skipped."""
        results = {"success": 0, "failed": 0}
        for entry_key in selected_keys:
            book_name, _, uid = entry_key.partition("::")
            if not book_name or not uid:
                continue
            if self.modify_entry(book_name, uid, keyword, disable):
                results["success"] += 1
            else:
                results["failed"] += 1
        return results


def substitute_macros(text: str, macros: Dict[str, str]) -> str:
    """Replace {{name}} occurrences. Macro names match case-insensitively."""
    if not macros:
        return text
    lowered = {k.lower(): v for k, v in macros.items()}
    out: List[str] = []
    pos = 0
    while True:
        start = text.find("{{", pos)
        if start == -1:
            break
        end = text.find("}}", start + 2)
        if end == -1:
            break
        name = text[start + 2:end].strip().lower()
        if name in lowered:
            out.append(text[pos:start])
            out.append(lowered[name])
            pos = end + 2
        else:
            # unknown name: keep the braces and rescan from just after them
            out.append(text[pos:start + 2])
            pos = start + 2
    out.append(text[pos:])
    return "".join(out)


class LoreRetriever(Protocol):
    """
    Protocol for context retrieval implementations.

    Failures must degrade to an empty list rather than propagate.
    """

    async def retrieve(self, books: List[str], keyword: Optional[str] = None,
                       macros: Optional[Dict[str, str]] = None) -> List[str]:
        ...


class KeywordLoreRetriever:
    """
    Keyword-filtered lore retrieval.

    An entry is returned when one of its primary or secondary keys contains the
    keyword and its content is non-empty. Disabled entries are still returned:
    disabling hides them from the primary model only.
    """

    def __init__(self, library: LoreLibrary, keyword: str = "", macros: Optional[Dict[str, str]] = None):
        self.library = library
        self.keyword = keyword
        self.macros = dict(macros or {})

    def _collect(self, books: List[str], keyword: str, macros: Dict[str, str]) -> List[str]:
        bound = self.library.resolve_bound(books)
        if not bound:
            logger.info("No bound lore books for current character/chat")
            return []

        entries: List[str] = []
        needle = keyword.lower()
        for name in bound:
            book = self.library.load(name)
            if book is None:
                continue
            for entry in book.entries.values():
                if entry.content and entry.matches_keyword(needle):
                    entries.append(substitute_macros(entry.content, macros))

        logger.info(f"Found {len(entries)} lore entries with keyword '{keyword}' from {len(bound)} bound book(s)")
        return entries

    async def retrieve(self, books: List[str], keyword: Optional[str] = None,
                       macros: Optional[Dict[str, str]] = None) -> List[str]:
        keyword = self.keyword if keyword is None else keyword
        if not keyword:
            return []

        merged_macros = dict(self.macros)
        merged_macros.update(macros or {})

        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self._collect, list(books), keyword, merged_macros)
        except Exception as e:
            logger.error(f"Error retrieving lore: {e}")
            return []
