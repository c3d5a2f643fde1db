# rpgforge/runtime/service.py
from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Mapping
from typing import Any, Protocol

from rpgforge.content.models import ResolvedRuleset
from rpgforge.content.pack_catalog import PackCatalog
from rpgforge.core.errors import NotFoundError
from rpgforge.core.logging import logContext
from rpgforge.runtime.actions import DispatchResult, dispatchWithResult
from rpgforge.runtime.character import ActionEnvelope, CharacterDocument, SeedInterpreter, createCharacter
from rpgforge.runtime.dice import DiceRoller, defaultDiceRoller
from rpgforge.runtime.effects import recomputeDerived
from rpgforge.runtime.migrations import migrateCharacter

logger = logging.getLogger(__name__)

__all__ = [
    "CharacterNotFoundError",
    "RulesetNotFoundError",
    "CharacterStore",
    "InMemoryStore",
    "RuntimeService",
]



class CharacterNotFoundError(NotFoundError):
    def __init__(self, characterId: str) -> None:
        super().__init__(f"Character not found: {characterId}")
        self.characterId = characterId



class RulesetNotFoundError(NotFoundError):
    def __init__(self, rulesetId: str) -> None:
        super().__init__(f"Ruleset not found: {rulesetId}")
        self.rulesetId = rulesetId



class CharacterStore(Protocol):
    """Load/save collaborator for character documents, stored as plain dicts."""
    def load(self, characterId: str) -> dict[str, Any] | None: ...
    def save(self, characterId: str, data: dict[str, Any]) -> None: ...
    def delete(self, characterId: str) -> bool: ...
    def ids(self) -> list[str]: ...



class InMemoryStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._docs: dict[str, dict[str, Any]] = {}

    def load(self, characterId: str) -> dict[str, Any] | None:
        with self._lock:
            data = self._docs.get(characterId)
            return dict(data) if data is not None else None

    def save(self, characterId: str, data: dict[str, Any]) -> None:
        with self._lock:
            self._docs[characterId] = dict(data)

    def delete(self, characterId: str) -> bool:
        with self._lock:
            return self._docs.pop(characterId, None) is not None

    def ids(self) -> list[str]:
        with self._lock:
            return sorted(self._docs)



class RuntimeService:
    """
    Ties the catalog, activated rulesets and a character store together.

    Dispatches against the same character are serialized; different characters
    proceed independently.
    """

    def __init__(
        self,
        catalog: PackCatalog,
        store: CharacterStore | None = None,
        *,
        dice: DiceRoller | None = None,
        seedInterpreters: Iterable[SeedInterpreter] = (),
    ) -> None:
        self.catalog = catalog
        self.store: CharacterStore = store if store is not None else InMemoryStore()
        self.dice = dice if dice is not None else defaultDiceRoller()
        self.seedInterpreters = tuple(seedInterpreters)
        self._rulesets: dict[str, ResolvedRuleset] = {}
        self._lock = threading.Lock()
        self._characterLocks: dict[str, threading.Lock] = {}

    def _characterLock(self, characterId: str) -> threading.Lock:
        with self._lock:
            return self._characterLocks.setdefault(characterId, threading.Lock())

    def _dropCharacterLock(self, characterId: str) -> None:
        with self._lock:
            self._characterLocks.pop(characterId, None)

    # ----- Rulesets -----

    def activate(self, rootIds: Iterable[str]) -> ResolvedRuleset:
        ruleset = self.catalog.activate(rootIds)
        with self._lock:
            self._rulesets[ruleset.id] = ruleset
        return ruleset

    def ruleset(self, rulesetId: str) -> ResolvedRuleset:
        with self._lock:
            ruleset = self._rulesets.get(rulesetId)
        if ruleset is None:
            raise RulesetNotFoundError(rulesetId)
        return ruleset

    def rulesets(self) -> list[str]:
        with self._lock:
            return sorted(self._rulesets)

    # ----- Characters -----

    def _load(self, characterId: str) -> CharacterDocument:
        raw = self.store.load(characterId)
        if raw is None:
            raise CharacterNotFoundError(characterId)
        return migrateCharacter(raw)

    def _save(self, doc: CharacterDocument) -> None:
        self.store.save(doc.meta.id, doc.toDict())

    def createCharacter(self, rulesetId: str, seed: Mapping[str, Any] | None = None) -> CharacterDocument:
        ruleset = self.ruleset(rulesetId)
        with logContext(rulesetId=rulesetId):
            doc = createCharacter(
                ruleset,
                seed,
                rulesetId=rulesetId,
                seedInterpreters=self.seedInterpreters,
                dice=self.dice,
            )
            self._save(doc)
            logger.info("Created character %s (%s)", doc.meta.id, doc.meta.name)
        return doc

    def openCharacter(self, characterId: str) -> CharacterDocument:
        """Load, migrate and recompute a stored character."""
        with logContext(characterId=characterId):
            doc = self._load(characterId)
            ruleset = self.ruleset(doc.meta.rulesetId)
            with logContext(rulesetId=ruleset.id):
                return recomputeDerived(doc, ruleset, dice=self.dice)

    def dispatchWithResult(self, characterId: str, envelope: ActionEnvelope | Mapping[str, Any]) -> DispatchResult:
        with self._characterLock(characterId), logContext(characterId=characterId):
            try:
                current = self._load(characterId)
            except CharacterNotFoundError:
                self._dropCharacterLock(characterId)
                raise
            ruleset = self.ruleset(current.meta.rulesetId)
            actionId = envelope.id if isinstance(envelope, ActionEnvelope) else envelope.get("id")
            with logContext(rulesetId=ruleset.id, actionId=actionId):
                result = dispatchWithResult(ruleset, current, envelope, characterId=characterId, dice=self.dice)
                self._save(result.document)
                logger.debug("Saved %s after %s", characterId, actionId)
            return result

    def dispatch(self, characterId: str, envelope: ActionEnvelope | Mapping[str, Any]) -> CharacterDocument:
        return self.dispatchWithResult(characterId, envelope).document

    def listCharacters(self) -> list[str]:
        return self.store.ids()

    def deleteCharacter(self, characterId: str) -> bool:
        with self._characterLock(characterId):
            removed = self.store.delete(characterId)
        self._dropCharacterLock(characterId)
        if removed:
            logger.info("Deleted character %s", characterId)
        return removed
