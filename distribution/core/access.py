# MIT License
# Copyright (c) 2025 Hashborn

"""
Owner / pause gate collaborator.
"""

import logging
from typing import Optional, Protocol, runtime_checkable
from protocol.types.common import ErrorCode
from protocol.crypto.addresses import is_valid_address
from ..storage.db import StorageDB
from .errors import AuthorizationError, ConfigurationError

logger = logging.getLogger(__name__)


@runtime_checkable
class AccessControl(Protocol):
    def is_owner(self, caller: Optional[str]) -> bool: ...

    def is_paused(self) -> bool: ...

    def pause(self, caller: Optional[str]) -> None: ...

    def unpause(self, caller: Optional[str]) -> None: ...


class OwnerGate:
    """Single-owner gate with a persisted pause flag."""

    def __init__(self, owner: str, db: Optional[StorageDB] = None):
        if not is_valid_address(owner):
            raise ConfigurationError(f"Invalid owner address: {owner}")
        self.owner = owner
        self.db = db
        self._paused = False
        if db is not None:
            self._paused = db.get_state("gate:paused") == "1"

    def is_owner(self, caller: Optional[str]) -> bool:
        return caller is not None and caller == self.owner

    def is_paused(self) -> bool:
        return self._paused

    def _require_owner(self, caller: Optional[str]):
        if not self.is_owner(caller):
            raise AuthorizationError(ErrorCode.UNAUTHORIZED_CALLER, f"{caller} is not the owner")

    def _set_paused(self, paused: bool):
        if self.db is not None:
            self.db.set_state("gate:paused", "1" if paused else "0")
        self._paused = paused

    def pause(self, caller: Optional[str]):
        self._require_owner(caller)
        self._set_paused(True)
        logger.info("Claims paused")

    def unpause(self, caller: Optional[str]):
        self._require_owner(caller)
        self._set_paused(False)
        logger.info("Claims unpaused")
