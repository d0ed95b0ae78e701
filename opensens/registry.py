"""Connector registry.

Populated once at startup by explicit registration, then frozen. Selecting
connectors for a request applies the safe-mode default: a connector that
requires opt-in only runs when the caller names it.
"""

from typing import Dict, Iterable, List, Optional, Tuple

from .connectors import (
    AcledConnector,
    Connector,
    GdeltConnector,
    MastodonConnector,
    RedditConnector,
    ReliefWebConnector,
    XTwitterConnector,
)
from .core.logger import get_logger

logger = get_logger(__name__)


class RegistryError(RuntimeError):
    """Programming error: duplicate id or registration after freeze."""


class ConnectorRegistry:
    def __init__(self):
        self._connectors: Dict[str, Connector] = {}
        self._frozen = False

    def register(self, connector: Connector) -> Connector:
        if self._frozen:
            raise RegistryError(f"registry is frozen; cannot register {connector.id}")
        if connector.id in self._connectors:
            raise RegistryError(f"duplicate connector id: {connector.id}")
        self._connectors[connector.id] = connector
        return connector

    def freeze(self) -> "ConnectorRegistry":
        self._frozen = True
        logger.debug("connector_registry_frozen", connectors=self.ids())
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, connector_id: str) -> Optional[Connector]:
        return self._connectors.get(connector_id)

    def ids(self) -> List[str]:
        return list(self._connectors)

    def all(self) -> List[Connector]:
        return list(self._connectors.values())

    def select(self, enabled_ids: Optional[Iterable[str]] = None) -> Tuple[List[Connector], Dict[str, str]]:
        """
        Connectors to invoke for one request, plus skip reasons.

        enabled_ids=None selects every connector that does not require
        opt-in. Otherwise exactly the listed ids are selected; ids that are
        not registered come back in the skip map.
        """
        if enabled_ids is None:
            return [c for c in self._connectors.values() if not c.meta.requires_opt_in], {}

        selected: List[Connector] = []
        skipped: Dict[str, str] = {}
        for cid in dict.fromkeys(enabled_ids):
            connector = self._connectors.get(cid)
            if connector is None:
                skipped[cid] = "unknown connector"
            else:
                selected.append(connector)
        return selected, skipped

    def __contains__(self, connector_id: str) -> bool:
        return connector_id in self._connectors

    def __len__(self) -> int:
        return len(self._connectors)


def default_registry() -> ConnectorRegistry:
    """Registry with every built-in connector, frozen."""
    registry = ConnectorRegistry()
    for connector in (
        GdeltConnector(),
        ReliefWebConnector(),
        MastodonConnector(),
        RedditConnector(),
        XTwitterConnector(),
        AcledConnector(),
    ):
        registry.register(connector)
    return registry.freeze()
