"""AuthorizationRegistry: Owner-controlled allowlist of reporting sources.

Sources are identified by the caller identity supplied by the execution
environment. A source with no entry is not authorized. The registry also
remembers the order in which sources were first registered, which fixes the
order quotes are folded in during aggregation.

.. code-block:: python

    >>> registry = AuthorizationRegistry(OwnerCapability("owner"))
    >>> registry.authorize("owner", "s1")
    True
    >>> registry.is_authorized("s1")
    True
    >>> registry.is_authorized("s2")
    False
"""

from __future__ import annotations

import logging
from collections.abc import Hashable, Iterator

from .errors import NotAuthorized

logger = logging.getLogger(__name__)


class OwnerCapability:
    """Capability held by a single owner identity.

    :ivar owner: Identity allowed to perform administrative operations.
    """

    def __init__(self, owner: Hashable) -> None:
        self.owner = owner

    def is_owner(self, caller: Hashable) -> bool:
        """Check whether the caller holds the owner capability.

        :param caller: Authenticated caller identity.
        :returns: True if the caller is the owner.
        """
        return caller == self.owner

    def require(self, caller: Hashable, action: str) -> None:
        """Raise unless the caller holds the capability.

        :param caller: Authenticated caller identity.
        :param action: Description of the attempted action for the error message.
        :raises NotAuthorized: If the caller is not the owner.
        """
        if not self.is_owner(caller):
            raise NotAuthorized(f"{caller} is not permitted to {action}")


class AuthorizationRegistry:
    """Maps source identity to an authorized flag.

    :ivar capability: Capability gating authorize/deauthorize.
    """

    def __init__(self, capability: OwnerCapability) -> None:
        self.capability = capability
        # Insertion order of this dict is the registration order.
        self._flags: dict[Hashable, bool] = {}

    def authorize(self, caller: Hashable, source: Hashable) -> bool:
        """Mark a source as authorized.

        Idempotent: authorizing an already authorized source is a no-op.

        :param caller: Identity performing the change.
        :param source: Source identity to authorize.
        :returns: True if the flag changed.
        :raises NotAuthorized: If the caller is not the owner.
        """
        self.capability.require(caller, "change authorization")
        changed = not self._flags.get(source, False)
        self._flags[source] = True
        if changed:
            logger.info(f"Source {source} authorized")
        return changed

    def deauthorize(self, caller: Hashable, source: Hashable) -> bool:
        """Mark a source as not authorized.

        The source keeps its registration position so that re-authorizing it
        later does not reorder aggregation.

        :param caller: Identity performing the change.
        :param source: Source identity to deauthorize.
        :returns: True if the flag changed.
        :raises NotAuthorized: If the caller is not the owner.
        """
        self.capability.require(caller, "change authorization")
        changed = self._flags.get(source, False)
        if source in self._flags:
            self._flags[source] = False
        if changed:
            logger.info(f"Source {source} deauthorized")
        return changed

    def is_authorized(self, source: Hashable) -> bool:
        """Look up a source's flag.

        :param source: Source identity.
        :returns: True if authorized, False otherwise (including unknown sources).
        """
        return self._flags.get(source, False)

    def sources(self) -> Iterator[tuple[Hashable, bool]]:
        """Iterate (source, authorized) pairs in registration order."""
        return iter(list(self._flags.items()))

    def restore(self, entries: list[tuple[Hashable, bool]]) -> None:
        """Replace all flags with previously saved entries.

        :param entries: (source, authorized) pairs in registration order.
        """
        self._flags = {source: bool(flag) for source, flag in entries}
