"""Reporter and owner identity normalization.

Identities arrive from the environment as either EVM hex addresses or
bech32 addresses (e.g. ``oasis1...``, ``rofl1...``). Normalizing them once at
the boundary keeps authorization lookups exact.
"""

import bech32
from web3 import Web3


def normalize_identity(identity: str) -> str:
    """Normalize an identity string to its canonical form.

    Hex addresses become EIP-55 checksum addresses, bech32 addresses are
    lowercased after their checksum is verified.

    :param identity: Address string as supplied by the caller.
    :returns: Canonical identity string.
    :raises ValueError: If identity is neither a valid hex nor bech32 address.

    .. code-block:: python

        >>> normalize_identity("0x5fbdb2315678afecb367f032d93f642f64180aa3")
        '0x5FbDB2315678afecb367f032d93F642f64180aa3'
    """
    identity = identity.strip()
    if identity.lower().startswith("0x"):
        if not Web3.is_address(identity):
            raise ValueError(f"Invalid hex address: {identity}")
        return Web3.to_checksum_address(identity)

    hrp, data = bech32.bech32_decode(identity)
    if hrp is None or data is None:
        raise ValueError(f"Invalid identity '{identity}': expected 0x or bech32 address")
    return identity.lower()
