"""
Caller anonymisation.

Turns whatever identifies a caller (session id, credential, network
fingerprint) into a fixed-length opaque hash before it reaches storage.
"""

import hashlib
from typing import Mapping, Optional

HASH_LENGTH = 32
ANONYMOUS_IDENTIFIER = "anonymous"

SESSION_HEADER = "mcp-session-id"
AUTHORIZATION_HEADER = "authorization"
CLIENT_IP_HEADER = "cf-connecting-ip"
USER_AGENT_HEADER = "user-agent"


def hash_user_id(identifier: str) -> str:
    """Return the anonymised hash of a caller identifier.

    SHA-256 over the UTF-8 bytes, hex encoded and truncated to 32
    characters. No salt, so the same identifier hashes identically in
    every process.

    Args:
        identifier: Non-empty caller identifier

    Returns:
        32-character lowercase hex string
    """
    digest = hashlib.sha256(identifier.encode("utf-8")).hexdigest()
    return digest[:HASH_LENGTH]


def extract_user_identifier(
    headers: Mapping[str, str],
    client_host: Optional[str] = None
) -> str:
    """Pick the identifier to hash for an incoming request.

    Priority: session id header, then authorization header, then an
    ``<ip>_<user-agent>`` composite. When none of these is available
    every caller collapses onto the shared anonymous identifier.

    Args:
        headers: Request headers; lookups are case-insensitive when the
            mapping is (as Starlette's is), otherwise use lowercase keys
        client_host: Socket peer address, used when no IP header is set

    Returns:
        Identifier string to feed into ``hash_user_id``
    """
    session_id = headers.get(SESSION_HEADER)
    if session_id:
        return session_id

    authorization = headers.get(AUTHORIZATION_HEADER)
    if authorization:
        return authorization

    ip = headers.get(CLIENT_IP_HEADER) or client_host
    user_agent = headers.get(USER_AGENT_HEADER)
    if ip or user_agent:
        return f"{ip}_{user_agent}"

    return ANONYMOUS_IDENTIFIER
