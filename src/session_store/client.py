"""Client context supplied by the host for each request cycle.

Stores never read request globals.  The host passes the remote address
and User-Agent explicitly so that match-IP / match-UA binding is a pure
function of the values given here.

Classes
-------
- ClientContext  — immutable (ip, user_agent) pair
"""
from __future__ import annotations

from dataclasses import dataclass

from session_store.fingerprint import make_digest


@dataclass(frozen=True)
class ClientContext:
    """Remote client attributes used to bind a record to its client.

    Parameters
    ----------
    ip:
        Client network address as reported by the host.  May be empty.
    user_agent:
        Client User-Agent header as reported by the host.  May be empty.
    """

    ip: str = ""
    user_agent: str = ""

    def binding(self, match_ip: bool, match_ua: bool) -> str:
        """Return the raw ``":<ip>:<user_agent>"`` text for the enabled flags."""
        raw = ""
        if match_ip:
            raw += f":{self.ip}"
        if match_ua:
            raw += f":{self.user_agent}"
        return raw

    def key_suffix(self, match_ip: bool, match_ua: bool) -> str:
        """Return the storage key suffix for the enabled match flags.

        The suffix is empty when neither flag is enabled, otherwise a
        fixed-length digest of :meth:`binding`.
        """
        raw = self.binding(match_ip, match_ua)
        return make_digest(raw) if raw else ""
