"""Deterministic proxy/session selection for one crawl run."""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, replace
from typing import Sequence

from .config import ProxyEndpoint


_SESSION_PATTERN = re.compile(r"(session-)[A-Za-z0-9_-]+")
SESSION_SUFFIX_LENGTH = 8


@dataclass(frozen=True, slots=True)
class ProxyRotationState:
    """Pointer into the proxy pool plus the number of rotations so far."""

    index: int = 0
    rotations: int = 0


def session_suffix(username: str, rotations: int) -> str:
    digest = hashlib.sha1(f"{username}:{rotations}".encode("utf-8")).hexdigest()
    return digest[:SESSION_SUFFIX_LENGTH]


def with_session(proxy: ProxyEndpoint, rotations: int) -> ProxyEndpoint:
    """Swap a `session-<id>` token in the username for a derived one."""

    if not _SESSION_PATTERN.search(proxy.username):
        return proxy
    suffix = session_suffix(proxy.username, rotations)
    username = _SESSION_PATTERN.sub(lambda match: match.group(1) + suffix, proxy.username, count=1)
    return replace(proxy, username=username)


def next_proxy(
    pages_done: int,
    proxies: Sequence[ProxyEndpoint],
    *,
    stable_session: bool,
    rotate_session: bool,
    rotate_every: int,
    state: ProxyRotationState | None = None,
) -> tuple[ProxyEndpoint | None, ProxyRotationState]:
    """Pick the egress identity for the next fetch.

    A pure function of its inputs. With a stable policy the first pool entry is
    used for the whole run. A rotating policy advances the pointer every
    `rotate_every` successful fetches and, with `rotate_session`, mints a new
    session suffix for each rotation.
    """

    state = state or ProxyRotationState()
    if not proxies:
        return None, state

    if stable_session or rotate_every <= 0:
        return proxies[state.index % len(proxies)], state

    if pages_done > 0 and pages_done % rotate_every == 0:
        state = ProxyRotationState(
            index=(state.index + 1) % len(proxies),
            rotations=state.rotations + 1,
        )

    proxy = proxies[state.index % len(proxies)]
    if rotate_session:
        proxy = with_session(proxy, state.rotations)
    return proxy, state


__all__ = [
    "ProxyRotationState",
    "next_proxy",
    "session_suffix",
    "with_session",
]
