from pathlib import Path

import requests

from radarsync.settings import HTTP_TIMEOUT

USER_AGENT = "radarsync/1.0"


def is_remote(address: str) -> bool:
    return address.startswith("http://") or address.startswith("https://")


def new_session() -> requests.Session:
    session = requests.Session()
    session.headers.update({"User-Agent": USER_AGENT})
    return session


def fetch_bytes(address: str, session: requests.Session | None = None, timeout: float = HTTP_TIMEOUT) -> bytes | None:
    """
    Fetch a catalog or image from a URL or a local path.

    Returns None when the resource does not exist (HTTP 404 / missing file).
    Any other failure raises (requests.RequestException or OSError).
    """
    if is_remote(address):
        getter = session.get if session is not None else requests.get
        resp = getter(address, timeout=timeout)
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return resp.content

    path = Path(address)
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None
