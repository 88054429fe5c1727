from typing import NamedTuple, Optional
from urllib.parse import parse_qs, quote, urlencode, urlsplit

from constants import PUBLIC_BASE_URL


class InviteTarget(NamedTuple):
    room_id: Optional[str]
    token: Optional[str]


def build_invite_link(game_slug: str, room_id: str, token: Optional[str] = None, base_url: str = PUBLIC_BASE_URL) -> str:
    # e.g. https://example.com/play/chess?room=7hd92f
    params = {"room": room_id}
    if token:
        params["invite"] = token
    return f"{base_url.rstrip('/')}/play/{quote(game_slug)}?{urlencode(params)}"


def parse_invite_link(link_token: str) -> InviteTarget:
    """
    Accepts a full invite link, a bare query string, or a plain token.

    A plain value without `?`, `=` or `/` could be either an invite token or a
    room id; it is returned as a token and the caller decides.
    """
    link_token = (link_token or "").strip()
    if not link_token:
        return InviteTarget(None, None)

    if "?" in link_token or "=" in link_token or "/" in link_token:
        query = urlsplit(link_token).query if "?" in link_token or "://" in link_token else link_token
        params = parse_qs(query)
        room_id = params.get("room", [None])[0]
        token = params.get("invite", [None])[0]
        return InviteTarget(room_id, token)

    return InviteTarget(None, link_token)
