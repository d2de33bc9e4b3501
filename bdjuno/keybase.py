"""Lookup of validator avatars through the Keybase APIs."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

import requests

API_BASE_URL = "https://keybase.io/_/api/1.0"


class KeybaseError(Exception):
    """Raised when the Keybase APIs cannot be queried or report an error."""


@dataclass(frozen=True)
class QueryStatus:
    """The status of a request."""

    code: int
    name: str
    err_desc: str


@dataclass(frozen=True)
class Picture:
    """A single picture."""

    url: str


@dataclass(frozen=True)
class AccountPictures:
    """The pictures of an account."""

    primary: Optional[Picture]


@dataclass(frozen=True)
class AccountDetails:
    """The details of a single account."""

    id: str
    pictures: Optional[AccountPictures]


@dataclass(frozen=True)
class IdentityQueryResponse:
    """The response to an identity query."""

    status: QueryStatus
    objects: tuple[AccountDetails, ...]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "IdentityQueryResponse":
        status = data.get("status") or {}
        objects = []
        for item in data.get("them") or ():
            item = item or {}
            pictures = item.get("pictures")
            account_pictures = None
            if pictures is not None:
                primary = pictures.get("primary")
                account_pictures = AccountPictures(
                    Picture(primary.get("url") or "") if primary is not None else None
                )
            objects.append(AccountDetails(item.get("id") or "", account_pictures))
        return cls(
            QueryStatus(int(status.get("code") or 0), status.get("name") or "", status.get("desc") or ""),
            tuple(objects),
        )


def query_keybase(endpoint: str) -> Mapping[str, Any]:
    """Query the Keybase APIs at endpoint and return the decoded JSON body."""
    try:
        response = requests.get(API_BASE_URL + endpoint, timeout=30)
    except requests.RequestException as err:
        raise KeybaseError(f"error while querying keybase APIs: {err}") from err
    try:
        return json.loads(response.content)
    except ValueError as err:
        raise KeybaseError(f"error while unmarshaling response body: {err}") from err


def get_avatar_url(
    identity: str, query: Callable[[str], Mapping[str, Any]] = query_keybase
) -> str:
    """Return the avatar URL of identity, or "" when there is none."""
    if len(identity) < 16:
        return ""
    endpoint = f"/user/lookup.json?key_suffix={identity}&fields=basics&fields=pictures"
    try:
        response = IdentityQueryResponse.from_dict(query(endpoint))
    except Exception as err:
        raise KeybaseError(f"error while querying keybase: {err}") from err

    if response.status.code != 0:
        raise KeybaseError(f"response code not valid: {response.status.err_desc}")
    if not response.objects:
        return ""
    pictures = response.objects[0].pictures
    if pictures is None or pictures.primary is None or not pictures.primary.url:
        return ""
    return pictures.primary.url