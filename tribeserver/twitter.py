"""Identity confirmation through a verification code posted as a tweet."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any

import requests

API_URL = "https://api.twitter.com/2"
USER_AGENT = "tribeserver"
VERIFICATION_MESSAGE = "Sphinx Verification"

VERIFICATION_PREFIXES = (
    "Sphinx Verification: ",
    "Sphinx verification: ",
    "sphinx verification: ",
    "Sphinx verify: ",
    "Sphinx Verify: ",
)

# Used when the prefix is buried in the middle of a tweet.
SPLIT_PREFIXES = (
    "Verification:",
    "verification:",
    "verify:",
    "Verify:",
)


class TwitterError(Exception):
    """Raised when a user or verification tweet cannot be found."""


def extract_verification_code(texts: Iterable[str]) -> str | None:
    """The verification code found in the first matching tweet text, if any."""
    for text in texts:
        for prefix in VERIFICATION_PREFIXES:
            if prefix not in text:
                continue
            if text.startswith(prefix):
                return text[len(prefix) :]
            words = text.split(" ")
            for i, word in enumerate(words):
                if word in SPLIT_PREFIXES and i + 1 < len(words):
                    return words[i + 1]
    return None


def _get_data(url: str, token: str) -> Any:
    if not token:
        raise TwitterError("no twitter token")
    headers = {"User-Agent": USER_AGENT, "authorization": "Bearer " + token}
    try:
        response = requests.get(url, headers=headers, timeout=30)
    except requests.RequestException as exc:
        raise TwitterError(str(exc)) from exc
    try:
        payload = response.json()
    except ValueError:
        payload = None
    data = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(data, list) or not data:
        raise TwitterError("no data")
    return data


def lookup_user_id(username: str, token: str) -> str:
    """The account id for a username."""
    url = (
        f"{API_URL}/users/by?usernames={username}"
        "&user.fields=created_at,description&expansions=pinned_tweet_id"
    )
    first = _get_data(url, token)[0]
    user_id = first.get("id", "") if isinstance(first, dict) else ""
    if not user_id:
        raise TwitterError("no ID")
    return user_id


def lookup_user_tweet(user_id: str, token: str) -> str:
    """The verification code from the recent tweets of an account."""
    url = (
        f"{API_URL}/users/{user_id}/tweets"
        "?max_results=100&tweet.fields=created_at&expansions=author_id"
    )
    data = _get_data(url, token)
    texts = (t.get("text", "") for t in data if isinstance(t, dict))
    code = extract_verification_code(texts)
    if code is None:
        raise TwitterError("did not find the tweet")
    return code


def confirm_identity_tweet(
    username: str, token: str, verifier: Callable[[str, str], str]
) -> str:
    """The public key proven by the verification tweet of a username.

    ``verifier`` checks a signed code against a message and returns the pubkey.
    """
    user_id = lookup_user_id(username, token)
    code = lookup_user_tweet(user_id, token)
    return verifier(code, VERIFICATION_MESSAGE)