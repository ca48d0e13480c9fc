"""
Client for the Last.fm 2.0 scrobbling API (also spoken by Libre.fm).

Auth uses auth.getMobileSession with authToken = md5(username + md5(password)),
and every call is signed: parameters (minus 'format'/'callback') sorted by
name, concatenated name+value, secret appended, MD5.
"""

from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import requests

from . import __version__
from .config import Account, ServiceKeys, md5_hex
from .errors import ApiError, AuthError, NetworkError, ScrobbleRejected, ScrobblerError
from .scrobble import ScrobbleRecord

log = logging.getLogger(__name__)

USER_AGENT = f"rockscrobble/{__version__} (+https://www.rockbox.org/wiki/LastFMLog)"

SESSION = requests.Session()
SESSION.headers.update({"User-Agent": USER_AGENT})

SIGNING_SKIP = {"format", "callback", "api_sig"}
REDACTED_KEYS = {"api_sig", "sk", "authtoken"}

ALREADY_SCROBBLED_CODE = "91"
DEFAULT_IGNORED_CODE = "unknown"
DEFAULT_IGNORED_MESSAGE = "Scrobble rejected"


class Service(enum.Enum):
    LASTFM = "lastfm"
    LIBREFM = "librefm"

    @classmethod
    def parse(cls, value: str) -> "Service":
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Unsupported service: {value}") from None

    @property
    def base_url(self) -> str:
        return _BASE_URLS[self]


_BASE_URLS = {
    Service.LASTFM: "https://ws.audioscrobbler.com/2.0/",
    Service.LIBREFM: "https://libre.fm/2.0/",
}

# ---------------------------
# Signing
# ---------------------------

Params = Union[Mapping[str, str], Iterable[Tuple[str, str]]]


def _items(params: Params) -> List[Tuple[str, str]]:
    pairs = params.items() if isinstance(params, Mapping) else params
    return [(str(k), str(v)) for k, v in pairs]


def sign_params(params: Params, api_secret: str) -> str:
    """
    Sort parameters (excluding 'format'/'callback'/'api_sig') by byte-wise
    key, concatenate key+value, append secret, MD5.
    """
    items = [(k, v) for k, v in _items(params) if k not in SIGNING_SKIP]
    items.sort(key=lambda kv: kv[0].encode("utf-8"))
    sig_str = "".join(k + v for k, v in items) + api_secret
    return md5_hex(sig_str)


def signed_form(params: Params, api_secret: str) -> Dict[str, str]:
    """The POST body: params, then api_sig, then format=json."""
    form = dict(_items(params))
    form.pop("api_sig", None)
    form.pop("format", None)
    form["api_sig"] = sign_params(form, api_secret)
    form["format"] = "json"
    return form


def build_auth_token(username: str, password_md5: str) -> str:
    return md5_hex(username + password_md5)


def _redacted(params: Mapping[str, str]) -> Dict[str, str]:
    return {k: v for k, v in params.items() if k.lower() not in REDACTED_KEYS}

# ---------------------------
# Response shapes
# ---------------------------


@dataclass(frozen=True)
class ScrobbleResult:
    accepted: bool
    code: Optional[str] = None
    message: Optional[str] = None


# A matcher returns None when the payload isn't its shape.
Matcher = Callable[[Any], Optional[ScrobbleResult]]


def check_api_error(payload: Any) -> None:
    """Raise ApiError if the payload carries a top-level 'error'."""
    if isinstance(payload, dict) and "error" in payload:
        message = payload.get("message")
        if not isinstance(message, str):
            message = "API error"
        raise ApiError(str(payload["error"]), message)


def _as_count(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isascii() and value.strip().isdigit():
        return int(value)
    return None


def _scrobbles(payload: Any) -> Optional[dict]:
    scrobbles = payload.get("scrobbles") if isinstance(payload, dict) else None
    return scrobbles if isinstance(scrobbles, dict) else None


def _match_no_scrobbles(payload: Any) -> Optional[ScrobbleResult]:
    if _scrobbles(payload) is None:
        return ScrobbleResult(accepted=True)
    return None


def _match_accepted_counts(payload: Any) -> Optional[ScrobbleResult]:
    attr = _scrobbles(payload).get("@attr")
    if not isinstance(attr, dict):
        return None
    accepted = _as_count(attr.get("accepted")) or 0
    ignored = _as_count(attr.get("ignored")) or 0
    if accepted > 0 and ignored == 0:
        return ScrobbleResult(accepted=True)
    return None


def _first_scrobble(value: Any) -> Optional[dict]:
    if isinstance(value, list):
        value = value[0] if value else None
    return value if isinstance(value, dict) else None


def ignored_message_fields(value: Any) -> Tuple[str, str]:
    """(code, message) out of an ignoredMessage in any of its shapes."""
    if isinstance(value, str):
        return DEFAULT_IGNORED_CODE, value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return DEFAULT_IGNORED_CODE, str(value)
    if isinstance(value, dict):
        code = value.get("code")
        text = value.get("#text")
        if isinstance(code, int) and not isinstance(code, bool):
            code = str(code)
        return (
            code if isinstance(code, str) else DEFAULT_IGNORED_CODE,
            text if isinstance(text, str) else DEFAULT_IGNORED_MESSAGE,
        )
    return DEFAULT_IGNORED_CODE, DEFAULT_IGNORED_MESSAGE


def _match_ignored_message(payload: Any) -> Optional[ScrobbleResult]:
    entry = _first_scrobble(_scrobbles(payload).get("scrobble"))
    code, message = ignored_message_fields(entry.get("ignoredMessage") if entry else None)
    if code == ALREADY_SCROBBLED_CODE:
        return ScrobbleResult(accepted=True, code=code, message=message)
    return ScrobbleResult(accepted=False, code=code, message=message)


RESPONSE_MATCHERS: Tuple[Matcher, ...] = (
    _match_no_scrobbles,
    _match_accepted_counts,
    _match_ignored_message,
)


def interpret_scrobble_response(payload: Any) -> ScrobbleResult:
    check_api_error(payload)
    for matcher in RESPONSE_MATCHERS:
        result = matcher(payload)
        if result is not None:
            return result
    # _match_ignored_message always answers
    raise AssertionError("no response matcher applied")


def check_scrobble_response(payload: Any) -> None:
    """Raise ApiError or ScrobbleRejected unless the scrobble went through."""
    result = interpret_scrobble_response(payload)
    if not result.accepted:
        raise ScrobbleRejected(result.code or DEFAULT_IGNORED_CODE, result.message or DEFAULT_IGNORED_MESSAGE)
    if result.code == ALREADY_SCROBBLED_CODE:
        log.debug("Service reports scrobble already submitted: %s", result.message)

# ---------------------------
# Client
# ---------------------------


@dataclass(frozen=True)
class ScrobbleFailure:
    record: ScrobbleRecord
    error: ScrobblerError

    def __str__(self) -> str:
        return f"{self.record.artist} - {self.record.title}: {self.error}"


class ScrobbleClient:
    """One authenticated session against one service for one account.

    Construction does the auth.getMobileSession exchange; AuthError there is
    final for that account.
    """

    def __init__(
        self,
        service: Service,
        keys: ServiceKeys,
        account: Account,
        *,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
        debug_response: bool = False,
    ):
        self.service = service
        self.api_key = keys.api_key
        self.api_secret = keys.api_secret
        self.username = account.username
        self.http = session if session is not None else SESSION
        self.timeout = timeout
        self.debug_response = debug_response
        self.session_key = self._fetch_mobile_session(account)

    def _post(self, params: Params) -> Tuple[requests.Response, Any]:
        form = signed_form(params, self.api_secret)
        url = self.service.base_url
        log.debug("POST %s %s", url, json.dumps(_redacted(form), ensure_ascii=False))
        try:
            resp = self.http.post(url, data=form, timeout=self.timeout)
            text = resp.text
        except requests.RequestException as exc:
            raise NetworkError(f"Request to {url} failed: {exc}") from exc
        try:
            return resp, json.loads(text)
        except ValueError:
            raise ApiError(str(resp.status_code), f"Unparseable response: {text[:200]}") from None

    def _fetch_mobile_session(self, account: Account) -> str:
        params = {
            "method": "auth.getMobileSession",
            "username": account.username,
            "authToken": build_auth_token(account.username, account.password_md5),
            "api_key": self.api_key,
        }
        try:
            _resp, data = self._post(params)
            check_api_error(data)
        except ScrobblerError as exc:
            raise AuthError(f"Authentication failed for {account.username} on {self.service.value}: {exc}") from exc

        session = data.get("session") if isinstance(data, dict) else None
        key = session.get("key") if isinstance(session, dict) else None
        if not isinstance(key, str) or not key:
            raise AuthError(f"Missing session key in response for {account.username} on {self.service.value}")
        log.info("Authenticated %s on %s", account.username, self.service.value)
        return key

    def build_scrobble_params(self, record: ScrobbleRecord) -> Dict[str, str]:
        params: Dict[str, str] = {
            "method": "track.scrobble",
            "artist": record.artist,
            "track": record.title,
            "timestamp": str(record.timestamp),
            "api_key": self.api_key,
            "sk": self.session_key,
        }
        if record.album:
            params["album"] = record.album
        if record.duration > 0:
            params["duration"] = str(record.duration)
        return params

    def scrobble_record(self, record: ScrobbleRecord) -> None:
        resp, data = self._post(self.build_scrobble_params(record))
        if self.debug_response:
            log.info("Scrobble response from %s (HTTP %s): %s", self.service.base_url, resp.status_code, resp.text)
        check_scrobble_response(data)

    def scrobble_records(self, records: Iterable[ScrobbleRecord]) -> List[ScrobbleFailure]:
        """Submit one request per record, in order; failures don't stop the batch."""
        failures: List[ScrobbleFailure] = []
        for record in records:
            try:
                self.scrobble_record(record)
            except (ApiError, ScrobbleRejected, NetworkError) as exc:
                log.warning("Scrobble failed: %s - %s: %s", record.artist, record.title, exc)
                failures.append(ScrobbleFailure(record=record, error=exc))
        return failures
