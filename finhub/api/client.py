"""
Authenticated HTTP client for the upstream REST API
"""
from typing import Any, Callable, Dict, Iterable, List, MutableMapping, Optional, Tuple
import threading
import time
import logging

import requests

from finhub.core.config import settings
from finhub.core.exceptions import (
    ApiError, AuthenticationError, NotFoundError, RemoteConflictError
)

logger = logging.getLogger(__name__)

MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})

# Endpoints that must never trigger the refresh-and-retry path
AUTH_ENDPOINTS = frozenset({"/auth/login", "/auth/refresh", "/auth/register"})


# ==================== AUTH CONTEXT ====================

class AuthContext:
    """
    Tokens for the upstream API.

    Owned by the request that created it; persisted explicitly with save()
    so nothing else writes the session behind the client's back.
    """

    SESSION_KEY = "finhub_auth"

    def __init__(self, access_token: Optional[str] = None, refresh_token: Optional[str] = None,
                 csrf_token: Optional[str] = None, user: Optional[dict] = None):
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.csrf_token = csrf_token
        self.user = user or {}

    @classmethod
    def load(cls, store: MutableMapping) -> "AuthContext":
        data = store.get(cls.SESSION_KEY) or {}
        return cls(
            access_token=data.get("access_token"),
            refresh_token=data.get("refresh_token"),
            csrf_token=data.get("csrf_token"),
            user=data.get("user"),
        )

    def save(self, store: MutableMapping) -> None:
        if not self.is_authenticated and not self.csrf_token:
            store.pop(self.SESSION_KEY, None)
            return
        store[self.SESSION_KEY] = {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "csrf_token": self.csrf_token,
            "user": self.user,
        }

    def clear(self) -> None:
        self.access_token = None
        self.refresh_token = None
        self.csrf_token = None
        self.user = {}

    def set_tokens(self, access_token: Optional[str], refresh_token: Optional[str] = None) -> None:
        self.access_token = access_token
        if refresh_token is not None:
            self.refresh_token = refresh_token

    @property
    def is_authenticated(self) -> bool:
        return bool(self.access_token)

    @property
    def cache_scope(self) -> str:
        return str(self.user.get("id") or self.refresh_token or "anonymous")


# ==================== INTERCEPTORS ====================

class BearerAuth:
    def __init__(self, auth: AuthContext):
        self.auth = auth

    def __call__(self, method: str, headers: Dict[str, str]) -> None:
        if self.auth.access_token:
            headers["Authorization"] = f"Bearer {self.auth.access_token}"


class CsrfHeader:
    """Attach X-CSRF-Token to mutating requests, fetching a token on first use"""

    def __init__(self, auth: AuthContext, fetch_token: Callable[[], Optional[str]]):
        self.auth = auth
        self.fetch_token = fetch_token

    def __call__(self, method: str, headers: Dict[str, str]) -> None:
        if method not in MUTATING_METHODS:
            return
        if not self.auth.csrf_token:
            self.auth.csrf_token = self.fetch_token()
        if self.auth.csrf_token:
            headers["X-CSRF-Token"] = self.auth.csrf_token


# ==================== RESPONSE CACHE ====================

class ResponseCache:
    """Short-lived GET cache, partitioned per user"""

    def __init__(self, ttl_seconds: Optional[int] = None, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl_seconds if ttl_seconds is not None else settings.REVENUE_CACHE_SECONDS
        self._clock = clock
        self._entries: Dict[Tuple[str, str, str], Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(scope: str, path: str, params: Optional[dict]) -> Tuple[str, str, str]:
        query = "&".join(f"{k}={v}" for k, v in sorted((params or {}).items()))
        return scope, path, query

    def get(self, scope: str, path: str, params: Optional[dict] = None) -> Optional[Any]:
        key = self._key(scope, path, params)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, value = entry
            if self._clock() - stored_at > self.ttl:
                del self._entries[key]
                return None
            return value

    def set(self, scope: str, path: str, params: Optional[dict], value: Any) -> None:
        with self._lock:
            now = self._clock()
            self._purge_expired_locked(now)
            self._entries[self._key(scope, path, params)] = (now, value)

    def _purge_expired_locked(self, now: float) -> None:
        for key in [k for k, (stored_at, _) in self._entries.items() if now - stored_at > self.ttl]:
            del self._entries[key]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def invalidate(self, scope: str, *paths: str) -> int:
        """Drop entries whose path starts with any of paths; returns how many went"""
        with self._lock:
            stale = [key for key in self._entries if key[0] == scope and key[1].startswith(paths)]
            for key in stale:
                del self._entries[key]
            return len(stale)

    def invalidate_revenue(self, scope: str) -> int:
        with self._lock:
            stale = [key for key in self._entries if key[0] == scope and "/revenue" in key[1]]
            for key in stale:
                del self._entries[key]
            return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


def is_cacheable(path: str) -> bool:
    return path.startswith("/revenue") or path.endswith("/revenue")


response_cache = ResponseCache()


# ==================== HELPERS ====================

def error_message(payload: Any, fallback: str) -> str:
    """Pick the user-facing message out of an error body"""
    if isinstance(payload, dict):
        for key in ("message", "error", "detail"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value
            if isinstance(value, list) and value:
                first = value[0]
                return first.get("msg", str(first)) if isinstance(first, dict) else str(first)
    return fallback


def unwrap(payload: Any) -> Any:
    """Strip the {success, data, message} envelope"""
    if isinstance(payload, dict) and "success" in payload:
        data = payload.get("data")
        return data if data is not None else {}
    return payload


# ==================== CLIENT ====================

class ApiClient:
    def __init__(self, base_url: Optional[str] = None, auth: Optional[AuthContext] = None,
                 session: Optional[requests.Session] = None, timeout: Optional[float] = None,
                 cache: Optional[ResponseCache] = None):
        self.base_url = (base_url or settings.API_URL).rstrip("/")
        self.auth = auth or AuthContext()
        self.session = session or requests.Session()
        self.timeout = timeout if timeout is not None else settings.API_TIMEOUT_SECONDS
        self.cache = cache if cache is not None else response_cache
        self.interceptors: List[Callable[[str, Dict[str, str]], None]] = [
            BearerAuth(self.auth),
            CsrfHeader(self.auth, self._fetch_csrf_token),
        ]

    @property
    def root_url(self) -> str:
        if self.base_url.endswith("/v1"):
            return self.base_url[:-3]
        return self.base_url

    def url_for(self, endpoint: str) -> str:
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    # ---- transport ----

    def _fetch_csrf_token(self) -> Optional[str]:
        try:
            response = self.session.get(f"{self.root_url}/csrf-token", timeout=self.timeout)
            token = (response.json() or {}).get("csrfToken") if response.content else None
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning("Failed to fetch CSRF token: %s", e)
            return None
        if not token:
            logger.warning("CSRF token endpoint returned no token (status %s)", response.status_code)
        return token

    def _send(self, method: str, endpoint: str, json: Any = None, params: Optional[dict] = None,
              files: Any = None, data: Any = None) -> requests.Response:
        headers = {"Accept": "application/json"}
        for interceptor in self.interceptors:
            interceptor(method, headers)
        try:
            return self.session.request(
                method, self.url_for(endpoint), headers=headers, json=json, params=params,
                files=files, data=data, timeout=self.timeout,
            )
        except requests.exceptions.ConnectionError:
            logger.warning("%s %s: backend connection error", method, endpoint)
            raise ApiError("Backend connection error")
        except requests.exceptions.Timeout:
            logger.warning("%s %s: backend timed out", method, endpoint)
            raise ApiError("Backend request timed out")
        except requests.exceptions.RequestException as e:
            logger.warning("%s %s failed: %s", method, endpoint, e)
            raise ApiError(str(e))

    def _refresh(self) -> bool:
        """Exchange the refresh token for a new access token, once"""
        logger.info("Access token rejected; attempting refresh")
        headers = {"Accept": "application/json"}
        CsrfHeader(self.auth, self._fetch_csrf_token)("POST", headers)
        try:
            response = self.session.post(
                self.url_for("/auth/refresh"), json={"refreshToken": self.auth.refresh_token},
                headers=headers, timeout=self.timeout,
            )
            body = unwrap(response.json()) if response.content else {}
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning("Token refresh failed: %s", e)
            return False
        access_token = body.get("accessToken") if isinstance(body, dict) else None
        if not response.ok or not access_token:
            logger.info("Token refresh rejected (status %s)", response.status_code)
            return False
        self.auth.set_tokens(access_token, body.get("refreshToken"))
        if isinstance(body.get("user"), dict):
            self.auth.user = body["user"]
        logger.info("Token refresh succeeded")
        return True

    @staticmethod
    def _decode(response: requests.Response) -> Any:
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {"message": response.text[:200]}

    @staticmethod
    def _raise_for(method: str, endpoint: str, status_code: int, payload: Any) -> None:
        message = error_message(payload, f"Request failed with status {status_code}")
        logger.warning("%s %s -> %s: %s", method, endpoint, status_code, message)
        body = payload if isinstance(payload, dict) else {}
        if status_code == 401:
            # Bad credentials keep the server's wording; an expired session gets the stock message
            raise AuthenticationError(message if endpoint in AUTH_ENDPOINTS else None, status_code, body)
        if status_code == 404:
            raise NotFoundError(message, status_code, body)
        if status_code == 409:
            raise RemoteConflictError(message, status_code, body)
        raise ApiError(message, status_code, body)

    # ---- public ----

    def request(self, method: str, endpoint: str, json: Any = None, params: Optional[dict] = None,
                files: Any = None, data: Any = None) -> Any:
        method = method.upper()
        scope = self.auth.cache_scope
        cacheable = method == "GET" and is_cacheable(endpoint)
        if cacheable:
            cached = self.cache.get(scope, endpoint, params)
            if cached is not None:
                return cached

        response = self._send(method, endpoint, json=json, params=params, files=files, data=data)

        if (response.status_code == 401 and endpoint not in AUTH_ENDPOINTS
                and self.auth.refresh_token):
            if not self._refresh():
                self.auth.clear()
                raise AuthenticationError(status_code=401)
            response = self._send(method, endpoint, json=json, params=params, files=files, data=data)

        payload = self._decode(response)
        if response.status_code == 401 and endpoint not in AUTH_ENDPOINTS:
            self.auth.clear()
        if not response.ok:
            self._raise_for(method, endpoint, response.status_code, payload)

        result = unwrap(payload)
        if cacheable:
            self.cache.set(scope, endpoint, params, result)
        elif method in MUTATING_METHODS:
            resource = "/" + endpoint.strip("/").split("/")[0]
            self.cache.invalidate(scope, resource)
            self.cache.invalidate_revenue(scope)
        return result

    def get(self, endpoint: str, params: Optional[dict] = None) -> Any:
        return self.request("GET", endpoint, params=params)

    def post(self, endpoint: str, json: Any = None, files: Any = None, data: Any = None) -> Any:
        return self.request("POST", endpoint, json=json, files=files, data=data)

    def put(self, endpoint: str, json: Any = None) -> Any:
        return self.request("PUT", endpoint, json=json)

    def delete(self, endpoint: str) -> Any:
        return self.request("DELETE", endpoint)

    def invalidate(self, paths: Iterable[str]) -> None:
        paths = tuple(paths)
        if paths:
            self.cache.invalidate(self.auth.cache_scope, *paths)
