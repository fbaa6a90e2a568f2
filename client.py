import logging
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import requests

import config
from errors import (
    CapacityExceeded,
    DuplicateUsername,
    InternalError,
    InvalidCredential,
    NotFound,
    PhotoCritiqueError,
    RateLimited,
    SessionInvalid,
    StorageQuotaExceeded,
    Unauthenticated,
    UserNotFound,
    ValidationError,
    categorize_error,
)
from service import LOCAL_MODE, SERVER_MODE, PhotoCritiqueService, build_local_service
from validation import parse_analysis_result

logger = logging.getLogger(__name__)

ERRORS_BY_CODE = {
    cls.code: cls
    for cls in (
        ValidationError,
        DuplicateUsername,
        InvalidCredential,
        Unauthenticated,
        SessionInvalid,
        UserNotFound,
        NotFound,
        CapacityExceeded,
        StorageQuotaExceeded,
        RateLimited,
        InternalError,
    )
}


class BaseClient:
    """
    Token and user cache shared by LocalClient and HttpClient.

    A call refused with SESSION_INVALID forgets the token and cached user
    and runs every on_session_invalid callback once before re-raising.
    """

    def __init__(self) -> None:
        self.token: Optional[str] = None
        self.cached_user: Optional[Dict[str, Any]] = None
        self._session_invalid_callbacks: List[Callable[[], None]] = []

    def on_session_invalid(self, callback: Callable[[], None]) -> None:
        self._session_invalid_callbacks.append(callback)

    def is_logged_in(self) -> bool:
        return bool(self.token)

    def clear_token(self) -> None:
        self.token = None
        self.cached_user = None

    def _remember(self, token: str, user: Dict[str, Any]) -> Dict[str, Any]:
        self.token = token
        self.cached_user = user
        return user

    def _session_invalid(self) -> None:
        logger.info("Session replaced by a login elsewhere, clearing credentials")
        self.clear_token()
        for callback in list(self._session_invalid_callbacks):
            callback()

    def _guard(self, func: Callable, *args):
        try:
            return func(*args)
        except SessionInvalid:
            # LocalClient may already have been told through its subscription.
            if self.token:
                self._session_invalid()
            raise

    @staticmethod
    def describe_error(exc: BaseException) -> Tuple[str, str]:
        """Category and user-facing message for a failed call."""
        return categorize_error(exc)

    def verify(self) -> Optional[Dict[str, Any]]:
        """Return the logged-in user, or None (and forget the token) if there is none."""
        if not self.token:
            return None
        try:
            user = self._guard(self._verify)
        except (Unauthenticated, SessionInvalid, UserNotFound):
            self.clear_token()
            return None
        self.cached_user = user
        return user

    def logout(self) -> None:
        try:
            if self.token:
                self._logout()
        except (Unauthenticated, SessionInvalid, UserNotFound):
            pass
        finally:
            self.clear_token()

    def get_user(self) -> Dict[str, Any]:
        return self._guard(self._get_user)

    def update_user(self, info: Dict[str, Any]) -> Dict[str, Any]:
        user = self._guard(self._update_user, info)
        self.cached_user = user
        return user

    def list_history(self) -> List[Dict[str, Any]]:
        return self._guard(self._list_history)

    def get_history(self, record_id: str) -> Dict[str, Any]:
        return self._guard(self._get_history, record_id)

    def add_history(
        self, image_data: str, analysis_image: Optional[str], result: Union[Dict[str, Any], str]
    ) -> Dict[str, Any]:
        """``result`` may be the raw model reply; the JSON object inside it is stored."""
        if isinstance(result, str):
            result = parse_analysis_result(result)
        return self._guard(self._add_history, image_data, analysis_image, result)

    def delete_history(self, record_id: str) -> None:
        self._guard(self._delete_history, record_id)

    def cleanup_history(self) -> int:
        return self._guard(self._cleanup_history)


class LocalClient(BaseClient):
    def __init__(self, service: PhotoCritiqueService):
        super().__init__()
        self.service = service
        service.sessions.subscribe(self._on_token_rejected)

    def _on_token_rejected(self, token: str) -> None:
        if token and token == self.token:
            self._session_invalid()

    def register(self, username: str, password: str) -> Dict[str, Any]:
        return self._remember(*self.service.register(username, password, "local"))

    def login(self, username: str, password: str) -> Dict[str, Any]:
        return self._remember(*self.service.login(username, password, "local"))

    def _verify(self):
        return self.service.verify(self.token)

    def _logout(self):
        self.service.logout(self.token)

    def _get_user(self):
        return self.service.get_user(self.token)

    def _update_user(self, info):
        return self.service.update_user(self.token, info)

    def _list_history(self):
        return [entry.to_public() for entry in self.service.list_history(self.token)]

    def _get_history(self, record_id):
        return self.service.get_history(self.token, record_id).to_public()

    def _add_history(self, image_data, analysis_image, result):
        return self.service.add_history(self.token, image_data, analysis_image, result).to_public()

    def _delete_history(self, record_id):
        self.service.delete_history(self.token, record_id)

    def _cleanup_history(self):
        return self.service.cleanup_history(self.token)


class HttpClient(BaseClient):
    """
    ``session`` defaults to a fresh ``requests.Session``; anything with a
    compatible ``request`` method works.
    """

    def __init__(self, base_url: str = config.API_BASE_URL, session=None, timeout: float = config.HTTP_TIMEOUT):
        super().__init__()
        self.base_url = base_url.rstrip("/")
        self.http = session or requests.Session()
        self.timeout = timeout

    def _request(self, method: str, endpoint: str, payload: Optional[dict] = None) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            response = self.http.request(
                method,
                f"{self.base_url}/api{endpoint}",
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.warning("%s %s failed: %s", method, endpoint, categorize_error(exc)[0])
            raise

        if response.status_code >= 400:
            try:
                data = response.json()
            except ValueError:
                data = {}
            raise self._error(response.status_code, data)
        return response.json()

    @staticmethod
    def _error(status_code: int, data: Dict[str, Any]) -> PhotoCritiqueError:
        message = data.get("error") if isinstance(data, dict) else None
        code = data.get("code") if isinstance(data, dict) else None
        cls = ERRORS_BY_CODE.get(code)
        if cls is None:
            if status_code == 429:
                cls = RateLimited
            elif status_code == 401:
                cls = Unauthenticated
            elif status_code >= 500:
                cls = InternalError
            else:
                cls = ValidationError
        return cls(message=message)

    def register(self, username: str, password: str) -> Dict[str, Any]:
        data = self._request("POST", "/register", {"username": username, "password": password})
        return self._remember(data["token"], data["user"])

    def login(self, username: str, password: str) -> Dict[str, Any]:
        data = self._request("POST", "/login", {"username": username, "password": password})
        return self._remember(data["token"], data["user"])

    def _verify(self):
        return self._request("GET", "/verify")["user"]

    def _logout(self):
        self._request("POST", "/logout")

    def _get_user(self):
        return self._request("GET", "/user")["user"]

    def _update_user(self, info):
        return self._request("PUT", "/user", info)["user"]

    def _list_history(self):
        return self._request("GET", "/history")["records"]

    def _get_history(self, record_id):
        return self._request("GET", f"/history/{record_id}")["record"]

    def _add_history(self, image_data, analysis_image, result):
        payload = {"imageData": image_data, "analysisImage": analysis_image, "result": result}
        return self._request("POST", "/history", payload)["record"]

    def _delete_history(self, record_id):
        self._request("DELETE", f"/history/{record_id}")

    def _cleanup_history(self):
        return self._request("POST", "/history/cleanup")["deleted"]


def open_client(mode: Optional[str] = None, base_url: Optional[str] = None) -> BaseClient:
    """Return the client for the configured storage mode."""
    mode = mode or config.STORAGE_MODE
    if mode == SERVER_MODE:
        return HttpClient(base_url or config.API_BASE_URL)
    if mode == LOCAL_MODE:
        return LocalClient(build_local_service())
    raise ValueError(f"Unknown storage mode: {mode!r}")
