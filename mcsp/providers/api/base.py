from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError
from requests import Response, Session

M = TypeVar("M", bound=BaseModel)


class ApiError(Exception):
    def __init__(self, url: str, message: str) -> None:
        super().__init__(f"{url}: {message}")
        self.url = url


class JsonApi:
    """Small base for typed JSON APIs. 404 maps to None, other failures raise ApiError"""
    BASE_URL = ""

    def __init__(self, session: Session | None = None, base_url: str | None = None,
                 timeout: float = 30) -> None:
        self.session = session or Session()
        self.base_url = (base_url or self.BASE_URL).removesuffix("/")
        self.timeout = timeout

    def url(self, path: str) -> str:
        if path.startswith(("https://", "http://")):
            return path
        return self.base_url + "/" + path.removeprefix("/")

    def _request(self, path: str) -> tuple[str, Response | None]:
        url = self.url(path)
        r = self.session.get(url, timeout=self.timeout)
        if r.status_code == 404:
            return url, None
        if not r.ok:
            raise ApiError(url, f"Response returned non-OK code ({r.status_code})")
        return url, r

    def _json(self, url: str, r: Response) -> Any:
        try:
            return r.json()
        except ValueError as e:
            raise ApiError(url, "Response is not valid JSON") from e

    def _get(self, path: str, m: type[M]) -> M | None:
        url, r = self._request(path)
        if r is None:
            return None
        try:
            return m.model_validate(self._json(url, r))
        except ValidationError as e:
            raise ApiError(url, f"Failed to validate response to {m.__name__}") from e

    def _get_list(self, path: str, m: type[M]) -> list[M] | None:
        url, r = self._request(path)
        if r is None:
            return None
        data = self._json(url, r)
        if not isinstance(data, list):
            raise ApiError(url, f"Expected json list but got {type(data).__name__}")
        ret = []
        for i, v in enumerate(data):
            try:
                ret.append(m.model_validate(v))
            except ValidationError as e:
                raise ApiError(url, f"Failed to parse item {i}") from e
        return ret

    def _get_text(self, path: str) -> str | None:
        _, r = self._request(path)
        return None if r is None else r.text
