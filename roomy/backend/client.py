"""
관리형 백엔드 HTTP 클라이언트

테이블 조회/변경(PostgREST), RPC, 인증, 객체 스토리지 호출을 담당합니다.
모든 실패는 roomy.backend.errors 에서 ErrorKind 로 분류된 예외로 변환됩니다.
"""

import time
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from roomy.core.logging import get_logger, log_backend_call
from roomy.backend.errors import error_from_response, error_from_transport

logger = get_logger(__name__)

REST_PREFIX = "/rest/v1"
AUTH_PREFIX = "/auth/v1"
STORAGE_PREFIX = "/storage/v1"

SINGLE_OBJECT = "application/vnd.pgrst.object+json"


def _encode_value(value: Any) -> str:
    """PostgREST 필터 값 인코딩"""
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


class TableQuery:
    """테이블 하나에 대한 조회/변경 요청 빌더"""

    def __init__(self, client: "BackendClient", table: str):
        self._client = client
        self._table = table
        self._columns = "*"
        self._filters: List[tuple] = []
        self._order: Optional[str] = None
        self._limit: Optional[int] = None

    def select(self, columns: str = "*") -> "TableQuery":
        self._columns = columns
        return self

    def eq(self, column: str, value: Any) -> "TableQuery":
        self._filters.append((column, f"eq.{_encode_value(value)}"))
        return self

    def gte(self, column: str, value: Any) -> "TableQuery":
        self._filters.append((column, f"gte.{_encode_value(value)}"))
        return self

    def order(self, column: str, desc: bool = False) -> "TableQuery":
        self._order = f"{column}.{'desc' if desc else 'asc'}"
        return self

    def limit(self, count: int) -> "TableQuery":
        self._limit = count
        return self

    @property
    def path(self) -> str:
        return f"{REST_PREFIX}/{self._table}"

    def _filter_params(self) -> List[tuple]:
        return list(self._filters)

    def _read_params(self) -> List[tuple]:
        params = [("select", self._columns)] + self._filter_params()
        if self._order:
            params.append(("order", self._order))
        if self._limit is not None:
            params.append(("limit", str(self._limit)))
        return params

    # -------------------------------------------------------------------------
    # 조회
    # -------------------------------------------------------------------------

    async def fetch(self) -> List[Dict[str, Any]]:
        """조건에 맞는 모든 행 조회"""
        response = await self._client.request("GET", self.path, params=self._read_params())
        return response.json()

    async def fetch_one(self) -> Dict[str, Any]:
        """정확히 한 행 조회 (없으면 not_found)"""
        response = await self._client.request(
            "GET",
            self.path,
            params=self._read_params(),
            headers={"Accept": SINGLE_OBJECT},
        )
        return response.json()

    async def first(self) -> Optional[Dict[str, Any]]:
        """첫 번째 행 조회 (없으면 None)"""
        self._limit = 1
        rows = await self.fetch()
        return rows[0] if rows else None

    # -------------------------------------------------------------------------
    # 변경
    # -------------------------------------------------------------------------

    async def insert(self, values: Any) -> List[Dict[str, Any]]:
        response = await self._client.request(
            "POST",
            self.path,
            json=values,
            headers={"Prefer": "return=representation"},
        )
        return response.json()

    async def upsert(self, values: Any, on_conflict: Optional[str] = None) -> List[Dict[str, Any]]:
        params = [("on_conflict", on_conflict)] if on_conflict else None
        response = await self._client.request(
            "POST",
            self.path,
            params=params,
            json=values,
            headers={"Prefer": "resolution=merge-duplicates,return=representation"},
        )
        return response.json()

    async def update(self, values: Dict[str, Any]) -> List[Dict[str, Any]]:
        response = await self._client.request(
            "PATCH",
            self.path,
            params=self._filter_params(),
            json=values,
            headers={"Prefer": "return=representation"},
        )
        return response.json()

    async def delete(self) -> List[Dict[str, Any]]:
        response = await self._client.request(
            "DELETE",
            self.path,
            params=self._filter_params(),
            headers={"Prefer": "return=representation"},
        )
        return response.json()


class BackendClient:
    """관리형 백엔드 비동기 클라이언트"""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.access_token: Optional[str] = None
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
        )

    def set_access_token(self, token: Optional[str]):
        """로그인 세션의 액세스 토큰 설정 (None 이면 anon 키 사용)"""
        self.access_token = token

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token or self.api_key}",
        }
        if extra:
            headers.update(extra)
        return headers

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Any = None,
        json: Any = None,
        content: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """백엔드 호출 (실패 시 분류된 예외 발생)"""
        start_time = time.time()

        try:
            response = await self._http.request(
                method,
                path,
                params=params,
                json=json,
                content=content,
                headers=self._headers(headers),
            )
        except httpx.TransportError as e:
            logger.warning(f"Backend {method} {path} failed: {type(e).__name__}: {e}")
            raise error_from_transport(e) from e

        duration_ms = (time.time() - start_time) * 1000
        log_backend_call(
            logger,
            method=method,
            resource=path,
            status_code=response.status_code,
            duration_ms=duration_ms,
        )

        if response.is_error:
            raise error_from_response(response)

        return response

    # -------------------------------------------------------------------------
    # Tables & RPC
    # -------------------------------------------------------------------------

    def table(self, name: str) -> TableQuery:
        return TableQuery(self, name)

    async def rpc(self, name: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """데이터베이스 함수 호출"""
        response = await self.request("POST", f"{REST_PREFIX}/rpc/{name}", json=params or {})
        if not response.content:
            return None
        return response.json()

    # -------------------------------------------------------------------------
    # Auth
    # -------------------------------------------------------------------------

    async def sign_in_anonymously(self) -> Dict[str, Any]:
        """익명 로그인 (세션: access_token, refresh_token, user)"""
        response = await self.request("POST", f"{AUTH_PREFIX}/signup", json={"data": {}})
        return response.json()

    async def refresh_session(self, refresh_token: str) -> Dict[str, Any]:
        """리프레시 토큰으로 새 세션 발급"""
        response = await self.request(
            "POST",
            f"{AUTH_PREFIX}/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": refresh_token},
        )
        return response.json()

    async def get_user(self) -> Dict[str, Any]:
        """현재 액세스 토큰의 사용자 정보 조회"""
        response = await self.request("GET", f"{AUTH_PREFIX}/user")
        return response.json()

    async def sign_out(self):
        """현재 세션 로그아웃"""
        await self.request("POST", f"{AUTH_PREFIX}/logout")

    # -------------------------------------------------------------------------
    # Storage
    # -------------------------------------------------------------------------

    async def upload(self, bucket: str, path: str, content: bytes, content_type: str) -> str:
        """객체 스토리지 업로드 후 저장된 키 반환"""
        response = await self.request(
            "POST",
            f"{STORAGE_PREFIX}/object/{bucket}/{quote(path)}",
            content=content,
            headers={"Content-Type": content_type, "x-upsert": "false"},
        )
        payload = response.json() if response.content else {}
        return payload.get("Key", f"{bucket}/{path}")

    def public_url(self, bucket: str, path: str) -> str:
        """공개 버킷 객체의 URL"""
        return f"{self.base_url}{STORAGE_PREFIX}/object/public/{bucket}/{quote(path)}"

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def ping(self) -> bool:
        """백엔드 연결 상태 확인"""
        try:
            await self.request("GET", f"{AUTH_PREFIX}/health")
            return True
        except Exception as e:
            logger.error(f"Backend health check failed: {e}")
            return False

    async def close(self):
        await self._http.aclose()
        logger.info("Backend client closed")
