"""
UpstreamClient: aiohttp transport to the ERP WebAPI.

- Export / Service calls are read-only and go through the ResponseCache
- Import / Operation calls mutate and invalidate their resource family
- Every request carries CompanyCode / DepartmentCode
- HTTP and transport failures are mapped to UpstreamError with a status or a
  transport code so the classifier can label them

The client does not retry; retry and backoff belong to the executor.
"""

import asyncio
import base64
import json
from typing import Any, Dict, Optional

import aiohttp

from .cache import ResponseCache, is_miss
from .config import get_settings
from .errors import UpstreamError
from .logging_setup import logger

JSON_FORMAT = 1


class UpstreamClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        cache: Optional[ResponseCache] = None,
        company_code: Optional[str] = None,
        department_code: Optional[str] = None,
        timeout_s: Optional[float] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        cfg = get_settings()
        self.base_url = (base_url or cfg.UPSTREAM_BASE_URL).rstrip("/")
        self.username = username if username is not None else cfg.UPSTREAM_USER
        self.password = password if password is not None else cfg.UPSTREAM_PASSWORD
        self.company_code = company_code or cfg.UPSTREAM_COMPANY_CODE
        self.department_code = department_code or cfg.UPSTREAM_DEPARTMENT_CODE
        self.timeout_s = float(timeout_s or cfg.UPSTREAM_TIMEOUT_SECONDS)
        self.cache = cache
        self.session = session
        self._owns_session = session is None

    async def __aenter__(self):
        self._get_session()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self.session is not None and not self.session.closed:
            await self.session.close()
            self.session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout_s))
            self._owns_session = True
        return self.session

    def _headers(self) -> Dict[str, str]:
        token = base64.b64encode(f"{self.username}:{self.password}".encode("utf-8")).decode("ascii")
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Authorization": f"Basic {token}",
        }

    def _context(self, company_code: Optional[str], department_code: Optional[str]) -> Dict[str, Any]:
        return {
            "Format": JSON_FORMAT,
            "CompanyCode": company_code or self.company_code,
            "DepartmentCode": department_code or self.department_code,
        }

    # ------------------------------------------------------------------
    # transport
    # ------------------------------------------------------------------

    async def _post(self, controller: str, method: str, body: Dict[str, Any]) -> Dict[str, Any]:
        where = f"{controller}/{method}"
        url = f"{self.base_url}/{where}"
        session = self._get_session()
        logger.debug("upstream POST %s", url)
        try:
            async with session.post(url, json=body, headers=self._headers()) as resp:
                status = resp.status
                try:
                    data = await resp.json(content_type=None)
                except (aiohttp.ContentTypeError, ValueError):
                    data = None
        except asyncio.TimeoutError as e:
            raise UpstreamError(f"upstream request timeout: {where}", code="ETIMEDOUT") from e
        except aiohttp.ClientConnectorDNSError as e:
            raise UpstreamError(f"cannot resolve upstream host for {where}: {e}", code="ENOTFOUND") from e
        except aiohttp.ClientConnectorError as e:
            raise UpstreamError(f"cannot connect to upstream server: connection refused ({where})",
                                code="ECONNREFUSED") from e
        except aiohttp.ServerDisconnectedError as e:
            raise UpstreamError(f"upstream closed the connection: {where}", code="ECONNRESET") from e
        except aiohttp.ClientError as e:
            raise UpstreamError(f"upstream network error ({where}): {e}") from e
        return self._check(status, data, where)

    @staticmethod
    def _check(status: int, data: Any, where: str) -> Dict[str, Any]:
        body_message = data.get("ErrorMessage") if isinstance(data, dict) else None
        if status == 401:
            raise UpstreamError("upstream authentication failed: invalid credentials", status=401)
        if status == 403:
            raise UpstreamError(f"upstream authorization failed: forbidden for {where}", status=403)
        if status == 404:
            raise UpstreamError(f"upstream endpoint not found: {where}", status=404)
        if status == 429:
            raise UpstreamError(f"upstream rate limited: too many requests ({where})", status=429)
        if status >= 500:
            raise UpstreamError(f"upstream server error {status} ({where})" +
                                (f": {body_message}" if body_message else ""), status=status)
        if status >= 400:
            raise UpstreamError(f"upstream error ({where}): {body_message or f'HTTP {status}'}", status=status)
        if not isinstance(data, dict):
            raise UpstreamError(f"upstream returned a non-JSON body for {where}", status=status)
        if data.get("Success") is False:
            raise UpstreamError(f"upstream error ({where}): {body_message or 'request failed'}", status=status)
        return data

    # ------------------------------------------------------------------
    # read
    # ------------------------------------------------------------------

    async def _cached_post(self, kind: str, family: str, controller: str, method: str, body: Dict[str, Any],
                           cache_ttl: Optional[int]) -> Dict[str, Any]:
        operation = f"{controller}/{method}"
        if self.cache is not None:
            hit = await self.cache.get(kind, family, operation, body)
            if not is_miss(hit):
                return hit
        data = await self._post(controller, method, body)
        if self.cache is not None:
            await self.cache.set(kind, family, operation, body, data, ttl=cache_ttl)
        return data

    async def export(
        self,
        controller: str,
        method: str,
        family: Optional[str] = None,
        export_filter: Optional[str] = None,
        skip: Optional[int] = None,
        take: Optional[int] = None,
        sort_field: Optional[str] = None,
        sort_order: Optional[str] = None,
        company_code: Optional[str] = None,
        department_code: Optional[str] = None,
        cache_ttl: Optional[int] = None,
    ) -> Dict[str, Any]:
        body = self._context(company_code, department_code)
        optional = {
            "ExportFilter": export_filter,
            "Skip": skip,
            "Take": take,
            "SortField": sort_field,
            "SortOrder": sort_order,
        }
        body.update({k: v for k, v in optional.items() if v is not None})
        return await self._cached_post("export", family or controller, controller, method, body, cache_ttl)

    async def service(
        self,
        controller: str,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        family: Optional[str] = None,
        company_code: Optional[str] = None,
        department_code: Optional[str] = None,
        cache_ttl: Optional[int] = None,
    ) -> Dict[str, Any]:
        body = dict(params or {})
        body.update(self._context(company_code, department_code))
        return await self._cached_post("service", family or controller, controller, method, body, cache_ttl)

    # ------------------------------------------------------------------
    # write
    # ------------------------------------------------------------------

    async def _invalidate(self, family: str) -> None:
        if self.cache is not None:
            await self.cache.invalidate_family(family)

    async def import_data(
        self,
        controller: str,
        method: str,
        data: Any,
        family: Optional[str] = None,
        validate_only: bool = False,
        update_existing: bool = False,
        ignore_warnings: bool = False,
        company_code: Optional[str] = None,
        department_code: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Send records as base64-encoded JSON in ``BinaryContent``."""
        records = data if isinstance(data, list) else [data]
        encoded = base64.b64encode(json.dumps(records, default=str).encode("utf-8")).decode("ascii")
        body = self._context(company_code, department_code)
        body.update({
            "BinaryContent": encoded,
            "ValidateOnly": validate_only,
            "UpdateExisting": update_existing,
            "IgnoreWarnings": ignore_warnings,
        })
        result = await self._post(controller, method, body)
        if not validate_only:
            await self._invalidate(family or controller)
        return result

    async def operation(
        self,
        controller: str,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        family: Optional[str] = None,
        company_code: Optional[str] = None,
        department_code: Optional[str] = None,
    ) -> Dict[str, Any]:
        body = dict(params or {})
        body.update(self._context(company_code, department_code))
        result = await self._post(controller, method, body)
        await self._invalidate(family or controller)
        return result
