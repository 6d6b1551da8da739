"""Microsoft Graph client for Intune policy collections."""
from __future__ import annotations

import base64
import threading
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import quote

import msal
import requests

from .config import GraphConfig
from .policy_types import PolicyType


GRAPH_SCOPE = ["https://graph.microsoft.com/.default"]
DEFAULT_GRAPH_BASE_URL = "https://graph.microsoft.com/beta"
REQUEST_TIMEOUT = 30


class GraphClientError(RuntimeError):
    """Base exception for Microsoft Graph client operations."""


class GraphConfigurationError(GraphClientError):
    """Raised when the Graph integration is not configured."""


class GraphError(GraphClientError):
    """Raised when the Microsoft Graph API returns an error."""

    def __init__(self, status_code: int, error: str, description: str) -> None:
        super().__init__(f"{status_code}: {error} - {description}")
        self.status_code = status_code
        self.error = error
        self.description = description


class GraphClient:
    """Graph client exposing the per-document operations the sync engines need.

    Every method addresses a policy collection through its :class:`PolicyType`;
    the resource path comes from the type table unless ``config.endpoints``
    overrides it.
    """

    def __init__(self, config: GraphConfig, session: Optional[requests.Session] = None) -> None:
        if not config.has_credentials:
            raise GraphConfigurationError(
                "Microsoft Graph credentials are not configured. "
                "Provide tenant_id, client_id, and client_secret."
            )

        self._config = config
        self._base_url = (config.base_url or DEFAULT_GRAPH_BASE_URL).rstrip("/")
        self._timeout = config.timeout or REQUEST_TIMEOUT
        self._authority = f"https://login.microsoftonline.com/{config.tenant_id}"
        self._app = msal.ConfidentialClientApplication(
            client_id=config.client_id,
            client_credential=config.client_secret,
            authority=self._authority,
        )
        self._token_lock = threading.Lock()
        self._session = session or requests.Session()

    # ------------------------------------------------------------------ #
    # Token handling / HTTP helpers                                      #
    # ------------------------------------------------------------------ #
    def _acquire_token(self) -> str:
        with self._token_lock:
            result = self._app.acquire_token_silent(GRAPH_SCOPE, account=None)
            if not result:
                result = self._app.acquire_token_for_client(scopes=GRAPH_SCOPE)

        if "access_token" not in result:
            raise GraphError(
                status_code=0,
                error=result.get("error", "token_error"),
                description=result.get("error_description", "Unable to acquire Graph token."),
            )
        return str(result["access_token"])

    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        url = path if path.startswith("https://") else self._base_url + path
        headers = kwargs.pop("headers", {}) or {}
        headers.setdefault("Authorization", f"Bearer {self._acquire_token()}")
        headers.setdefault("Accept", "application/json")
        if "json" in kwargs:
            headers.setdefault("Content-Type", "application/json")

        try:
            response = self._session.request(
                method,
                url,
                timeout=self._timeout,
                headers=headers,
                **kwargs,
            )
        except requests.RequestException as exc:
            raise GraphError(0, "RequestFailed", str(exc)) from exc

        if response.status_code == 204:
            return {}

        if response.status_code >= 400:
            try:
                payload = response.json()
                error = payload.get("error", {})
                code = error.get("code", "GraphError")
                message = error.get("message", response.text)
            except ValueError:
                code = "GraphError"
                message = response.text or "Unknown Graph error."
            raise GraphError(response.status_code, code, message)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise GraphError(response.status_code, "InvalidResponse", f"Response body is not JSON: {exc}") from exc

    def _collect(self, path: str, params: Optional[Mapping[str, str]] = None) -> List[Dict[str, Any]]:
        """Follow ``@odata.nextLink`` until the collection is exhausted."""

        items: List[Dict[str, Any]] = []
        result = self._request("GET", path, params=dict(params or {}) or None)
        items.extend(result.get("value", []))
        next_link = result.get("@odata.nextLink")
        while next_link:
            result = self._request("GET", next_link)
            items.extend(result.get("value", []))
            next_link = result.get("@odata.nextLink")
        return items

    def endpoint_for(self, policy_type: PolicyType) -> str:
        override = (self._config.endpoints or {}).get(policy_type.value)
        return override or policy_type.endpoint

    def _item_path(self, policy_type: PolicyType, policy_id: str) -> str:
        return f"{self.endpoint_for(policy_type)}/{quote(str(policy_id), safe='')}"

    # ------------------------------------------------------------------ #
    # Policy documents                                                   #
    # ------------------------------------------------------------------ #
    def list_policies(self, policy_type: PolicyType, filter_expr: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {"$filter": filter_expr} if filter_expr else None
        return self._collect(self.endpoint_for(policy_type), params)

    def get_policy(self, policy_type: PolicyType, policy_id: str) -> Dict[str, Any]:
        return self._request("GET", self._item_path(policy_type, policy_id))

    def find_policies_by_name(
        self, policy_type: PolicyType, name: str, name_field: str = "displayName"
    ) -> List[Dict[str, Any]]:
        escaped = name.replace("'", "''")
        return self.list_policies(policy_type, f"{name_field} eq '{escaped}'")

    def create_policy(self, policy_type: PolicyType, document: Mapping[str, Any]) -> Dict[str, Any]:
        return self._request("POST", self.endpoint_for(policy_type), json=dict(document))

    def patch_policy(self, policy_type: PolicyType, policy_id: str, document: Mapping[str, Any]) -> None:
        self._request("PATCH", self._item_path(policy_type, policy_id), json=dict(document))

    def delete_policy(self, policy_type: PolicyType, policy_id: str) -> None:
        self._request("DELETE", self._item_path(policy_type, policy_id))

    # ------------------------------------------------------------------ #
    # Assignments                                                        #
    # ------------------------------------------------------------------ #
    def list_assignments(self, policy_type: PolicyType, policy_id: str) -> List[Dict[str, Any]]:
        return self._collect(f"{self._item_path(policy_type, policy_id)}/assignments")

    def create_assignment(
        self, policy_type: PolicyType, policy_id: str, assignment: Mapping[str, Any]
    ) -> Dict[str, Any]:
        return self._request(
            "POST",
            f"{self._item_path(policy_type, policy_id)}/assignments",
            json=dict(assignment),
        )

    def delete_assignment(self, policy_type: PolicyType, policy_id: str, assignment_id: str) -> None:
        self._request(
            "DELETE",
            f"{self._item_path(policy_type, policy_id)}/assignments/{quote(str(assignment_id), safe='')}",
        )

    # ------------------------------------------------------------------ #
    # Tenant helpers used by export                                      #
    # ------------------------------------------------------------------ #
    def get_organization(self) -> Dict[str, Any]:
        result = self._request("GET", "/organization")
        values = result.get("value") or []
        org = values[0] if values else {}
        return {
            "name": org.get("displayName") or "Unknown Organization",
            "tenantId": org.get("id"),
            "verifiedDomains": [domain.get("name") for domain in org.get("verifiedDomains") or []],
        }

    def get_script_content(self, script_id: str) -> Optional[str]:
        script = self.get_policy(PolicyType.SCRIPTS, script_id)
        encoded = script.get("scriptContent")
        if not encoded:
            return None
        return base64.b64decode(encoded).decode("utf-8", errors="replace")


__all__ = [
    "DEFAULT_GRAPH_BASE_URL",
    "GraphClient",
    "GraphClientError",
    "GraphConfigurationError",
    "GraphError",
]
