# /engagehub/services/gtm_service.py

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional

import httplib2
import google_auth_httplib2
from google.oauth2.service_account import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from engagehub.config.settings import settings
from engagehub.utils.errors import AppError, ExternalServiceError
from engagehub.utils.metrics import external_api_counter, external_api_latency

# Thin async wrapper over the Tag Manager API v2:
# accounts -> containers -> workspaces -> {tags, triggers, variables,
# built-in variables, folders} plus container environments and publishing.
# The Google client is synchronous, so every request runs in a worker thread
# with its own authorized HTTP transport.

logger = logging.getLogger(__name__)

GTM_SCOPES = [
    "https://www.googleapis.com/auth/tagmanager.edit.containers",
    "https://www.googleapis.com/auth/tagmanager.edit.containerversions",
    "https://www.googleapis.com/auth/tagmanager.manage.accounts",
    "https://www.googleapis.com/auth/tagmanager.publish",
    "https://www.googleapis.com/auth/tagmanager.readonly",
]


class GtmNotConfiguredError(AppError):
    status_code = 503


class GtmApiError(ExternalServiceError):
    def __init__(self, message: str, status: int, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.status = status
        # Surface GTM's client errors (not found, conflicts) with their own code
        if 400 <= status < 500:
            self.status_code = status


def account_path(account_id: str) -> str:
    return f"accounts/{account_id}"


def container_path(account_id: str, container_id: str) -> str:
    return f"accounts/{account_id}/containers/{container_id}"


def workspace_path(account_id: str, container_id: str, workspace_id: str) -> str:
    return f"{container_path(account_id, container_id)}/workspaces/{workspace_id}"


class GtmService:
    def __init__(self, client_email: Optional[str], private_key: Optional[str]):
        self.client_email = client_email
        self.private_key = private_key
        self._credentials: Optional[Credentials] = None
        self._service = None

    @property
    def is_configured(self) -> bool:
        return bool(self.client_email and self.private_key)

    def _get_service(self):
        if not self.is_configured:
            raise GtmNotConfiguredError("Google Tag Manager credentials are not configured")
        if self._service is None:
            self._credentials = Credentials.from_service_account_info(
                {
                    "type": "service_account",
                    "client_email": self.client_email,
                    "private_key": self.private_key,
                    "token_uri": "https://oauth2.googleapis.com/token",
                },
                scopes=GTM_SCOPES,
            )
            self._service = build("tagmanager", "v2", credentials=self._credentials, cache_discovery=False)
            logger.info("Google Tag Manager client initialized.")
        return self._service

    async def _execute(self, make_request: Callable[[Any], Any]) -> Any:
        """Build the request from the discovery client and execute it off the event loop."""
        service = self._get_service()

        def run():
            # httplib2 transports are not thread-safe; one per call
            http = google_auth_httplib2.AuthorizedHttp(self._credentials, http=httplib2.Http(timeout=30))
            return make_request(service).execute(http=http)

        start = time.perf_counter()
        try:
            result = await asyncio.to_thread(run)
            external_api_counter.labels(service="gtm", status="success").inc()
            return result
        except HttpError as e:
            external_api_counter.labels(service="gtm", status="error").inc()
            status = int(getattr(e.resp, "status", 500) or 500)
            reason = e._get_reason() if hasattr(e, "_get_reason") else str(e)
            logger.warning(f"GTM API error {status}: {reason}")
            raise GtmApiError(f"GTM API error: {reason}", status) from e
        finally:
            external_api_latency.labels(service="gtm").observe(time.perf_counter() - start)

    async def _list_all(self, make_request: Callable[[Any, Optional[str]], Any], key: str) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        page_token: Optional[str] = None
        while True:
            response = await self._execute(lambda svc: make_request(svc, page_token))
            items.extend(response.get(key, []))
            page_token = response.get("nextPageToken")
            if not page_token:
                return items

    # ==================== Accounts ====================

    async def list_accounts(self) -> List[Dict[str, Any]]:
        return await self._list_all(lambda svc, tok: svc.accounts().list(pageToken=tok), "account")

    async def get_account(self, account_id: str) -> Dict[str, Any]:
        return await self._execute(lambda svc: svc.accounts().get(path=account_path(account_id)))

    # ==================== Containers ====================

    async def list_containers(self, account_id: str) -> List[Dict[str, Any]]:
        return await self._list_all(
            lambda svc, tok: svc.accounts().containers().list(parent=account_path(account_id), pageToken=tok),
            "container",
        )

    async def get_container(self, account_id: str, container_id: str) -> Dict[str, Any]:
        return await self._execute(
            lambda svc: svc.accounts().containers().get(path=container_path(account_id, container_id))
        )

    async def create_container(self, account_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return await self._execute(
            lambda svc: svc.accounts().containers().create(parent=account_path(account_id), body=body)
        )

    async def update_container(self, account_id: str, container_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return await self._execute(
            lambda svc: svc.accounts().containers().update(path=container_path(account_id, container_id), body=body)
        )

    async def delete_container(self, account_id: str, container_id: str) -> None:
        await self._execute(
            lambda svc: svc.accounts().containers().delete(path=container_path(account_id, container_id))
        )

    # ==================== Workspaces ====================

    async def list_workspaces(self, account_id: str, container_id: str) -> List[Dict[str, Any]]:
        return await self._list_all(
            lambda svc, tok: svc.accounts().containers().workspaces().list(
                parent=container_path(account_id, container_id), pageToken=tok),
            "workspace",
        )

    async def create_workspace(self, account_id: str, container_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return await self._execute(
            lambda svc: svc.accounts().containers().workspaces().create(
                parent=container_path(account_id, container_id), body=body)
        )

    async def get_workspace(self, account_id: str, container_id: str, workspace_id: str) -> Dict[str, Any]:
        return await self._execute(
            lambda svc: svc.accounts().containers().workspaces().get(
                path=workspace_path(account_id, container_id, workspace_id))
        )

    async def update_workspace(self, account_id: str, container_id: str, workspace_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return await self._execute(
            lambda svc: svc.accounts().containers().workspaces().update(
                path=workspace_path(account_id, container_id, workspace_id), body=body)
        )

    async def delete_workspace(self, account_id: str, container_id: str, workspace_id: str) -> None:
        await self._execute(
            lambda svc: svc.accounts().containers().workspaces().delete(
                path=workspace_path(account_id, container_id, workspace_id))
        )

    async def publish_workspace(self, account_id: str, container_id: str, workspace_id: str, name: Optional[str] = None) -> Dict[str, Any]:
        """Create a container version from the workspace and publish it."""
        version = await self._execute(
            lambda svc: svc.accounts().containers().workspaces().create_version(
                path=workspace_path(account_id, container_id, workspace_id),
                body={"name": name} if name else {})
        )
        container_version = version.get("containerVersion") or {}
        if not container_version.get("path"):
            raise GtmApiError("Workspace version could not be created", 409, {"compilerError": version.get("compilerError")})
        return await self._execute(
            lambda svc: svc.accounts().containers().versions().publish(path=container_version["path"])
        )

    # ==================== Workspace entities ====================
    # tags, triggers, variables and folders share the same CRUD shape

    def _entities(self, svc, kind: str):
        workspaces = svc.accounts().containers().workspaces()
        return {
            "tag": workspaces.tags,
            "trigger": workspaces.triggers,
            "variable": workspaces.variables,
            "folder": workspaces.folders,
        }[kind]()

    async def list_entities(self, kind: str, account_id: str, container_id: str, workspace_id: str) -> List[Dict[str, Any]]:
        parent = workspace_path(account_id, container_id, workspace_id)
        return await self._list_all(
            lambda svc, tok: self._entities(svc, kind).list(parent=parent, pageToken=tok),
            kind,
        )

    async def get_entity(self, kind: str, account_id: str, container_id: str, workspace_id: str, entity_id: str) -> Dict[str, Any]:
        path = f"{workspace_path(account_id, container_id, workspace_id)}/{kind}s/{entity_id}"
        return await self._execute(lambda svc: self._entities(svc, kind).get(path=path))

    async def create_entity(self, kind: str, account_id: str, container_id: str, workspace_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        parent = workspace_path(account_id, container_id, workspace_id)
        return await self._execute(lambda svc: self._entities(svc, kind).create(parent=parent, body=body))

    async def update_entity(
        self,
        kind: str,
        account_id: str,
        container_id: str,
        workspace_id: str,
        entity_id: str,
        body: Dict[str, Any],
        fingerprint: Optional[str] = None,
    ) -> Dict[str, Any]:
        path = f"{workspace_path(account_id, container_id, workspace_id)}/{kind}s/{entity_id}"
        return await self._execute(
            lambda svc: self._entities(svc, kind).update(path=path, body=body, fingerprint=fingerprint)
        )

    async def delete_entity(self, kind: str, account_id: str, container_id: str, workspace_id: str, entity_id: str) -> None:
        path = f"{workspace_path(account_id, container_id, workspace_id)}/{kind}s/{entity_id}"
        await self._execute(lambda svc: self._entities(svc, kind).delete(path=path))

    # ==================== Built-in variables ====================

    async def list_built_in_variables(self, account_id: str, container_id: str, workspace_id: str) -> List[Dict[str, Any]]:
        parent = workspace_path(account_id, container_id, workspace_id)
        return await self._list_all(
            lambda svc, tok: svc.accounts().containers().workspaces().built_in_variables().list(parent=parent, pageToken=tok),
            "builtInVariable",
        )

    async def enable_built_in_variables(self, account_id: str, container_id: str, workspace_id: str, types: List[str]) -> Dict[str, Any]:
        parent = workspace_path(account_id, container_id, workspace_id)
        return await self._execute(
            lambda svc: svc.accounts().containers().workspaces().built_in_variables().create(parent=parent, type=types)
        )

    async def disable_built_in_variables(self, account_id: str, container_id: str, workspace_id: str, types: List[str]) -> None:
        path = f"{workspace_path(account_id, container_id, workspace_id)}/built_in_variables"
        await self._execute(
            lambda svc: svc.accounts().containers().workspaces().built_in_variables().delete(path=path, type=types)
        )

    # ==================== Environments ====================

    async def list_environments(self, account_id: str, container_id: str) -> List[Dict[str, Any]]:
        return await self._list_all(
            lambda svc, tok: svc.accounts().containers().environments().list(
                parent=container_path(account_id, container_id), pageToken=tok),
            "environment",
        )

    async def create_environment(self, account_id: str, container_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return await self._execute(
            lambda svc: svc.accounts().containers().environments().create(
                parent=container_path(account_id, container_id), body=body)
        )

    async def update_environment(self, account_id: str, container_id: str, environment_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        path = f"{container_path(account_id, container_id)}/environments/{environment_id}"
        return await self._execute(
            lambda svc: svc.accounts().containers().environments().update(path=path, body=body)
        )

    async def delete_environment(self, account_id: str, container_id: str, environment_id: str) -> None:
        path = f"{container_path(account_id, container_id)}/environments/{environment_id}"
        await self._execute(lambda svc: svc.accounts().containers().environments().delete(path=path))


# Globally accessible instance
gtm_service = GtmService(settings.gtm_client_email, settings.gtm_private_key)
