"""
Dropbox Service
===============

Talks to the Dropbox HTTP API. Nothing else in ApiAlly knows Dropbox URLs.

WHAT THIS DOES:
--------------
1. Uploads files (backups) into a Dropbox folder
2. Deletes files (cleanup after a connection test)
3. Tests a folder+token pair by uploading and deleting a tiny file
4. Runs the OAuth dance: authorize URL -> code exchange -> token refresh

HOW DROPBOX UPLOADS WORK:
------------------------
    POST https://content.dropboxapi.com/2/files/upload
    Authorization: Bearer <access token>
    Content-Type: application/octet-stream
    Dropbox-API-Arg: {"path": "/ApiAlly/backups/backup_2026-01-06.csv", "mode": "overwrite"}

    <raw file bytes>

The file arguments ride in a JSON header, the body is just the file.

Author: ApiAlly Team
"""

import json
import logging
from typing import Optional, Union
from urllib.parse import urlencode

import httpx

from apially.models import DropboxTokenResponse

logger = logging.getLogger(__name__)


class DropboxService:
    """
    Thin async client for the Dropbox endpoints we use.

    HOW TO USE:
    ----------
    service = DropboxService()

    result = await service.upload_file(token, "/ApiAlly", "backup.csv", csv_text)
    ok = await service.test_connection("/ApiAlly", token)

    await service.close()
    """

    UPLOAD_URL = "https://content.dropboxapi.com/2/files/upload"
    DELETE_URL = "https://api.dropboxapi.com/2/files/delete_v2"
    AUTHORIZE_URL = "https://www.dropbox.com/oauth2/authorize"
    TOKEN_URL = "https://api.dropboxapi.com/oauth2/token"

    TEST_FILE_NAME = "connection_test.txt"
    TEST_FILE_CONTENT = "Connection test"

    def __init__(self, request_timeout: float = 60.0, http_client: Optional[httpx.AsyncClient] = None):
        """
        Set up the service.

        Args:
            request_timeout: Seconds to wait for Dropbox (uploads can be big)
            http_client: Pre-built client (tests pass one with a MockTransport)
        """
        self.http_client = http_client or httpx.AsyncClient(timeout=request_timeout)

    @staticmethod
    def join_path(folder_path: str, file_name: str) -> str:
        return f"{folder_path.rstrip('/')}/{file_name}"

    # =========================================================================
    # FILES
    # =========================================================================

    async def upload_file(
        self,
        token: str,
        folder_path: str,
        file_name: str,
        content: Union[str, bytes],
    ) -> dict:
        """
        Upload (overwrite) a file.

        Returns:
            Dropbox's file metadata (path_display, size, ...)

        Raises:
            httpx.HTTPStatusError: Dropbox said no (bad token, bad path, ...)
            httpx.RequestError: Network trouble
        """
        path = self.join_path(folder_path, file_name)
        body = content.encode("utf-8") if isinstance(content, str) else content

        logger.info(f"Uploading {file_name} to Dropbox path {path} ({len(body)} bytes)")

        response = await self.http_client.post(
            self.UPLOAD_URL,
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/octet-stream",
                "Dropbox-API-Arg": json.dumps({"path": path, "mode": "overwrite"}),
            },
            content=body,
        )
        if response.is_error:
            logger.error(f"Dropbox upload failed - HTTP {response.status_code}: {response.text[:500]}")
        response.raise_for_status()

        return response.json()

    async def delete_file(self, token: str, path: str) -> bool:
        """
        Delete a file. Returns False (and logs) if Dropbox refuses.

        Network errors (httpx.RequestError) are raised.
        """
        response = await self.http_client.post(
            self.DELETE_URL,
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            },
            json={"path": path},
        )
        if response.is_error:
            logger.warning(f"Dropbox delete of {path} failed - HTTP {response.status_code}")
            return False
        return True

    async def test_connection(self, folder_path: str, token: str) -> bool:
        """
        Can we write to this folder with this token?

        Uploads connection_test.txt and deletes it again.
        """
        try:
            await self.upload_file(token, folder_path, self.TEST_FILE_NAME, self.TEST_FILE_CONTENT)
            await self.delete_file(token, self.join_path(folder_path, self.TEST_FILE_NAME))
        except httpx.HTTPStatusError as e:
            logger.error(f"Dropbox connection test failed - HTTP {e.response.status_code}")
            return False
        except httpx.RequestError as e:
            logger.error(f"Dropbox connection test failed - {type(e).__name__}: {e}")
            return False
        return True

    # =========================================================================
    # OAUTH
    # =========================================================================

    def generate_auth_url(self, app_key: str, redirect_uri: str, state: Optional[str] = None) -> str:
        """URL to send the user to; token_access_type=offline gets us a refresh token."""
        params = {
            "client_id": app_key,
            "response_type": "code",
            "redirect_uri": redirect_uri,
            "token_access_type": "offline",
        }
        if state:
            params["state"] = state
        return f"{self.AUTHORIZE_URL}?{urlencode(params)}"

    async def _token_request(self, app_key: str, app_secret: str, form: dict) -> Optional[DropboxTokenResponse]:
        try:
            response = await self.http_client.post(
                self.TOKEN_URL,
                auth=(app_key, app_secret),
                data=form,
            )
            response.raise_for_status()
            return DropboxTokenResponse.model_validate(response.json())
        except httpx.HTTPStatusError as e:
            logger.error(
                f"Dropbox token request ({form.get('grant_type')}) failed - "
                f"HTTP {e.response.status_code}: {e.response.text[:500]}"
            )
        except httpx.RequestError as e:
            logger.error(f"Dropbox token request failed - {type(e).__name__}: {e}")
        except ValueError as e:
            logger.error(f"Dropbox token response was not understood: {e}")
        return None

    async def exchange_code_for_tokens(
        self,
        app_key: str,
        app_secret: str,
        code: str,
        redirect_uri: str,
    ) -> Optional[DropboxTokenResponse]:
        return await self._token_request(app_key, app_secret, {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
        })

    async def refresh_access_token(
        self,
        app_key: str,
        app_secret: str,
        refresh_token: str,
    ) -> Optional[DropboxTokenResponse]:
        return await self._token_request(app_key, app_secret, {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        })

    async def close(self):
        """Called when the server shuts down."""
        await self.http_client.aclose()
