import logging
from pathlib import Path
from urllib.parse import parse_qs, urlparse
from typing import Any, Dict, Optional, Union

import google_auth_httplib2
import httplib2
from google.auth.exceptions import GoogleAuthError
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaFileUpload
from oauthlib.oauth2.rfc6749.errors import OAuth2Error

import config
from core.errors import AuthError, UploadError
from models.backup import RemoteCredentials

logger = logging.getLogger(__name__)

AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
TOKEN_URI = "https://oauth2.googleapis.com/token"
FOLDER_MIME = "application/vnd.google-apps.folder"
BACKUP_MIME = "application/x-sqlite3"

# Network-level failures from httplib2 / sockets (timeouts are OSError)
_TRANSPORT_ERRORS = (httplib2.HttpLib2Error, OSError)


class GoogleDriveSync:
    """
    Uploads backup files into a dedicated Google Drive folder.

    Authentication uses an OAuth refresh token supplied by the caller for each
    call; nothing is cached on disk. Every HTTP call is bounded by `timeout`.
    """
    def __init__(self, credentials_file: Optional[Union[str, Path]] = None,
                 timeout: Optional[float] = None):
        self.credentials_file = Path(credentials_file or config.CREDENTIALS_FILE)
        self.timeout = timeout if timeout is not None else config.UPLOAD_TIMEOUT
        self._folder_id: Optional[str] = None
        # Flow waiting for the code the user copies back from the consent page
        self._pending_flow: Optional[Flow] = None

    def _http(self) -> httplib2.Http:
        return httplib2.Http(timeout=self.timeout)

    # --- AUTH ---

    def authorization_url(self, credentials: Optional[RemoteCredentials] = None) -> str:
        """
        Builds the Google consent URL the user must open to grant Drive access.
        Uses the given client credentials, or 'credentials.json' if none are given.

        Raises:
            AuthError: If no client configuration is available.
        """
        try:
            if credentials is not None:
                flow = Flow.from_client_config(
                    _client_config(credentials), scopes=config.DRIVE_SCOPES,
                    redirect_uri=credentials.redirect_uri,
                )
            else:
                if not self.credentials_file.exists():
                    raise AuthError("Missing credentials.json! Please download it from Google Cloud Console.")
                flow = Flow.from_client_secrets_file(
                    str(self.credentials_file), scopes=config.DRIVE_SCOPES,
                    redirect_uri="http://localhost",
                )
            # offline + consent so Google hands out a refresh token
            url, _state = flow.authorization_url(access_type="offline", prompt="consent")
            self._pending_flow = flow
            return url
        except AuthError:
            raise
        except (ValueError, KeyError, OSError, GoogleAuthError) as e:
            raise AuthError(f"Authentication setup failed: {e}", e) from e

    def complete_authorization(self, code_or_url: str) -> RemoteCredentials:
        """
        Trades the code from the consent page for a refresh token.
        Accepts either the bare code or the whole URL the browser was sent to.

        Returns:
            RemoteCredentials: Client id/secret of the pending flow plus the new refresh token.

        Raises:
            AuthError: No consent URL was opened first, or Google rejected the code.
        """
        flow = self._pending_flow
        if flow is None:
            raise AuthError("Open the authorization link first.")

        code = _extract_code(code_or_url)
        if not code:
            raise AuthError("No authorization code given.")

        try:
            flow.fetch_token(code=code, timeout=self.timeout)
        except (OAuth2Error, ValueError, OSError) as e:
            raise AuthError(f"Authorization failed: {e}", e) from e

        token = flow.credentials
        if not token.refresh_token:
            raise AuthError("Google returned no refresh token. Remove the app's access and try again.")

        self._pending_flow = None
        client = flow.client_config
        logger.info("Google Drive authorization completed")
        return RemoteCredentials(
            client_id=client["client_id"],
            client_secret=client["client_secret"],
            redirect_uri=flow.redirect_uri,
            refresh_token=token.refresh_token,
        )

    def authenticate(self, credentials: RemoteCredentials) -> Any:
        """
        Exchanges the refresh token for an access token and returns a Drive API client.

        Raises:
            AuthError: On missing token, rejected credentials, or network failure.
        """
        if not credentials.refresh_token:
            raise AuthError("No refresh token. Authorize Google Drive first.")

        creds = Credentials(
            token=None,
            refresh_token=credentials.refresh_token,
            client_id=credentials.client_id,
            client_secret=credentials.client_secret,
            token_uri=TOKEN_URI,
            scopes=config.DRIVE_SCOPES,
        )
        try:
            creds.refresh(google_auth_httplib2.Request(self._http()))
            authed_http = google_auth_httplib2.AuthorizedHttp(creds, http=self._http())
            return build('drive', 'v3', http=authed_http, cache_discovery=False)
        except (GoogleAuthError, HttpError) + _TRANSPORT_ERRORS as e:
            raise AuthError(f"Authentication failed: {e}", e) from e

    # --- UPLOAD ---

    def _get_or_create_folder(self, client: Any) -> str:
        """Finds the backups folder in Drive, creating it on first upload."""
        if self._folder_id is not None:
            return self._folder_id

        query = (
            f"name = '{config.DRIVE_FOLDER_NAME}' and "
            f"mimeType = '{FOLDER_MIME}' and trashed = false"
        )
        results = client.files().list(q=query, spaces='drive', fields='files(id, name)').execute()
        files = results.get('files', [])

        if files:
            self._folder_id = files[0]['id']
        else:
            folder = client.files().create(
                body={'name': config.DRIVE_FOLDER_NAME, 'mimeType': FOLDER_MIME},
                fields='id'
            ).execute()
            self._folder_id = folder['id']
            logger.info("Created Google Drive folder %r", config.DRIVE_FOLDER_NAME)

        return self._folder_id

    def upload(self, client: Any, local_path: Union[str, Path], remote_name: str) -> str:
        """
        Uploads a local file into the backups folder.

        Returns:
            str: The Google Drive file ID.

        Raises:
            UploadError: If the file is missing or the upload fails.
        """
        path = Path(local_path)
        if not path.is_file():
            raise UploadError(f"File to upload not found: {path}")

        try:
            folder_id = self._get_or_create_folder(client)
            media = MediaFileUpload(str(path), mimetype=BACKUP_MIME, resumable=True)
            file = client.files().create(
                body={'name': remote_name, 'parents': [folder_id]},
                media_body=media,
                fields='id'
            ).execute()
        except (HttpError,) + _TRANSPORT_ERRORS as e:
            raise UploadError(f"Upload failed: {e}", e) from e

        file_id = file.get('id')
        if not file_id:
            raise UploadError("Upload failed: Google Drive returned no file ID.")

        logger.info("Uploaded %s to Google Drive (id=%s)", path.name, file_id)
        return file_id

    def sync(self, local_path: Union[str, Path], remote_name: str,
             credentials: RemoteCredentials) -> str:
        """Authenticates and uploads in one call."""
        client = self.authenticate(credentials)
        return self.upload(client, local_path, remote_name)


def _extract_code(code_or_url: str) -> Optional[str]:
    text = (code_or_url or "").strip()
    if "code=" in text:
        codes = parse_qs(urlparse(text).query).get("code")
        return codes[0] if codes else None
    return text or None


def _client_config(credentials: RemoteCredentials) -> Dict[str, Any]:
    return {
        "installed": {
            "client_id": credentials.client_id,
            "client_secret": credentials.client_secret,
            "auth_uri": AUTH_URI,
            "token_uri": TOKEN_URI,
            "redirect_uris": [credentials.redirect_uri],
        }
    }
