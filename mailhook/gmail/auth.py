"""Gmail OAuth2 credentials, token storage and the consent redirect flow."""

import asyncio
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from urllib.parse import parse_qs, urlparse

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow

from ..database import Database, MailboxRepository
from ..errors import Unauthenticated
from ..utils import get_logger

logger = get_logger(__name__)

# Tokens this close to expiry are treated as expired
EXPIRY_SKEW = timedelta(seconds=60)


@dataclass(frozen=True)
class AuthToken:
    """
    OAuth2 credential for one mailbox.

    Immutable: a refresh or a new exchange produces a new AuthToken which is
    then stored with TokenStore.replace.

    Attributes:
        access_token: Bearer token sent with every request
        refresh_token: Long-lived token used to obtain new access tokens
        expiry: Access token expiry (naive UTC), None if unknown
        token_uri: Token endpoint for refresh
        client_id: OAuth client ID
        client_secret: OAuth client secret
        scopes: Granted scopes
    """

    access_token: str
    refresh_token: str | None = None
    expiry: datetime | None = None
    token_uri: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    scopes: tuple[str, ...] = field(default_factory=tuple)

    @property
    def expired(self) -> bool:
        """True when the access token is past (or about to pass) its expiry."""
        if self.expiry is None:
            return False
        now = datetime.now(timezone.utc).replace(tzinfo=None)
        return now >= self.expiry - EXPIRY_SKEW

    def apply(self, request):
        """
        Decorate an outbound request with this credential.

        Args:
            request: Any request object exposing a mutable ``headers`` dict
                (googleapiclient HttpRequest included)

        Returns:
            The same request

        Raises:
            Unauthenticated: If the access token has expired
        """
        if self.expired:
            raise Unauthenticated("Access token has expired")
        request.headers['authorization'] = f'Bearer {self.access_token}'
        return request

    def to_credentials(self) -> Credentials:
        """Convert to google-auth Credentials."""
        creds = Credentials(
            self.access_token,
            refresh_token=self.refresh_token,
            token_uri=self.token_uri,
            client_id=self.client_id,
            client_secret=self.client_secret,
            scopes=list(self.scopes) or None,
        )
        creds.expiry = self.expiry
        return creds

    @classmethod
    def from_credentials(cls, creds: Credentials) -> 'AuthToken':
        """Build an AuthToken from google-auth Credentials."""
        return cls(
            access_token=creds.token,
            refresh_token=creds.refresh_token,
            expiry=creds.expiry,
            token_uri=creds.token_uri,
            client_id=creds.client_id,
            client_secret=creds.client_secret,
            scopes=tuple(creds.scopes or ()),
        )

    def to_columns(self) -> dict:
        """Column values for MailboxRepository.save_token."""
        return {
            'access_token': self.access_token,
            'refresh_token': self.refresh_token,
            'token_expiry': self.expiry,
            'token_uri': self.token_uri,
            'client_id': self.client_id,
            'client_secret': self.client_secret,
            'scopes': list(self.scopes),
        }

    @classmethod
    def from_columns(cls, columns: dict) -> 'AuthToken':
        """Inverse of to_columns."""
        return cls(
            access_token=columns['access_token'],
            refresh_token=columns.get('refresh_token'),
            expiry=columns.get('token_expiry'),
            token_uri=columns.get('token_uri'),
            client_id=columns.get('client_id'),
            client_secret=columns.get('client_secret'),
            scopes=tuple(columns.get('scopes') or ()),
        )

    def __repr__(self) -> str:
        """Return string representation without secrets."""
        return f"AuthToken(expiry={self.expiry}, has_refresh={self.refresh_token is not None})"


class TokenStore:
    """
    Durable holder of the current AuthToken for one mailbox.

    Callers fetch the token with current() immediately before each external
    call: a concurrent redirect may replace it at any time.

    Example:
        >>> tokens = TokenStore(db, "primary")
        >>> tokens.replace(token)
        >>> tokens.apply(request)
    """

    def __init__(self, database: Database, mailbox_id: str):
        self.database = database
        self.mailbox_id = mailbox_id

    def has_token(self) -> bool:
        """Check whether a token has ever been stored."""
        with self.database.get_session() as session:
            return MailboxRepository(session).token_columns(self.mailbox_id) is not None

    def current(self) -> AuthToken:
        """
        Get the current token.

        Raises:
            Unauthenticated: If no token has been stored
        """
        with self.database.get_session() as session:
            columns = MailboxRepository(session).token_columns(self.mailbox_id)

        if columns is None:
            raise Unauthenticated(f"No credential stored for mailbox {self.mailbox_id}")
        return AuthToken.from_columns(columns)

    def replace(self, token: AuthToken, expected: AuthToken | None = None) -> bool:
        """
        Persist a new token, overwriting the previous one.

        Args:
            token: New token
            expected: If given, only write when the stored token still has
                this access token (a refreshed token must not overwrite one
                obtained by a newer exchange)

        Returns:
            True if the token was written
        """
        with self.database.get_session() as session:
            repo = MailboxRepository(session)
            if expected is not None:
                columns = repo.token_columns(self.mailbox_id)
                stored = columns['access_token'] if columns else None
                if stored != expected.access_token:
                    logger.info(
                        f"Credential for {self.mailbox_id} changed concurrently; "
                        f"keeping the newer one"
                    )
                    return False
            repo.save_token(self.mailbox_id, **token.to_columns())

        logger.info(f"Stored new credential for mailbox {self.mailbox_id}")
        return True

    def apply(self, request):
        """Decorate a request with the current credential."""
        return self.current().apply(request)


def refresh(token: AuthToken) -> AuthToken:
    """
    Exchange the refresh token for a new access token.

    Blocking network call; run it in a worker thread from async code.

    Args:
        token: Token holding a refresh token

    Returns:
        New AuthToken

    Raises:
        Unauthenticated: If there is no refresh token or the refresh is rejected
    """
    if not token.refresh_token:
        raise Unauthenticated("Access token expired and no refresh token is stored")

    creds = token.to_credentials()
    try:
        creds.refresh(Request())
    except RefreshError as e:
        raise Unauthenticated(f"Token refresh rejected: {e}") from e

    return AuthToken.from_credentials(creds)


class OAuthFlow:
    """
    Web-server OAuth2 consent flow.

    The consent URL carries a random nonce as its state parameter; the
    redirect handler compares it with the stored value before exchanging the
    authorization code.

    Attributes:
        client_secrets_path: Path to the OAuth web client secrets file
        redirect_uri: Redirect endpoint registered for the client
        scopes: Gmail API scopes to request

    Example:
        >>> flow = OAuthFlow("credentials/client_secret.json", "https://host/oauth/redirect")
        >>> nonce = OAuthFlow.new_nonce()
        >>> url = flow.authorization_url(nonce)
    """

    SCOPE_READONLY = "https://www.googleapis.com/auth/gmail.readonly"

    def __init__(
        self,
        client_secrets_path: str,
        redirect_uri: str,
        scopes: list[str] | None = None
    ):
        """
        Initialize the consent flow.

        Raises:
            FileNotFoundError: If client_secrets_path doesn't exist
        """
        self.client_secrets_path = Path(client_secrets_path)
        self.redirect_uri = redirect_uri
        self.scopes = scopes or [self.SCOPE_READONLY]

        if not self.client_secrets_path.exists():
            raise FileNotFoundError(
                f"OAuth client secrets not found at {self.client_secrets_path}. "
                f"Download web client credentials from Google Cloud Console."
            )

    @staticmethod
    def new_nonce() -> str:
        """Generate a random state value for a consent redirect."""
        return secrets.token_hex(32)

    def _flow(self) -> Flow:
        return Flow.from_client_secrets_file(
            str(self.client_secrets_path),
            scopes=self.scopes,
            redirect_uri=self.redirect_uri,
            autogenerate_code_verifier=False,
        )

    def authorization_url(self, nonce: str) -> str:
        """
        Build the URL the user visits to grant access.

        Args:
            nonce: State value stored with the mailbox

        Returns:
            Consent screen URL
        """
        url, _ = self._flow().authorization_url(
            access_type='offline',
            prompt='consent',
            state=nonce,
        )
        return url

    async def exchange(self, code: str) -> AuthToken:
        """
        Exchange an authorization code for a token.

        Args:
            code: Code from the redirect query string

        Returns:
            New AuthToken
        """
        flow = self._flow()
        await asyncio.to_thread(flow.fetch_token, code=code)
        return AuthToken.from_credentials(flow.credentials)

    @staticmethod
    def parse_redirect(url_or_query: str) -> tuple[str | None, str | None]:
        """
        Extract ``code`` and ``state`` from a redirect URL or query string.

        Example:
            >>> OAuthFlow.parse_redirect("/oauth/redirect?code=abc&state=xyz")
            ('abc', 'xyz')
        """
        query = urlparse(url_or_query).query if '?' in url_or_query else url_or_query
        params = parse_qs(query.lstrip('?'))
        code = params.get('code', [None])[0]
        state = params.get('state', [None])[0]
        return code, state
