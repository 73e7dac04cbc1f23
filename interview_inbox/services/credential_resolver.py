"""
Credential Resolver: owner identity -> freshly refreshed Gmail access credential.

The stored access token is only a cache; its remaining lifetime is unknown to
the poller, so every resolve() performs a live refresh and writes the new token
back to the cache columns on a best-effort basis.
"""

from interview_inbox.db.helpers import DatabaseError, execute_query, fetch_one, with_db_retry
from interview_inbox.infrastructure.observability.logging import get_logger
from interview_inbox.models.domain.gmail_domain import AccessCredential
from interview_inbox.services.google_oauth_service import GoogleOAuthError, GoogleOAuthService
from interview_inbox.services.infrastructure.encryption_service import (
    EncryptionError,
    decrypt_token,
    encrypt_token,
)

logger = get_logger(__name__)


class CredentialError(Exception):
    """Base exception for credential resolution failures."""

    def __init__(self, message: str, owner_id: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.owner_id = owner_id
        self.recoverable = recoverable


class CredentialNotFoundError(CredentialError):
    """No mailbox credential stored for the owner."""


class CredentialRefreshError(CredentialError):
    """Stored credential could not be decrypted or refreshed."""


class CredentialResolver:
    """Resolves mailbox credentials from the mailbox_credentials table."""

    def __init__(self, oauth_service: GoogleOAuthService):
        self._oauth = oauth_service

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def _load_refresh_token(self, owner_id: str) -> bytes | None:
        row = await fetch_one(
            """
            SELECT refresh_token
            FROM mailbox_credentials
            WHERE owner_id = %s
            """,
            (owner_id,),
        )
        return row["refresh_token"] if row else None

    async def resolve(self, owner_id: str) -> AccessCredential:
        """
        Resolve a live access credential for an owner.

        Raises:
            CredentialNotFoundError: If no credential is stored for the owner
            CredentialRefreshError: If decryption or the live refresh fails
        """
        try:
            encrypted_refresh = await self._load_refresh_token(owner_id)
        except DatabaseError as e:
            raise CredentialError(
                f"Failed to load mailbox credential: {e}", owner_id=owner_id
            ) from e

        if not encrypted_refresh:
            raise CredentialNotFoundError(
                "No mailbox credential stored", owner_id=owner_id, recoverable=False
            )

        try:
            refresh_token = decrypt_token(encrypted_refresh)
        except EncryptionError as e:
            raise CredentialRefreshError(
                f"Stored refresh token unreadable: {e}", owner_id=owner_id, recoverable=False
            ) from e

        try:
            token_response = await self._oauth.refresh_access_token(refresh_token)
        except GoogleOAuthError as e:
            raise CredentialRefreshError(
                f"Token refresh failed: {e}",
                owner_id=owner_id,
                recoverable=e.error_code != "invalid_grant",
            ) from e

        credential = AccessCredential(
            owner_id=owner_id,
            access_token=token_response.access_token,
            expires_at=token_response.expires_at,
        )
        await self._cache_access_token(credential)

        logger.info(
            "Mailbox credential resolved",
            owner_id=owner_id,
            expires_at=credential.expires_at.isoformat() if credential.expires_at else None,
        )
        return credential

    async def _cache_access_token(self, credential: AccessCredential) -> None:
        """Best-effort write of the refreshed token; the cache is never authoritative."""
        try:
            await execute_query(
                """
                UPDATE mailbox_credentials
                SET access_token = %s, expires_at = %s, updated_at = NOW()
                WHERE owner_id = %s
                """,
                (
                    encrypt_token(credential.access_token),
                    credential.expires_at,
                    credential.owner_id,
                ),
            )
        except (DatabaseError, EncryptionError) as e:
            logger.warning(
                "Failed to cache refreshed access token",
                owner_id=credential.owner_id,
                error=str(e),
            )
