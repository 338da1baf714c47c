"""Stored secrets: GitHub token, S3 credentials and the brand-site public key."""

from __future__ import annotations

import hmac
import logging
import secrets
import string
from collections.abc import Mapping
from typing import Any

from oneupdate.core.errors import ConfigurationError, InvalidCredentialsError
from oneupdate.storage.db import Database

GITHUB_TOKEN_OPTION = "oneupdate_gh_token"
S3_CREDENTIALS_OPTION = "oneupdate_s3_credentials"
PUBLIC_KEY_OPTION = "oneupdate_child_site_public_key"

S3_REQUIRED_KEYS = ("accessKey", "bucketName", "endpoint", "region", "secretKey")
SECRET_KEY_LENGTH = 128
_SECRET_ALPHABET = string.ascii_letters + string.digits


def generate_secret_key(length: int = SECRET_KEY_LENGTH) -> str:
    return "".join(secrets.choice(_SECRET_ALPHABET) for _ in range(length))


class CredentialStore:
    def __init__(
        self,
        database: Database,
        *,
        github_token_override: str | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.database = database
        self.github_token_override = github_token_override
        self.logger = logger or logging.getLogger(__name__)

    def github_token(self) -> str:
        if self.github_token_override:
            return self.github_token_override
        value = self.database.get_option(GITHUB_TOKEN_OPTION, "")
        return value if isinstance(value, str) else ""

    def require_github_token(self) -> str:
        token = self.github_token()
        if not token:
            raise ConfigurationError("GitHub token not found.", code="no_github_token")
        return token

    def set_github_token(self, token: str) -> str:
        token = token.strip()
        if not token:
            raise InvalidCredentialsError(
                "GitHub token is required.", code="invalid_github_token"
            )
        self.database.update_option(GITHUB_TOKEN_OPTION, token)
        return token

    def s3_credentials(self) -> dict[str, Any]:
        value = self.database.get_option(S3_CREDENTIALS_OPTION, {})
        return dict(value) if isinstance(value, Mapping) else {}

    def set_s3_credentials(self, credentials: Any) -> dict[str, Any]:
        if not isinstance(credentials, Mapping):
            raise InvalidCredentialsError(
                "Invalid S3 credentials provided.", code="invalid_s3_credentials"
            )
        missing = [key for key in S3_REQUIRED_KEYS if not credentials.get(key)]
        if missing:
            raise InvalidCredentialsError(
                "Invalid S3 credentials provided.",
                code="invalid_s3_credentials",
                missing=missing,
            )
        stored = dict(credentials)
        self.database.update_option(S3_CREDENTIALS_OPTION, stored)
        return stored

    def public_key(self) -> str:
        """Return this brand site's shared secret, generating one on first use."""

        value = self.database.get_option(PUBLIC_KEY_OPTION)
        if isinstance(value, str) and value:
            return value
        return self.regenerate_public_key()

    def regenerate_public_key(self) -> str:
        key = generate_secret_key()
        self.database.update_option(PUBLIC_KEY_OPTION, key)
        self.logger.info("Generated a new brand-site secret key")
        return key

    def verify_token(self, candidate: str | None) -> bool:
        if not candidate:
            return False
        return hmac.compare_digest(candidate.encode("utf-8"), self.public_key().encode("utf-8"))
