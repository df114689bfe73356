from __future__ import annotations

"""Credential resolution shared by the BigQuery and GCS adapters."""

from typing import Any, Mapping, Optional

__all__ = ["google_credentials"]


def google_credentials(creds: Mapping[str, str]) -> Optional[Any]:
    """Service-account credentials from a keyfile or an email + private key.

    Returns ``None`` when neither is configured so the client library falls
    back to application default credentials.
    """

    from google.oauth2 import service_account  # local import: optional extra

    keyfile = creds.get("keyfile")
    if keyfile:
        return service_account.Credentials.from_service_account_file(keyfile)

    email = creds.get("service_account_email")
    private_key = creds.get("service_account_private_key")
    if email and private_key:
        return service_account.Credentials.from_service_account_info(
            {
                "type": "service_account",
                "client_email": email,
                # env files usually carry the PEM with literal "\n"
                "private_key": private_key.replace("\\n", "\n"),
                "token_uri": "https://oauth2.googleapis.com/token",
            }
        )
    return None
