"""
Request header assembly for the records backend.
"""

from typing import Callable, Dict, Optional

from shared.logging import get_logger


TokenProvider = Callable[[], Optional[str]]


class HeaderBuilder:
    """Builds the identity, key and token headers sent with every request."""

    def __init__(self,
                 application_id: str,
                 api_key: str,
                 token_provider: Optional[TokenProvider] = None,
                 application_id_header: str = "X-Knack-Application-Id",
                 api_key_header: str = "X-Knack-REST-API-Key"):
        self.application_id = application_id
        self.api_key = api_key
        self.token_provider = token_provider
        self.application_id_header = application_id_header
        self.api_key_header = api_key_header
        self.logger = get_logger("records.headers")
        self._warned_missing_token = False

    def build(self) -> Dict[str, str]:
        token = self.token_provider() if self.token_provider else None
        if not token:
            # Warn once per outage
            if self._warned_missing_token:
                self.logger.debug("User token unavailable")
            else:
                self.logger.warning("User token unavailable, requests may be rejected")
                self._warned_missing_token = True
        else:
            self._warned_missing_token = False

        return {
            self.application_id_header: self.application_id,
            self.api_key_header: self.api_key,
            "Authorization": token or "",
            "Content-Type": "application/json",
        }
