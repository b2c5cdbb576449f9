import hmac
import os
from typing import Optional

from fastapi import Header, HTTPException, Request, status

from chaldduck_pricing.util.logging import get_logger, log_event


class AdminKeyAuth:
    """Guards the policy admin routes. An empty key set disables the check."""

    def __init__(self, valid_keys: set[str]) -> None:
        self.valid_keys = valid_keys
        self.logger = get_logger(self.__class__.__name__)

    @classmethod
    def from_env(cls) -> "AdminKeyAuth":
        raw = os.getenv("API_KEYS", "")
        return cls({key.strip() for key in raw.split(",") if key.strip()})

    def _accepts(self, candidate: str) -> bool:
        return any(hmac.compare_digest(candidate, key) for key in self.valid_keys)

    def __call__(self, request: Request, x_api_key: Optional[str] = Header(default=None)) -> None:
        if not self.valid_keys:
            return
        if not x_api_key or not self._accepts(x_api_key):
            log_event(self.logger, "admin_auth_rejected", path=request.url.path, method=request.method)
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")
