"""Bearer token providers for the pre-signed URL route."""

from typing import Optional

from .errors import AuthTokenFailed


class TokenProvider:
    def get_token(self) -> str:  # pragma: no cover - interface
        raise NotImplementedError


class StaticTokenProvider(TokenProvider):
    """A token supplied once on the command line or in the environment."""

    def __init__(self, token: Optional[str]) -> None:
        self.token = (token or "").strip()

    def get_token(self) -> str:
        if not self.token:
            raise AuthTokenFailed("No auth token configured")
        return self.token


class FileTokenProvider(TokenProvider):
    """Reads the token from a file on every request so an external refresher can rotate it."""

    def __init__(self, path: str) -> None:
        self.path = path

    def get_token(self) -> str:
        try:
            with open(self.path, "r", encoding="utf-8") as handle:
                token = handle.read().strip()
        except (OSError, UnicodeDecodeError) as exc:
            raise AuthTokenFailed(f"Failed to read auth token from {self.path}: {exc}") from exc
        if not token:
            raise AuthTokenFailed(f"Auth token file {self.path} is empty")
        return token


def build_token_provider(args) -> Optional[TokenProvider]:
    token_file = getattr(args, "auth_token_file", None)
    if token_file:
        return FileTokenProvider(token_file)
    token = getattr(args, "auth_token", None)
    if token:
        return StaticTokenProvider(token)
    return None
