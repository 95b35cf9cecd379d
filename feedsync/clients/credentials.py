"""Bearer credential providers for the upstream API."""

import logging

from feedsync.errors import AuthExpiredError

log = logging.getLogger(__name__)

TOKEN_SETTING_KEY = "upstream_access_token"

class CredentialProvider:
    """Source of a valid bearer token.

    Implementations handle their own refresh. The sync engine only ever asks
    for a token and, after an HTTP 401, asks once more with force_refresh.
    """

    def get_valid_bearer_token(self, force_refresh=False):
        raise NotImplementedError

class StaticCredentialProvider(CredentialProvider):
    """Provider returning a fixed token."""

    def __init__(self, token):
        self.token = token

    def get_valid_bearer_token(self, force_refresh=False):
        if not self.token:
            raise AuthExpiredError("No upstream access token configured")
        return self.token

class SettingCredentialProvider(CredentialProvider):
    """Reads the token from the settings table, then from app config."""

    def __init__(self, setting_repository, config):
        self.setting_repository = setting_repository
        self.config = config

    def get_valid_bearer_token(self, force_refresh=False):
        if force_refresh:
            # Token refresh is owned by whoever writes the setting; re-reading
            # picks up a token rotated since the last call.
            log.info("Re-reading upstream access token after rejection")

        token = self.setting_repository.get(TOKEN_SETTING_KEY) or self.config.get("UPSTREAM_ACCESS_TOKEN")
        if not token:
            raise AuthExpiredError("No upstream access token configured")
        return token
