"""Client credentials: the signed-in user and their bearer token."""

from karmafarm.core.domain_types import UserId


class StaticCredentials:
    """CredentialSource for a token obtained out of band (login flow, tests, scripts)."""

    def __init__(self, user_id: str, token: str):
        self._user_id = UserId(user_id)
        self._token = token

    async def get_bearer_token(self) -> str:
        return self._token

    def current_user_id(self) -> UserId:
        return self._user_id
