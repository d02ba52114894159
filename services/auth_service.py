import logging

from auth import create_access_token, verify_password
from gateway import SQLiteGateway
from results import ServiceResult

logger = logging.getLogger(__name__)


class AuthService:
    def __init__(self, gateway: SQLiteGateway) -> None:
        self._gateway = gateway

    def authenticate(self, username: str, password: str) -> ServiceResult[str]:
        """Check credentials and issue a bearer token.

        Unknown usernames and wrong passwords give the same NOT_FOUND result
        so callers cannot tell which one failed.
        """
        member = self._gateway.get_member_by_username(username or "")
        if member is None or not verify_password(password, member.password_hash):
            logger.warning(f"Failed login for '{username}'")
            return ServiceResult.not_found("Credentials", "Invalid credentials")
        logger.info(f"Member {member.id} logged in as {member.membership_type.value}")
        return ServiceResult.ok(create_access_token(member))
