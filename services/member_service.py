import logging
import sqlite3
from typing import List, Optional

from auth import hash_password
from gateway import SQLiteGateway
from member import Member, MembershipType, normalize_username
from results import ServiceResult
from utils.validators import TextValidator

logger = logging.getLogger(__name__)


class MemberService:
    """Registration and maintenance of library members."""

    def __init__(self, gateway: SQLiteGateway) -> None:
        self._gateway = gateway

    def list_members(self) -> List[Member]:
        return self._gateway.list_members()

    def get_member(self, member_id: int) -> Optional[Member]:
        return self._gateway.get_member(member_id)

    def get_member_by_username(self, username: str) -> Optional[Member]:
        return self._gateway.get_member_by_username(username)

    def register_member(self, username: str, name: str, email: str, password: str,
                        membership_type: str) -> ServiceResult[Member]:
        try:
            tier = MembershipType.parse(membership_type)
        except ValueError as e:
            return ServiceResult.invalid(str(e))
        if not TextValidator.validate_username(username):
            return ServiceResult.invalid("Username must be 1-50 characters of letters, digits, '.', '_' or '-'.")
        if not TextValidator.validate_email(email):
            return ServiceResult.invalid("Email address is not valid.")
        if TextValidator.is_blank(password):
            return ServiceResult.invalid("Password is required.")

        try:
            member = Member(username=username, name=name, email=email,
                            password_hash=hash_password(password), membership_type=tier)
        except ValueError as e:
            return ServiceResult.invalid(str(e))

        def unit_of_work(gw: SQLiteGateway) -> ServiceResult[Member]:
            if gw.get_member_by_username(member.username) is not None:
                return ServiceResult.conflict(f"Username '{username}' is already taken.")
            return ServiceResult.ok(gw.save_member(member))

        try:
            result = self._gateway.run_in_transaction(unit_of_work)
        except sqlite3.IntegrityError as e:
            logger.warning(f"Member insert failed for {member.username}: {e}")
            return ServiceResult.conflict(f"Username '{username}' is already taken.")
        if result:
            logger.info(f"Member {member.id} registered: {member.username} ({tier.value})")
        else:
            logger.warning(f"Registration rejected for {normalize_username(username)}: {result.message}")
        return result

    def update_member(self, member_id: int, name: Optional[str] = None, email: Optional[str] = None,
                      password: Optional[str] = None,
                      membership_type: Optional[str] = None) -> ServiceResult[Member]:
        """Partial update. Blank values are ignored, as are fields left out."""
        tier = None
        if not TextValidator.is_blank(membership_type):
            try:
                tier = MembershipType.parse(membership_type)
            except ValueError as e:
                return ServiceResult.invalid(str(e))
        if not TextValidator.is_blank(email) and not TextValidator.validate_email(email):
            return ServiceResult.invalid("Email address is not valid.")
        new_hash = hash_password(password) if not TextValidator.is_blank(password) else None

        def unit_of_work(gw: SQLiteGateway) -> ServiceResult[Member]:
            member = gw.get_member(member_id)
            if member is None:
                return ServiceResult.not_found("Member", f"Member with ID {member_id} not found.")
            member.update(name=name, email=email, password_hash=new_hash, membership_type=tier)
            return ServiceResult.ok(gw.save_member(member))

        result = self._gateway.run_in_transaction(unit_of_work)
        if result:
            logger.info(f"Member {member_id} updated")
        return result

    def delete_member(self, member_id: int) -> ServiceResult[bool]:
        """Delete a member unless a loan still refers to them."""

        def unit_of_work(gw: SQLiteGateway) -> ServiceResult[bool]:
            if gw.get_member(member_id) is None:
                return ServiceResult.not_found("Member", f"Member with ID {member_id} not found.")
            if gw.count_loans_for_member(member_id) > 0:
                return ServiceResult.conflict("Member cannot be deleted while loans refer to them.")
            return ServiceResult.ok(gw.delete_member(member_id))

        result = self._gateway.run_in_transaction(unit_of_work)
        if result:
            logger.info(f"Member {member_id} deleted")
        else:
            logger.warning(f"Delete rejected for member {member_id}: {result.message}")
        return result
