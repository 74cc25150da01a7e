"""
Partner commission rules.

Referral codes, commission amounts and the referral status machine
(pending -> converted -> paid). Nothing here touches the database.
"""
import secrets
import string
from decimal import ROUND_HALF_UP, Decimal

from errors import InvalidTransition
from models import ProjectStatus, Referral, ReferralStatus, utcnow

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_SUFFIX_LENGTH = 4
CENT = Decimal("0.01")

# project states in which the client is committed to pay
COMMITTED_PROJECT_STATUSES = frozenset({ProjectStatus.IN_PROGRESS, ProjectStatus.COMPLETED})

_TRANSITIONS = {
    ReferralStatus.PENDING: ReferralStatus.CONVERTED,
    ReferralStatus.CONVERTED: ReferralStatus.PAID,
}


def generate_referral_code(user_id: int, prefix: str = "PAR") -> str:
    """PAR + user id + 4 random [A-Z0-9], e.g. PAR17X3QZ."""
    suffix = "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_SUFFIX_LENGTH))
    return f"{prefix}{user_id}{suffix}"


def calculate_commission(price: Decimal, commission_rate: Decimal) -> Decimal:
    return (Decimal(price) * Decimal(commission_rate) / 100).quantize(CENT, rounding=ROUND_HALF_UP)


def conversion_rate(closed_sales: int, total_referrals: int) -> int:
    if total_referrals <= 0:
        return 0
    return int((Decimal(closed_sales) * 100 / total_referrals).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def advance(referral: Referral, target: ReferralStatus) -> None:
    """Move a referral one step forward. Raises InvalidTransition otherwise."""
    current = ReferralStatus(referral.status)
    if _TRANSITIONS.get(current) != target:
        raise InvalidTransition(f"Нельзя перевести реферал из статуса '{current.value}' в '{target.value}'")
    referral.status = target
    if target is ReferralStatus.CONVERTED:
        referral.converted_at = utcnow()
    elif target is ReferralStatus.PAID:
        referral.paid_at = utcnow()


def convert(referral: Referral, price: Decimal, commission_rate: Decimal) -> Decimal:
    advance(referral, ReferralStatus.CONVERTED)
    referral.commission_amount = calculate_commission(price, commission_rate)
    return referral.commission_amount
