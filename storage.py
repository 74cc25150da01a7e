"""
Storage layer.

One Storage instance wraps one request-scoped SQLAlchemy session. Methods
that change state commit themselves, so a multi-step flow such as
registration is a single transaction.
"""
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from fastapi import Depends, Request
from loguru import logger
from sqlalchemy import desc, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import commissions
from config import Settings
from database import get_db
from errors import (
    DomainError,
    DuplicateEmail,
    DuplicatePartner,
    InvalidReferralCode,
    InvalidTransition,
    NotificationNotFound,
    PaymentNotFound,
    PartnerNotFound,
    ProjectNotFound,
    ReferralCodeExhausted,
    ReferralNotFound,
    TicketNotFound,
    UserNotFound,
)
from models import (
    Notification,
    NotificationType,
    Partner,
    Payment,
    PaymentStatus,
    Project,
    ProjectStatus,
    Referral,
    ReferralStatus,
    Ticket,
    User,
    UserRole,
    utcnow,
)
from schemas import AdminStats, PartnerStats, ReferralListItem

NOTIFICATIONS_LIMIT = 20


class Storage:
    def __init__(self, db: Session, settings: Settings):
        self.db = db
        self.settings = settings
        self._project_scopes: Dict[UserRole, Callable[[int], List[Project]]] = {
            UserRole.CLIENT: self._client_projects,
            UserRole.PARTNER: self._partner_projects,
            UserRole.ADMIN: self._all_projects,
        }

    # Users

    def get_user(self, user_id: int) -> Optional[User]:
        return self.db.get(User, user_id)

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(User.email == email).first()

    def list_users(self) -> List[User]:
        return self.db.query(User).order_by(desc(User.created_at), desc(User.id)).all()

    def register_user(
        self,
        email: str,
        hashed_password: str,
        full_name: str,
        role: UserRole,
        referral_code: Optional[str] = None,
    ) -> User:
        """
        Creates the user and, depending on the role, the partner record or the
        pending referral to the partner whose code was presented.
        """
        if self.get_user_by_email(email):
            raise DuplicateEmail()

        referrer = None
        if referral_code and role is not UserRole.CLIENT:
            raise InvalidReferralCode("Реферальный код доступен только клиентам")
        if referral_code:
            referrer = self.get_partner_by_referral_code(referral_code)
            if referrer is None:
                raise InvalidReferralCode()

        user = User(email=email, hashed_password=hashed_password, full_name=full_name, role=role, is_active=True)
        self.db.add(user)
        try:
            self.db.flush()
            if role is UserRole.PARTNER:
                self._insert_partner(user.id)
            elif referrer is not None:
                self._add_referral(referrer.id, user.id)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            if self.get_user_by_email(email):
                raise DuplicateEmail()
            raise
        except DomainError:
            self.db.rollback()
            raise
        self.db.refresh(user)
        logger.info("Registered user {} with role {}", user.id, user.role.value)
        return user

    def update_user(
        self,
        user_id: int,
        full_name: Optional[str] = None,
        is_active: Optional[bool] = None,
        hashed_password: Optional[str] = None,
    ) -> User:
        user = self.get_user(user_id)
        if user is None:
            raise UserNotFound()
        if full_name is not None:
            user.full_name = full_name
        if is_active is not None:
            user.is_active = is_active
        if hashed_password is not None:
            user.hashed_password = hashed_password
        user.updated_at = utcnow()
        self.db.commit()
        self.db.refresh(user)
        return user

    # Partner ledger

    def get_partner(self, user_id: int) -> Optional[Partner]:
        return self.db.query(Partner).filter(Partner.user_id == user_id).first()

    def get_partner_by_id(self, partner_id: int) -> Optional[Partner]:
        return self.db.get(Partner, partner_id)

    def get_partner_by_referral_code(self, code: str) -> Optional[Partner]:
        return self.db.query(Partner).filter(Partner.referral_code == code).first()

    def list_partners(self) -> List[Partner]:
        return self.db.query(Partner).order_by(desc(Partner.created_at), desc(Partner.id)).all()

    def create_partner(
        self,
        user_id: int,
        commission_rate: Optional[Decimal] = None,
        referral_code: Optional[str] = None,
    ) -> Partner:
        if self.get_user(user_id) is None:
            raise UserNotFound()
        # fast path; partners.user_id uniqueness is enforced by the table
        if self.get_partner(user_id) is not None:
            raise DuplicatePartner()
        try:
            partner = self._insert_partner(user_id, commission_rate, referral_code)
            self.db.commit()
        except DomainError:
            self.db.rollback()
            raise
        self.db.refresh(partner)
        return partner

    def _insert_partner(
        self,
        user_id: int,
        commission_rate: Optional[Decimal] = None,
        referral_code: Optional[str] = None,
    ) -> Partner:
        """Inserts inside a savepoint, regenerating the code on collision."""
        rate = commission_rate if commission_rate is not None else self.settings.default_commission_rate
        attempts = 1 if referral_code else self.settings.referral_code_attempts
        for attempt in range(1, attempts + 1):
            code = referral_code or commissions.generate_referral_code(user_id, self.settings.referral_code_prefix)
            partner = Partner(
                user_id=user_id,
                referral_code=code,
                commission_rate=Decimal(rate),
                total_earnings=Decimal("0.00"),
            )
            try:
                with self.db.begin_nested():
                    self.db.add(partner)
            except IntegrityError:
                if self.get_partner(user_id) is not None:
                    raise DuplicatePartner()
                logger.warning("Referral code {} collided (attempt {})", code, attempt)
                continue
            logger.info("Created partner for user {} with code {}", user_id, code)
            return partner
        raise ReferralCodeExhausted()

    # Referral tracker

    def get_referral(self, referral_id: int) -> Optional[Referral]:
        return self.db.get(Referral, referral_id)

    def create_referral(self, partner_id: int, client_id: int, project_id: Optional[int] = None) -> Referral:
        if self.get_partner_by_id(partner_id) is None:
            raise PartnerNotFound()
        if self.get_user(client_id) is None:
            raise UserNotFound()
        if project_id is not None and self.get_project(project_id) is None:
            raise ProjectNotFound()
        referral = self._add_referral(partner_id, client_id, project_id)
        self.db.commit()
        self.db.refresh(referral)
        return referral

    def _add_referral(self, partner_id: int, client_id: int, project_id: Optional[int] = None) -> Referral:
        referral = Referral(
            partner_id=partner_id,
            client_id=client_id,
            project_id=project_id,
            status=ReferralStatus.PENDING,
            commission_amount=Decimal("0.00"),
        )
        self.db.add(referral)
        self.db.flush()
        logger.info("Referral {}: partner {} -> client {}", referral.id, partner_id, client_id)
        return referral

    def list_referrals(self, partner_id: int) -> List[ReferralListItem]:
        rows = (
            self.db.query(
                Referral.id,
                Referral.status,
                Referral.commission_amount,
                Referral.created_at,
                User.full_name.label("client_name"),
                User.email.label("client_email"),
                Project.name.label("project_name"),
                Project.price.label("project_price"),
            )
            .outerjoin(User, Referral.client_id == User.id)
            .outerjoin(Project, Referral.project_id == Project.id)
            .filter(Referral.partner_id == partner_id)
            .order_by(desc(Referral.created_at), desc(Referral.id))
            .all()
        )
        return [ReferralListItem(**row._asdict()) for row in rows]

    def _link_project_referral(self, project: Project) -> None:
        if project.partner_id is None:
            referral = (
                self.db.query(Referral)
                .filter(
                    Referral.client_id == project.client_id,
                    Referral.project_id.is_(None),
                    Referral.status == ReferralStatus.PENDING,
                )
                .order_by(desc(Referral.created_at), desc(Referral.id))
                .first()
            )
            if referral is not None:
                referral.project_id = project.id
                project.partner_id = referral.partner_id
                self.db.flush()
            return

        referral = (
            self.db.query(Referral)
            .filter(
                Referral.partner_id == project.partner_id,
                Referral.client_id == project.client_id,
                Referral.project_id.is_(None),
                Referral.status == ReferralStatus.PENDING,
            )
            .order_by(desc(Referral.created_at), desc(Referral.id))
            .first()
        )
        if referral is not None:
            referral.project_id = project.id
            self.db.flush()
        else:
            self._add_referral(project.partner_id, project.client_id, project.id)

    def _convert_project_referrals(self, project: Project) -> List[Referral]:
        pending = (
            self.db.query(Referral)
            .filter(Referral.project_id == project.id, Referral.status == ReferralStatus.PENDING)
            .all()
        )
        for referral in pending:
            amount = commissions.convert(referral, project.price, referral.partner.commission_rate)
            self._add_notification(
                referral.partner.user_id,
                "Реферал конвертирован",
                f"Проект «{project.name}» подтверждён. Комиссия к выплате: {amount}",
                NotificationType.SUCCESS,
            )
            logger.info("Referral {} converted, commission {}", referral.id, amount)
        return pending

    def settle_referral(self, referral_id: int) -> Referral:
        """converted -> paid; credits the commission to the partner's earnings."""
        referral = self.get_referral(referral_id)
        if referral is None:
            raise ReferralNotFound()
        commissions.advance(referral, ReferralStatus.PAID)
        amount = referral.commission_amount or Decimal("0.00")

        # the status guard in the WHERE clause lets only one settlement win
        claimed = (
            self.db.query(Referral)
            .filter(Referral.id == referral.id, Referral.status == ReferralStatus.CONVERTED)
            .update(
                {Referral.status: ReferralStatus.PAID, Referral.paid_at: referral.paid_at},
                synchronize_session=False,
            )
        )
        if not claimed:
            self.db.rollback()
            raise InvalidTransition()
        self.db.query(Partner).filter(Partner.id == referral.partner_id).update(
            {Partner.total_earnings: Partner.total_earnings + amount},
            synchronize_session=False,
        )
        partner = referral.partner
        self._add_notification(
            partner.user_id,
            "Комиссия выплачена",
            f"Вам начислена комиссия {amount}",
            NotificationType.SUCCESS,
        )
        self.db.commit()
        self.db.refresh(referral)
        self.db.refresh(partner)
        logger.info("Referral {} settled, partner {} earnings {}", referral.id, partner.id, partner.total_earnings)
        return referral

    # Stats

    def get_partner_stats(self, partner_id: int) -> PartnerStats:
        partner = self.get_partner_by_id(partner_id)
        if partner is None:
            raise PartnerNotFound()
        total = (
            self.db.query(func.count(func.distinct(Referral.id)))
            .filter(Referral.partner_id == partner_id)
            .scalar()
        ) or 0
        closed = (
            self.db.query(func.count(func.distinct(Referral.id)))
            .filter(Referral.partner_id == partner_id, Referral.status == ReferralStatus.PAID)
            .scalar()
        ) or 0
        return PartnerStats(
            total_earnings=Decimal(partner.total_earnings or 0).quantize(commissions.CENT),
            active_referrals=total,
            closed_sales=closed,
            conversion_rate=commissions.conversion_rate(closed, total),
        )

    def get_admin_stats(self) -> AdminStats:
        month_start = utcnow().replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        total_users = self.db.query(func.count(User.id)).scalar() or 0
        active_partners = self.db.query(func.count(Partner.id)).scalar() or 0
        active_projects = (
            self.db.query(func.count(Project.id))
            .filter(Project.status.in_([ProjectStatus.PENDING, ProjectStatus.IN_PROGRESS]))
            .scalar()
        ) or 0
        revenue = (
            self.db.query(func.sum(Project.price))
            .filter(Project.status == ProjectStatus.COMPLETED, Project.completed_at >= month_start)
            .scalar()
        )
        return AdminStats(
            total_users=total_users,
            active_partners=active_partners,
            active_projects=active_projects,
            monthly_revenue=Decimal(revenue or 0).quantize(commissions.CENT),
        )

    # Project registry

    def get_projects(self, user_id: int, role: UserRole) -> List[Project]:
        try:
            scope = self._project_scopes[UserRole(role)]
        except (KeyError, ValueError):
            return []
        return scope(user_id)

    def _projects(self):
        return self.db.query(Project).order_by(desc(Project.created_at), desc(Project.id))

    def _client_projects(self, user_id: int) -> List[Project]:
        return self._projects().filter(Project.client_id == user_id).all()

    def _partner_projects(self, user_id: int) -> List[Project]:
        partner = self.get_partner(user_id)
        if partner is None:
            return []
        return self._projects().filter(Project.partner_id == partner.id).all()

    def _all_projects(self, user_id: int) -> List[Project]:
        return self._projects().all()

    def get_project(self, project_id: int) -> Optional[Project]:
        return self.db.get(Project, project_id)

    def create_project(self, client_id: int, **fields) -> Project:
        if self.get_user(client_id) is None:
            raise UserNotFound()
        partner_id = fields.get("partner_id")
        if partner_id is not None and self.get_partner_by_id(partner_id) is None:
            raise PartnerNotFound()

        project = Project(client_id=client_id, **fields)
        if project.status == ProjectStatus.COMPLETED:
            project.completed_at = utcnow()
        self.db.add(project)
        self.db.flush()
        self._link_project_referral(project)
        if project.status in commissions.COMMITTED_PROJECT_STATUSES:
            self._convert_project_referrals(project)
        self.db.commit()
        self.db.refresh(project)
        logger.info("Project {} created for client {}", project.id, client_id)
        return project

    def update_project(self, project_id: int, **updates) -> Project:
        project = self.get_project(project_id)
        if project is None:
            raise ProjectNotFound()
        for field, value in updates.items():
            setattr(project, field, value)
        if "status" in updates:
            if project.status == ProjectStatus.COMPLETED and project.completed_at is None:
                project.completed_at = utcnow()
            elif project.status != ProjectStatus.COMPLETED:
                project.completed_at = None
        project.updated_at = utcnow()
        if project.status in commissions.COMMITTED_PROJECT_STATUSES:
            self._convert_project_referrals(project)
        self.db.commit()
        self.db.refresh(project)
        return project

    # Tickets

    def get_tickets(self, user_id: int) -> List[Ticket]:
        return (
            self.db.query(Ticket)
            .filter(Ticket.user_id == user_id)
            .order_by(desc(Ticket.created_at), desc(Ticket.id))
            .all()
        )

    def get_ticket(self, ticket_id: int) -> Optional[Ticket]:
        return self.db.get(Ticket, ticket_id)

    def create_ticket(self, user_id: int, **fields) -> Ticket:
        project_id = fields.get("project_id")
        if project_id is not None and self.get_project(project_id) is None:
            raise ProjectNotFound()
        ticket = Ticket(user_id=user_id, **fields)
        self.db.add(ticket)
        self.db.commit()
        self.db.refresh(ticket)
        return ticket

    def update_ticket(self, ticket_id: int, **updates) -> Ticket:
        ticket = self.get_ticket(ticket_id)
        if ticket is None:
            raise TicketNotFound()
        for field, value in updates.items():
            setattr(ticket, field, value)
        ticket.updated_at = utcnow()
        self.db.commit()
        self.db.refresh(ticket)
        return ticket

    # Notifications

    def get_notifications(self, user_id: int) -> List[Notification]:
        return (
            self.db.query(Notification)
            .filter(Notification.user_id == user_id)
            .order_by(desc(Notification.created_at), desc(Notification.id))
            .limit(NOTIFICATIONS_LIMIT)
            .all()
        )

    def create_notification(
        self, user_id: int, title: str, message: str, type: NotificationType = NotificationType.INFO
    ) -> Notification:
        notification = self._add_notification(user_id, title, message, type)
        self.db.commit()
        self.db.refresh(notification)
        return notification

    def _add_notification(self, user_id: int, title: str, message: str, type: NotificationType) -> Notification:
        notification = Notification(user_id=user_id, title=title, message=message, type=type)
        self.db.add(notification)
        return notification

    def mark_notification_as_read(self, notification_id: int, user_id: int) -> None:
        notification = self.db.get(Notification, notification_id)
        if notification is None or notification.user_id != user_id:
            raise NotificationNotFound()
        notification.is_read = True
        self.db.commit()

    # Payments

    def create_payment(
        self,
        project_id: int,
        amount: Decimal,
        transaction_id: Optional[str] = None,
        payment_method: Optional[str] = None,
    ) -> Payment:
        if self.get_project(project_id) is None:
            raise ProjectNotFound()
        payment = Payment(
            project_id=project_id,
            amount=amount,
            status=PaymentStatus.PENDING,
            transaction_id=transaction_id,
            payment_method=payment_method,
        )
        self.db.add(payment)
        self.db.commit()
        self.db.refresh(payment)
        return payment

    def get_payment(self, payment_id: int) -> Optional[Payment]:
        return self.db.get(Payment, payment_id)

    def update_payment(
        self,
        payment_id: int,
        status: Optional[PaymentStatus] = None,
        transaction_id: Optional[str] = None,
        payment_method: Optional[str] = None,
    ) -> Payment:
        payment = self.get_payment(payment_id)
        if payment is None:
            raise PaymentNotFound()
        if transaction_id is not None:
            payment.transaction_id = transaction_id
        if payment_method is not None:
            payment.payment_method = payment_method
        if status is not None:
            payment.status = status
            if status is PaymentStatus.COMPLETED:
                self._convert_project_referrals(payment.project)
        self.db.commit()
        self.db.refresh(payment)
        logger.info("Payment {} is now {}", payment.id, payment.status.value)
        return payment

    # Demo data

    def seed_users(self, hash_password: Callable[[str], str]) -> None:
        demo = [
            ("admin@softwarepar.lat", "admin123", "Администратор SoftwarePar", UserRole.ADMIN),
            ("cliente@test.com", "cliente123", "Тестовый клиент", UserRole.CLIENT),
            ("partner@test.com", "partner123", "Тестовый партнёр", UserRole.PARTNER),
        ]
        for email, password, full_name, role in demo:
            if self.get_user_by_email(email) is None:
                self.register_user(email, hash_password(password), full_name, role)
                logger.info("Seeded demo user {}", email)


def get_storage(request: Request, db: Session = Depends(get_db)) -> Storage:
    return Storage(db, request.app.state.settings)
