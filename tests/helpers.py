"""Shared builders for the test suite."""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select

from src.core.database import unit_of_work
from src.core.tenancy import TenantContext
from src.modules.appointments.service import AppointmentService
from src.modules.authz.actor import Actor, load_actor
from src.modules.credits.service import CreditService
from src.modules.jobs.queue import RecordingJobQueue
from src.modules.organizations.service import create_organization
from src.modules.schedule.service import AvailabilityResolver
from src.modules.users.models import Professional, User
from src.modules.users.service import UserService
from src.shared.enums import RoleKey, Weekday

# Sunday morning; the clinic works Mondays 09:00-17:00 UTC.
BASE_NOW = datetime(2030, 1, 6, 9, 0, tzinfo=timezone.utc)
MONDAY = date(2030, 1, 7)
PLATFORM = Actor(user_id="platform-operator", organization_id="", platform_operator=True)


def at(hour: int, minute: int = 0, day: date = MONDAY) -> datetime:
    return datetime.combine(day, time(hour, minute), timezone.utc)


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)

    def set(self, value: datetime) -> None:
        self.now = value


@dataclass
class Clinic:
    db: object
    clock: FrozenClock
    organization_id: str
    admin: Actor
    secretary: Actor
    professional: Actor
    client: Actor
    other_client: Actor
    profile_id: str
    jobs: RecordingJobQueue

    def tenant(self, actor: Actor) -> TenantContext:
        return TenantContext(organization_id=self.organization_id, actor=actor)

    def appointments(self, actor: Actor) -> AppointmentService:
        return AppointmentService(self.db, self.tenant(actor), self.jobs, self.clock)

    def credits(self, actor: Actor) -> CreditService:
        return CreditService(self.db, self.tenant(actor), self.clock)

    def users(self, actor: Actor) -> UserService:
        return UserService(self.db, self.tenant(actor), self.clock)

    def resolver(self, actor: Actor | None = None) -> AvailabilityResolver:
        return AvailabilityResolver(self.db, self.tenant(actor or self.admin), self.clock)

    async def get_profile(self) -> Professional:
        result = await self.db.execute(select(Professional).where(Professional.professional_id == self.profile_id))
        return result.scalar_one()

    async def reload(self, actor: Actor) -> Actor:
        result = await self.db.execute(select(User).where(User.user_id == actor.user_id))
        return await load_actor(self.db, result.scalar_one())


async def build_clinic(db, subdomain: str, clock: FrozenClock) -> Clinic:
    organization = await create_organization(
        db,
        PLATFORM,
        f"{subdomain.title()} Clinic",
        subdomain,
        admin={"email": f"admin@{subdomain}.test", "first_name": "Ada", "last_name": "Admin"},
    )
    result = await db.execute(
        select(User).where(User.organization_id == organization.organization_id, User.email == f"admin@{subdomain}.test")
    )
    admin = await load_actor(db, result.scalar_one())
    users = UserService(db, TenantContext(organization.organization_id, admin))

    async def make(email: str, first_name: str, role: RoleKey) -> Actor:
        user = await users.create_user(f"{email}@{subdomain}.test", first_name, "Tester", role_key=role)
        return await load_actor(db, user)

    secretary = await make("desk", "Sam", RoleKey.SECRETARY)
    professional = await make("pro", "Pat", RoleKey.PROFESSIONAL)
    client = await make("client", "Cleo", RoleKey.CLIENT)
    other_client = await make("client2", "Cody", RoleKey.CLIENT)

    profile = await users.create_professional(professional.user_id, hourly_rate=Decimal("60.00"))
    resolver = AvailabilityResolver(db, TenantContext(organization.organization_id, admin), clock)
    async with unit_of_work(db):
        await resolver.create_rule(profile, int(Weekday.MONDAY), time(9, 0), time(17, 0))

    return Clinic(
        db=db,
        clock=clock,
        organization_id=organization.organization_id,
        admin=admin,
        secretary=secretary,
        professional=professional,
        client=client,
        other_client=other_client,
        profile_id=profile.professional_id,
        jobs=RecordingJobQueue(),
    )
