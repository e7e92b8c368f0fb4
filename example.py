import asyncio
import logging
import typing
from datetime import date, timedelta

from coda_mapper import CodaMapper, Entity, Identity, column, relation


class Plan(Entity):
    __table_id__ = "grid-plans"

    id: Identity[str]
    name: str = column("c-plan-name")
    discount: float = column("c-discount")


class Subscriber(Entity):
    __table_id__ = "grid-subscribers"

    id: Identity[str]
    name: str = column("c-name")
    plan: Plan = relation("c-plan", Plan)
    ends_at: date = column("c-ends-at")
    cancelled_at: date = column("c-cancelled-at")
    referred: typing.List["Subscriber"] = relation("c-referred", lambda: Subscriber, multiple=True)

    def subscribe(self, plan: Plan) -> None:
        self.plan = plan
        self.ends_at = date.today() + timedelta(days=30)

    def cancel(self) -> None:
        self.cancelled_at = date.today()


async def main() -> None:
    # reads CODA_DOC_ID and CODA_API_KEY
    async with CodaMapper.from_env() as mapper:
        plan = await mapper.first(Plan, "name", "Basic")

        subscriber = Subscriber(name="Seba")
        subscriber.subscribe(plan)
        await mapper.insert(subscriber)

        for other in await mapper.find(Subscriber, "plan", plan):
            referred = other.referred
            if isinstance(referred, asyncio.Task):
                referred = await referred
            print(other.name, [friend.name for friend in referred])

        subscriber.cancel()
        await subscriber.save_and_confirm()

        got_subscriber = await mapper.get(Subscriber, subscriber.row_id, latest=True)
        assert got_subscriber is subscriber, f"\n{got_subscriber}\n{subscriber}"


if __name__ == "__main__":
    logging.basicConfig(level=logging.DEBUG)
    asyncio.run(main())
