"""Property tests: payout and royalty status machines.

Random sequences of requested transitions are applied to a real payout on
a fresh database. Whatever the sequence, the payout only moves along
PAYOUT_TRANSITIONS, its splits are attached exactly while it is live, and
the recipient's balance stats follow the payout's status.
"""

import asyncio
import uuid
from datetime import date
from decimal import Decimal

from hypothesis import HealthCheck, given, settings, strategies as st

from distro.core.errors import InvalidTransition, ValidationError
from distro.models import (
    PAYOUT_TRANSITIONS,
    RELEASING_STATUSES,
    ROYALTY_TRANSITIONS,
    PayoutMethod,
    PayoutStatus,
    RoyaltyStatus,
)
from distro.services import payouts as payout_service
from distro.services import royalties as royalty_service
from distro.services import users as user_service
from distro.services.fx import FXService, StaticFXProvider
from distro.services.royalties import SplitSpec, validate_split_percentages

AMOUNTS = ("12.50", "8.00", "5.25")
TOTAL = Decimal("25.75")

# Expected (available, pending) per payout status
EXPECTED_STATS = {
    PayoutStatus.DRAFT: (Decimal("0"), TOTAL),
    PayoutStatus.PENDING: (Decimal("0"), TOTAL),
    PayoutStatus.PROCESSING: (Decimal("0"), TOTAL),
    PayoutStatus.PAID: (Decimal("0"), Decimal("0")),
    PayoutStatus.FAILED: (TOTAL, Decimal("0")),
    PayoutStatus.CANCELLED: (TOTAL, Decimal("0")),
    PayoutStatus.REVERSED: (TOTAL, Decimal("0")),
}


async def _walk(open_session, targets):
    fx = FXService(StaticFXProvider())
    async with open_session() as db:
        user = await user_service.create_user(db, email="walk@example.com", display_name="Walker")
        await payout_service.upsert_recipient(db, user.id, payment_method=PayoutMethod.PAYPAL)
        for amount in AMOUNTS:
            royalty = await royalty_service.create_royalty(
                db,
                track_id=uuid.uuid4(),
                store_name="Spotify",
                amount=Decimal(amount),
                currency="USD",
                period_start=date(2024, 1, 1),
                period_end=date(2024, 1, 31),
                fx=fx,
            )
            await royalty_service.process_royalty(
                db, royalty.id, [SplitSpec(recipient_id=user.id, percentage=Decimal("100"))]
            )

        payout = await payout_service.aggregate_payout(db, user.id, fx)
        status = payout.status

        for target in targets:
            allowed = target in PAYOUT_TRANSITIONS[status]
            try:
                payout = await payout_service.transition_payout(
                    db, payout.id, target, payment_reference="REF-1"
                )
            except InvalidTransition:
                assert not allowed
            else:
                assert allowed
                status = target

            attached = await payout_service.attached_split_count(db, payout.id)
            assert attached == (0 if status in RELEASING_STATUSES else len(AMOUNTS))
            assert (user.available_balance, user.pending_payouts) == EXPECTED_STATS[status]
            assert user.total_earnings == TOTAL

        return status


@settings(max_examples=25, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
@given(targets=st.lists(st.sampled_from(list(PayoutStatus)), max_size=8))
def test_random_transition_sequences_keep_invariants(isolated_session, targets):
    final = asyncio.run(_walk(isolated_session, targets))

    assert final in PayoutStatus


def test_terminal_payout_statuses_are_absorbing():
    for status in RELEASING_STATUSES:
        assert PAYOUT_TRANSITIONS[status] == frozenset()


def test_every_payout_status_reachable_from_draft():
    seen = {PayoutStatus.DRAFT}
    frontier = [PayoutStatus.DRAFT]
    while frontier:
        for nxt in PAYOUT_TRANSITIONS[frontier.pop()]:
            if nxt not in seen:
                seen.add(nxt)
                frontier.append(nxt)

    assert seen == set(PayoutStatus)


@given(walk=st.lists(st.sampled_from(list(RoyaltyStatus)), max_size=10))
def test_royalty_walks_never_leave_absorbing_states(walk):
    status = RoyaltyStatus.PENDING
    for target in walk:
        if target in ROYALTY_TRANSITIONS[status]:
            previous, status = status, target
            if status == RoyaltyStatus.PROCESSED:
                assert previous == RoyaltyStatus.PENDING

    if status in (RoyaltyStatus.VOID, RoyaltyStatus.DISPUTED):
        assert ROYALTY_TRANSITIONS[status] == frozenset()


percentages = st.decimals(min_value=-10, max_value=120, places=2, allow_nan=False, allow_infinity=False)


@given(st.lists(percentages, min_size=1, max_size=6))
def test_split_sets_accepted_only_when_applicable(values):
    specs = [SplitSpec(recipient_id=uuid.uuid4(), percentage=v) for v in values]
    applicable = all(Decimal("0") < v <= Decimal("100") for v in values) and sum(values) <= 100

    try:
        validate_split_percentages(specs)
    except ValidationError:
        assert not applicable
    else:
        assert applicable
