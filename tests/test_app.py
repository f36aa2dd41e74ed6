"""
End-to-end tests for AuctionBot with a scripted chain client.
"""

from typing import List

import pytest

from ccabot.app import AuctionBot
from ccabot.auction.context import AuctionParams
from ccabot.auction.validator import BidSpec
from ccabot.core.json_utils import loads
from ccabot.errors import AttemptError, FetchError, InvariantError
from ccabot.execution.bid_state_machine import BidState, ExhaustReason
from ccabot.execution.execution_loop import StopReason
from ccabot.execution.head_source import BlockHead, PollingHeadSource
from conftest import OWNER


class ScriptedClient:
    """Auction reader + bid executor with no chain behind it."""

    supports_subscriptions = False

    def __init__(self, params: AuctionParams, failing_amounts=()):
        self.params = params
        self.failing_amounts = set(failing_amounts)
        self.sent: List[int] = []

    async def read_auction_params(self):
        return self.params

    async def current_head(self):
        return BlockHead(1)

    async def prepare(self, bid, ctx):
        return bid

    async def simulate(self, tx):
        if tx.amount in self.failing_amounts:
            raise AttemptError("simulate", "execution reverted")
        return tx

    async def send(self, tx):
        self.sent.append(tx.amount)
        return "0x" + format(len(self.sent), "064x")

    async def confirm(self, tx_hash):
        return 1


def _params(**overrides):
    values = dict(contributor_period_end_block=10, max_purchase_limit=None, floor_price=100,
                  tick_spacing=100, max_bid_price=300, end_block=15, total_purchased=0,
                  has_any_token=True)
    values.update(overrides)
    return AuctionParams(**values)


async def heads_from(numbers):
    for n in numbers:
        yield BlockHead(n)


class TestAuctionBot:
    @pytest.mark.asyncio
    async def test_full_run_writes_summary(self, tmp_path):
        client = ScriptedClient(_params(), failing_amounts={3})
        specs = [BidSpec(None, 1), BidSpec(299, 2), BidSpec(50, 4), BidSpec(None, 3)]
        bot = AuctionBot(client, specs, OWNER, summary_dir=tmp_path)

        reason = await bot.run(heads_from(range(10, 15)))

        assert reason == StopReason.ALL_BIDS_PROCESSED
        reg = bot.registry
        assert reg.frozen
        assert [r.state for r in reg] == [
            BidState.SUBMITTED, BidState.SUBMITTED, BidState.EXHAUSTED, BidState.EXHAUSTED,
        ]
        assert reg.get(2).exhaust_reason == ExhaustReason.VALIDATION
        assert reg.get(3).attempts == 3
        assert client.sent == [1, 2]

        assert bot.summary.submitted == 2
        data = loads(bot.summary_path.read_bytes())
        assert data["stop_reason"] == "all_bids_processed"
        assert len(data["bids"]) == 4
        assert len(bot.outcome_lines()) == 4

    @pytest.mark.asyncio
    async def test_fetch_error_propagates(self):
        client = ScriptedClient(_params(tick_spacing=0))
        bot = AuctionBot(client, [BidSpec(None, 1)], OWNER)
        with pytest.raises(FetchError):
            await bot.build()

    @pytest.mark.asyncio
    async def test_stop_request_before_first_head(self):
        client = ScriptedClient(_params())
        bot = AuctionBot(client, [BidSpec(None, 1)], OWNER)
        await bot.build()
        bot.request_stop()

        reason = await bot.run(heads_from([10]))

        assert reason == StopReason.SHUTDOWN_REQUESTED
        assert client.sent == []
        assert bot.summary.pending == 1

    @pytest.mark.asyncio
    async def test_registry_frozen_even_on_invariant_error(self):
        client = ScriptedClient(_params())

        async def empty_hash(tx):
            return ""

        client.send = empty_hash
        bot = AuctionBot(client, [BidSpec(None, 1)], OWNER)
        with pytest.raises(InvariantError):
            await bot.run(heads_from([10]))
        assert bot.registry.frozen
        assert bot.summary.total == 1

    def test_polling_source_for_http(self):
        bot = AuctionBot(ScriptedClient(_params()), [], OWNER)
        assert isinstance(bot.head_source(), PollingHeadSource)
