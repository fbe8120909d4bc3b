"""
Tests for configuration, the bot wiring and the command line
"""

import asyncio

import pytest

from conftest import LEADER, RecordingSink, TOKEN_IN, UNIT, feed_block, tokens_swap_tx
from swapmirror.bot import CopyTradingBot, build_output_protection, build_policy
from swapmirror.cli import main
from swapmirror.config import ReplicatorConfig
from swapmirror.executor import AcceptAnyOutput, DryRunExecutor, MatchLeaderLimit, ReplicationExecutor, SlippageTolerance
from swapmirror.scaler import CappedPolicy, FixedFractionPolicy
from swapmirror.storage import SqliteStore
from swapmirror.types import LeaderState

ENV_VARS = (
    "RPC_URL", "RPC_URLS", "ROUTER_ADDRESS", "COPY_BPS", "MAX_REPLICA_AMOUNT", "OUTPUT_PROTECTION",
    "MAX_SLIPPAGE_BPS", "WORKERS", "DB_PATH", "SWAPMIRROR_MASTER_SECRET", "TELEGRAM_BOT_TOKEN",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("LOG_FILE", "")
    return monkeypatch


@pytest.fixture
def config(tmp_path):
    return ReplicatorConfig(master_secret="master", db_path=str(tmp_path / "bot.sqlite"))


@pytest.fixture
def bot(config, chain, vault):
    return CopyTradingBot(config, chain=chain, notifier=RecordingSink(), vault=vault)


class TestReplicatorConfig:
    """Tests for ReplicatorConfig."""

    def test_defaults(self):
        config = ReplicatorConfig()
        assert config.copy_bps == 1000
        assert config.output_protection == "slippage"
        assert config.router_address == "0x7a250d5630B4cF539739dF2C5dAcb4c659F2488D"

    def test_from_env(self, clean_env):
        clean_env.setenv("RPC_URL", "http://localhost:8545")
        clean_env.setenv("COPY_BPS", "500")
        clean_env.setenv("OUTPUT_PROTECTION", "LEADER")
        clean_env.setenv("SWAPMIRROR_MASTER_SECRET", "m")

        config = ReplicatorConfig.from_env()

        assert config.rpc_urls[0] == "http://localhost:8545"
        assert config.copy_bps == 500
        assert config.output_protection == "leader"
        assert config.master_secret == "m"
        assert config.validate() == []

    def test_secrets_hidden_from_repr(self):
        config = ReplicatorConfig(master_secret="hunter2", telegram_bot_token="tok")
        assert "hunter2" not in repr(config)
        assert "tok" not in repr(config)

    def test_validate_reports_problems(self):
        config = ReplicatorConfig(rpc_urls=[], copy_bps=0, output_protection="maybe", workers=0)
        problems = config.validate()
        assert len(problems) == 5


class TestBuilders:
    """Policy construction from config."""

    def test_policy(self):
        assert build_policy(ReplicatorConfig(copy_bps=2000)) == FixedFractionPolicy(2000)
        assert isinstance(build_policy(ReplicatorConfig(max_replica_amount=10)), CappedPolicy)

    @pytest.mark.parametrize("name, expected", [
        ("slippage", SlippageTolerance),
        ("leader", MatchLeaderLimit),
        ("none", AcceptAnyOutput),
    ])
    def test_output_protection(self, name, expected):
        assert isinstance(build_output_protection(ReplicatorConfig(output_protection=name)), expected)

    def test_unknown_output_protection(self):
        with pytest.raises(ValueError):
            build_output_protection(ReplicatorConfig(output_protection="maybe"))


class TestCopyTradingBot:
    """Onboarding and wiring."""

    def test_invalid_config_rejected(self, chain):
        with pytest.raises(ValueError, match="SWAPMIRROR_MASTER_SECRET"):
            CopyTradingBot(ReplicatorConfig(), chain=chain)

    def test_dry_run_by_default(self, bot, config, chain, vault):
        assert isinstance(bot.executor, DryRunExecutor)
        live = CopyTradingBot(config, live_mode=True, chain=chain, notifier=RecordingSink(), vault=vault)
        assert type(live.executor) is ReplicationExecutor

    @pytest.mark.asyncio
    async def test_provision_is_idempotent(self, bot):
        record = await bot.provision("f1")
        again = await bot.provision("f1")

        assert again == record
        assert len(bot.notifier.for_recipient("f1")) == 1
        assert "Wallet setup complete" in bot.notifier.for_recipient("f1")[0]

    @pytest.mark.asyncio
    async def test_follow_requires_wallet(self, bot):
        with pytest.raises(ValueError, match="no wallet"):
            await bot.follow("f1", LEADER)

    @pytest.mark.asyncio
    async def test_follow_and_unfollow(self, bot):
        await bot.provision("f1")

        assert await bot.follow("f1", LEADER.lower())
        assert not await bot.follow("f1", LEADER)
        assert await bot.copied_addresses("f1") == frozenset({LEADER})
        assert bot.watcher.state_of(LEADER) == LeaderState.SUBSCRIBED

        assert await bot.unfollow("f1", LEADER)
        assert not await bot.unfollow("f1", LEADER)
        assert bot.watcher.state_of(LEADER) == LeaderState.UNSUBSCRIBED

    @pytest.mark.asyncio
    async def test_leader_kept_while_others_follow(self, bot):
        await bot.provision("f1")
        await bot.provision("f2")
        await bot.follow("f1", LEADER)
        await bot.follow("f2", LEADER)

        await bot.unfollow("f1", LEADER)
        assert bot.watcher.state_of(LEADER) == LeaderState.SUBSCRIBED

    @pytest.mark.asyncio
    async def test_dry_run_replication_end_to_end(self, bot, chain):
        record = await bot.provision("f1")
        await bot.follow("f1", LEADER)
        chain.fund(record.wallet_address, TOKEN_IN, amount=100 * UNIT)

        await bot.watcher.start()
        try:
            await bot.watcher.handle_transaction(tokens_swap_tx(100 * UNIT))
            await bot.watcher.drain()
        finally:
            await bot.close()

        attempt = bot.watcher.recent_attempts[0]
        assert attempt.success
        assert attempt.tx_hash.startswith("0x_dryrun_")
        assert chain.sent == []

    @pytest.mark.asyncio
    async def test_running_bot_picks_up_follows_from_another_process(self, bot, config, chain, vault):
        await bot.watcher.start()
        try:
            assert bot.watcher.tracked_addresses() == []

            # Same database, as used by the command line while `run` is active
            cli_side = CopyTradingBot(config, chain=chain, notifier=RecordingSink(), vault=vault)
            record = await cli_side.provision("f1")
            await cli_side.follow("f1", LEADER)
            chain.fund(record.wallet_address, TOKEN_IN, amount=100 * UNIT)

            chain.feed.append(feed_block(60))
            for _ in range(200):
                if bot.watcher.state_of(LEADER) == LeaderState.SUBSCRIBED:
                    break
                await asyncio.sleep(0.01)

            intent = await bot.watcher.handle_transaction(tokens_swap_tx(100 * UNIT))
            await bot.watcher.drain()
        finally:
            await bot.close()

        assert intent is not None
        assert bot.watcher.recent_attempts[0].success
        assert bot.notifier.for_recipient("f1")[-1].startswith("🔔 Replicated trade")

    def test_status(self, bot):
        status = bot.get_status()
        assert status["live_mode"] is False
        assert status["copy_bps"] == 1000
        assert status["watcher"]["tracked_leaders"] == 0


class TestCli:
    """Tests for the command line entry point."""

    def test_no_command_prints_help(self, clean_env, capsys):
        assert main([]) == 0
        assert "swapmirror" in capsys.readouterr().out

    def test_status(self, clean_env):
        assert main(["status"]) == 0

    def test_missing_master_secret_fails(self, clean_env, tmp_path):
        clean_env.setenv("DB_PATH", str(tmp_path / "cli.sqlite"))
        assert main(["provision", "f1"]) == 1

    def test_provision_follow_list(self, clean_env, tmp_path):
        db_path = tmp_path / "cli.sqlite"
        clean_env.setenv("DB_PATH", str(db_path))
        clean_env.setenv("SWAPMIRROR_MASTER_SECRET", "master")

        assert main(["provision", "f1"]) == 0
        assert main(["follow", "f1", LEADER]) == 0
        assert main(["list", "f1"]) == 0
        assert main(["follow", "f1", "not-an-address"]) == 1

    def test_cli_writes_shared_database(self, clean_env, tmp_path):
        db_path = tmp_path / "cli.sqlite"
        clean_env.setenv("DB_PATH", str(db_path))
        clean_env.setenv("SWAPMIRROR_MASTER_SECRET", "master")

        assert main(["provision", "f1"]) == 0
        store = SqliteStore(str(db_path))
        record = asyncio.run(store.get("f1"))
        assert record is not None
        assert record.encrypted_key.startswith("v1.")

    @pytest.mark.parametrize("flag", ["--workers", "--copy-bps"])
    def test_zero_override_is_validated(self, clean_env, tmp_path, flag):
        clean_env.setenv("DB_PATH", str(tmp_path / "cli.sqlite"))
        clean_env.setenv("SWAPMIRROR_MASTER_SECRET", "master")

        assert main(["run", flag, "0"]) == 1
