# tests/unit/test_security_analyzer.py
"""
Unit tests for the base security analyzer
"""
import pytest

from analysis.models import (AuthorityAnalysis, FlagCollector, GreenFlag, HolderAccount, PoolInfo, RiskLevel,
                             Severity, TokenTransaction)
from analysis.security_analyzer import (BaseSecurityAnalyzer, analyze_authorities, analyze_holders,
                                        analyze_liquidity, analyze_trading_patterns, detect_bundle,
                                        risk_level_for)
from data.collectors.chain_data import HolderSnapshot
from tests.conftest import fast_executor
from tests.fixtures.mock_data import (HEALTHY_TOKEN, INVALID_TOKENS, LAUNCH_SLOT, FakeChainClient,
                                      MockDataGenerator)
from utils.errors import InvalidTokenAddressError


def categories(flags, severity=None):
    return {f.category for f in flags.red_flags if severity is None or f.severity == severity}


@pytest.mark.unit
class TestAuthorities:

    def test_revoked_authorities(self):
        flags = FlagCollector()
        result = analyze_authorities(MockDataGenerator.mint_info(), flags)
        assert result.score == 100
        assert result.risk_level == RiskLevel.LOW
        assert result.is_revoked
        assert not flags.red_flags
        assert flags.green_flags[0].score_boost == 10

    def test_revoked_state_is_serialized(self):
        result = analyze_authorities(MockDataGenerator.mint_info(mint=True), FlagCollector())
        dumped = result.model_dump(mode='json')
        assert dumped['is_revoked'] is False
        assert AuthorityAnalysis.model_validate(dumped) == result

    @pytest.mark.parametrize("mint,freeze,score,risk,severity", [
        (True, True, 0, RiskLevel.CRITICAL, Severity.CRITICAL),
        (True, False, 20, RiskLevel.HIGH, Severity.HIGH),
        (False, True, 60, RiskLevel.MEDIUM, Severity.MEDIUM),
    ])
    def test_active_authorities(self, mint, freeze, score, risk, severity):
        flags = FlagCollector()
        result = analyze_authorities(MockDataGenerator.mint_info(mint, freeze), flags)
        assert result.score == score
        assert result.risk_level == risk
        assert flags.red_flags[0].severity == severity


@pytest.mark.unit
class TestHolders:

    def test_healthy_distribution(self, policy):
        flags = FlagCollector()
        result = analyze_holders(MockDataGenerator.holder_snapshot(), policy, flags)
        assert result.score == 100
        assert result.concentration_risk == RiskLevel.LOW
        assert result.top10_holders_percent < 15
        assert not result.bundle_detected
        assert not flags.red_flags

    def test_pool_accounts_are_excluded(self, policy):
        flags = FlagCollector()
        result = analyze_holders(MockDataGenerator.holder_snapshot(), policy, flags)
        # the 20% pool account would otherwise dominate the top 10
        assert result.top10_holders_percent < 20

    def test_concentrated_bundled_launch(self, policy):
        flags = FlagCollector()
        result = analyze_holders(MockDataGenerator.holder_snapshot(healthy=False), policy, flags)
        assert result.concentration_risk == RiskLevel.CRITICAL
        assert result.score == 0
        assert result.bundle_detected
        assert result.bundle_wallets == 9
        assert 'Bundle' in categories(flags, Severity.HIGH)
        assert 'Holders' in categories(flags, Severity.CRITICAL)

    def test_creator_defaults_to_top_wallet(self, policy):
        snapshot = HolderSnapshot(holders=[
            HolderAccount(owner="whale", percent=12.0),
            HolderAccount(owner="minnow", percent=1.0),
        ])
        result = analyze_holders(snapshot, policy, FlagCollector())
        assert result.creator_address == "whale"
        assert result.creator_percent == 12.0

    def test_empty_holder_list_degrades(self, policy):
        flags = FlagCollector()
        result = analyze_holders(HolderSnapshot(holders=[]), policy, flags)
        assert result.degraded
        assert result.score == 50
        assert flags.notes and not flags.red_flags

    def test_detect_bundle_counts_shared_slots_only(self):
        holders = [
            HolderAccount(owner="a", first_acquired_slot=10),
            HolderAccount(owner="b", first_acquired_slot=10),
            HolderAccount(owner="c", first_acquired_slot=11),
            HolderAccount(owner="d", first_acquired_slot=None),
        ]
        assert detect_bundle(holders) == 2


@pytest.mark.unit
class TestLiquidity:

    def test_no_pool_is_critical(self, policy):
        flags = FlagCollector()
        result = analyze_liquidity([], policy, flags)
        assert result.risk_level == RiskLevel.CRITICAL
        assert result.score == 0

    def test_burned_deep_pool(self, policy):
        flags = FlagCollector()
        result = analyze_liquidity(MockDataGenerator.pools(), policy, flags)
        assert result.score == 100
        assert result.lp_burned
        assert result.liquidity_usd == 360_000.0
        assert not flags.red_flags

    def test_unprotected_pool_is_flagged(self, policy):
        flags = FlagCollector()
        pool = PoolInfo(address="p", sol_reserve=30.0)
        result = analyze_liquidity([pool], policy, flags)
        assert result.risk_level == RiskLevel.MEDIUM
        assert result.score == 55
        assert not result.is_protected
        assert 'Liquidity' in categories(flags, Severity.MEDIUM)

    def test_locked_pool_is_protected(self, policy):
        flags = FlagCollector()
        result = analyze_liquidity([PoolInfo(address="p", sol_reserve=30.0, lp_locked=True)], policy, flags)
        assert result.lp_locked
        assert result.is_protected
        assert result.score == 85
        assert [(f.message, f.score_boost) for f in flags.green_flags] == [('LP tokens locked', 10)]

    def test_green_flag_boosts(self):
        assert GreenFlag(category='Social', message='links').score_boost == 2
        assert GreenFlag(category='Elsewhere', message='x').score_boost == 0
        assert GreenFlag(category='Social', message='links', score_boost=7).score_boost == 7

    def test_tiny_pool_is_critical(self, policy):
        flags = FlagCollector()
        result = analyze_liquidity(MockDataGenerator.pools(healthy=False), policy, flags)
        assert result.risk_level == RiskLevel.CRITICAL
        assert result.score == 10


@pytest.mark.unit
class TestTradingPatterns:

    def test_balanced_flow(self, policy):
        flags = FlagCollector()
        result = analyze_trading_patterns(MockDataGenerator.balanced_transactions(), LAUNCH_SLOT, policy, flags)
        assert result.score == 100
        assert not result.honeypot_detected
        assert result.can_sell is True
        assert result.unique_traders == 30

    def test_honeypot(self, policy):
        flags = FlagCollector()
        result = analyze_trading_patterns(MockDataGenerator.honeypot_transactions(), LAUNCH_SLOT, policy, flags)
        assert result.honeypot_detected
        assert result.can_sell is False
        assert result.risk_level == RiskLevel.CRITICAL
        assert 'Honeypot' in categories(flags, Severity.CRITICAL)

    def test_ten_buys_without_sells_is_not_a_honeypot(self, policy):
        result = analyze_trading_patterns(
            MockDataGenerator.honeypot_transactions(count=10), LAUNCH_SLOT, policy, FlagCollector())
        assert not result.honeypot_detected

    def test_snipers(self, policy):
        txs = [
            TokenTransaction(signature=f"s{i}", slot=LAUNCH_SLOT + 1, wallet=f"sniper{i}", side='buy')
            for i in range(6)
        ] + [TokenTransaction(signature="x", slot=LAUNCH_SLOT + 500, wallet="late", side='sell')]
        flags = FlagCollector()
        result = analyze_trading_patterns(txs, LAUNCH_SLOT, policy, flags)
        assert result.snipers == 6
        assert result.bundle_bots == 5
        assert 'Snipers' in categories(flags)

    def test_empty_history_degrades(self, policy):
        flags = FlagCollector()
        result = analyze_trading_patterns([], LAUNCH_SLOT, policy, flags)
        assert result.degraded
        assert result.score == 50
        assert flags.notes


@pytest.mark.unit
class TestBaseSecurityAnalyzer:

    @pytest.fixture
    def make_analyzer(self, policy):
        def _make(chain):
            return BaseSecurityAnalyzer(chain, fast_executor('chain'), policy)
        return _make

    @pytest.mark.asyncio
    async def test_healthy_token(self, make_analyzer):
        report = await make_analyzer(FakeChainClient()).analyze(HEALTHY_TOKEN)
        assert report.security_score == 100
        assert report.risk_level == RiskLevel.LOW
        assert not report.red_flags
        assert not report.low_confidence
        assert report.metadata.symbol == "HLTH"

    @pytest.mark.asyncio
    async def test_honeypot_forces_critical(self, make_analyzer):
        chain = FakeChainClient(transactions=MockDataGenerator.honeypot_transactions())
        report = await make_analyzer(chain).analyze(HEALTHY_TOKEN)
        assert report.risk_level == RiskLevel.CRITICAL

    @pytest.mark.asyncio
    async def test_failed_check_degrades_to_neutral(self, make_analyzer):
        chain = FakeChainClient(fail=('holders',))
        report = await make_analyzer(chain).analyze(HEALTHY_TOKEN)
        assert report.holder_distribution.degraded
        assert report.holder_distribution.score == 50
        assert not report.low_confidence
        assert any(n.category == 'Holders' for n in report.notes)

    @pytest.mark.asyncio
    async def test_all_checks_failing_is_low_confidence(self, make_analyzer):
        report = await make_analyzer(FakeChainClient(fail=('all',))).analyze(HEALTHY_TOKEN)
        assert report.low_confidence
        assert report.security_score == 50
        assert report.metadata.symbol == "UNKNOWN"
        assert not report.red_flags

    @pytest.mark.asyncio
    async def test_mint_account_read_once(self, make_analyzer):
        chain = FakeChainClient()
        await make_analyzer(chain).analyze(HEALTHY_TOKEN)
        assert chain.calls['authorities'] == 1
        assert sorted(chain.given_mint_info) == ['holders', 'metadata']

    @pytest.mark.asyncio
    async def test_failed_authority_read_is_not_shared(self, make_analyzer):
        chain = FakeChainClient(fail=('authorities',))
        report = await make_analyzer(chain).analyze(HEALTHY_TOKEN)
        assert report.authorities.degraded
        assert not report.holder_distribution.degraded
        assert chain.given_mint_info == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("address", INVALID_TOKENS)
    async def test_invalid_address(self, make_analyzer, address):
        chain = FakeChainClient()
        with pytest.raises(InvalidTokenAddressError):
            await make_analyzer(chain).analyze(address)
        assert chain.calls == {}

    @pytest.mark.parametrize("score,risk", [
        (100, RiskLevel.LOW), (80, RiskLevel.LOW), (79, RiskLevel.MEDIUM),
        (60, RiskLevel.MEDIUM), (40, RiskLevel.HIGH), (39, RiskLevel.CRITICAL),
    ])
    def test_risk_level_thresholds(self, score, risk):
        assert risk_level_for(score) == risk
