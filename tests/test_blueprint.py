"""Tests for blueprint.py.

Tests that the protocol deployment description builds a valid plan with the
expected phases, arguments and capability wiring.
"""

import pytest

from forkdeploy.blueprint import build_plan, describe_deployment
from forkdeploy.config.models import DeploymentConfig, to_usd
from forkdeploy.engine import (
    CapabilityGrant,
    CollectingSink,
    DeploymentLedger,
    EngineContext,
    OrchestrationEngine,
    SimulatedBackend,
)


@pytest.fixture
def config(config_data):
    return DeploymentConfig.model_validate(config_data)


@pytest.fixture
def plan(config):
    return build_plan(config)


def labels(plan):
    return [step.label for step in plan.steps]


class TestPhases:
    """Tests for the phase layout."""

    def test_five_phases_in_order(self, plan):
        assert [p.name for p in plan.phases] == [
            "tokens",
            "core",
            "staking",
            "governance",
            "setup",
        ]

    def test_describe_is_pure(self, config):
        """Test the description is plain data and repeatable."""
        assert describe_deployment(config) == describe_deployment(config)

    def test_role_tokens_from_config(self, plan):
        token = plan.resources["governanceToken"]

        assert token.kind == "CustomGovernanceToken"
        assert token.constructor_args == ("Test Governance", "TGOV")

    def test_only_bonus_token_takes_initial_supply(self, plan):
        """Test the custom role tokens are built from name and symbol alone."""
        for resource_id in ("governanceToken", "liquidityToken", "escrowedToken"):
            assert len(plan.resources[resource_id].constructor_args) == 2

        assert plan.resources["bonusToken"].constructor_args == ("Bonus TGOV", "bnTGOV", 0)


class TestCorePhase:
    """Tests for trading infrastructure configuration."""

    def test_max_leverage_in_basis_points(self, plan):
        step = plan.step("p02.s11.configure.vault.setMaxLeverage")

        assert step.args == (10_000_000,)

    def test_strict_price_deviation(self, plan):
        step = next(s for s in plan.steps if s.method == "setMaxStrictPriceDeviation")

        assert step.args == (to_usd("0.5"),)

    def test_router_and_usdg_are_separate_steps(self, plan):
        """Test router registration and stable token assignment are distinct."""
        add_router = next(s for s in plan.steps if s.method == "addRouter")
        set_usdg = next(s for s in plan.steps if s.method == "setUsdg")

        assert add_router.step_id != set_usdg.step_id
        assert add_router.grant == CapabilityGrant("vault", "router", "router")
        assert set_usdg.grant is None

    def test_glp_manager_cooldown(self, plan):
        manager = plan.resources["glpManager"]

        assert manager.constructor_args[-1] == 900
        assert manager.references() == ["vault", "usdg", "liquidityToken", "shortsTracker"]


class TestStakingPhase:
    """Tests for trackers, vesters and handler wiring."""

    def test_claiming_mode_only_for_bonus_tracker(self, plan):
        claiming = [s.resource_id for s in plan.steps if s.method == "setInPrivateClaimingMode"]

        assert claiming == ["bonusTracker"]
        assert plan.resources["bonusTracker"].role == "bonus-tracker"

    def test_every_tracker_initialized(self, plan):
        trackers = [rid for rid, r in plan.resources.items() if r.kind == "RewardTracker"]
        initialized = {s.resource_id for s in plan.steps if s.method == "initialize"}

        assert len(trackers) == 5
        assert set(trackers) <= initialized

    def test_tracker_names_use_token_symbols(self, plan):
        assert plan.resources["stakedTracker"].constructor_args == ("Staked TGOV", "sTGOV")

    def test_vesting_duration(self, plan):
        vester = plan.resources["governanceVester"]

        assert vester.constructor_args[2] == 31536000

    def test_reward_router_handlers(self, plan):
        handlers = {
            g.grantor for g in plan.declared_grants if g.grantee == "rewardRouter"
        }

        assert handlers == {
            "glpManager",
            "stakedTracker",
            "bonusTracker",
            "feeTracker",
            "feeLiquidityTracker",
            "stakedLiquidityTracker",
            "governanceVester",
            "liquidityVester",
        }

    def test_tracker_chain(self, plan):
        """Test staked -> bonus -> fee chain grants are declared."""
        grants = set(plan.declared_grants)

        assert CapabilityGrant("stakedTracker", "bonusTracker", "handler") in grants
        assert CapabilityGrant("bonusTracker", "feeTracker", "handler") in grants
        assert CapabilityGrant("bonusToken", "bonusDistributor", "minter") in grants

    def test_chain_grants_ordered(self, plan):
        """Test a grant by X comes after the grants made to X."""
        positions = {s.step_id: s.position for s in plan.steps}
        for step in plan.steps:
            for dep in step.depends_on:
                assert positions[dep] < step.position


class TestSetupPhase:
    """Tests for supported tokens and governance handover."""

    def test_token_config_per_supported_token(self, plan):
        assert "vaultPriceFeed.setTokenConfig(USDC)" in labels(plan)
        assert "vault.setTokenConfig(WETH)" in labels(plan)

    def test_stable_token_flags(self, plan, config):
        step = next(s for s in plan.steps if s.label == "vault.setTokenConfig(USDC)")

        assert step.args[0] == config.supported_tokens[0].address
        assert step.args[1] == 6
        assert step.args[5] is True

    def test_governance_handover_last(self, plan):
        setup = plan.phases[-1]

        assert [s.method for s in setup.steps[-2:]] == ["setGov", "setGov"]
        assert {s.grant.grantee for s in setup.steps[-2:]} == {"timelock"}

    def test_no_supported_tokens(self, config_data):
        """Test the setup phase still hands over governance."""
        config_data["supportedTokens"] = []
        plan = build_plan(DeploymentConfig.model_validate(config_data))

        assert len(plan.phases[-1].steps) == 2


class TestBlueprintRun:
    """Tests running the full blueprint against the simulated backend."""

    def test_full_deployment(self, plan, tmp_path):
        backend = SimulatedBackend()
        ctx = EngineContext(
            backend=backend,
            ledger=DeploymentLedger(tmp_path / "ledger.json"),
            sink=CollectingSink(),
            sleep=lambda seconds: None,
        )

        result = OrchestrationEngine(ctx).run(plan)

        assert result.success
        assert len(result.executed) == len(plan.steps)
        assert backend.count("create") == len(plan.resources)
        assert set(result.grants) == set(plan.declared_grants)
