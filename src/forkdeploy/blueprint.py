"""
Deployment blueprint for the protocol fork.

Declares the five deployment phases (tokens, core, staking, governance,
setup) as data. Ordering between steps comes from resource references and
grant chains; PlanBuilder validates it before anything is created.
"""

from __future__ import annotations

from typing import List, Tuple

from forkdeploy.config.models import DeploymentConfig, to_usd
from forkdeploy.engine.models import Plan, ref
from forkdeploy.engine.plan_builder import (
    PhaseSpec,
    PlanBuilder,
    StepSpec,
    configure,
    grant,
    phase,
    provision,
)

# Resource role tags; behavior dispatches on these, never on names.
BONUS_TRACKER = "bonus-tracker"
STAKED_TRACKER = "staked-tracker"
FEE_TRACKER = "fee-tracker"

HANDLER = "handler"
MINTER = "minter"
ROUTER = "router"
GOV = "gov"

MAX_STRICT_PRICE_DEVIATION_USD = "0.5"
PRICE_SAMPLE_SPACE = 3


def describe_deployment(config: DeploymentConfig) -> List[PhaseSpec]:
    """Declarative phase/step description for one deployment."""
    return [
        token_phase(config),
        core_phase(config),
        staking_phase(config),
        governance_phase(config),
        setup_phase(config),
    ]


def build_plan(config: DeploymentConfig) -> Plan:
    """Build the validated deployment plan for a configuration."""
    return PlanBuilder().build(describe_deployment(config))


def token_phase(config: DeploymentConfig) -> PhaseSpec:
    tokens = config.tokens
    return phase(
        "tokens",
        provision(
            "governanceToken",
            "CustomGovernanceToken",
            [tokens.governance.name, tokens.governance.symbol],
            role="governance-token",
        ),
        provision(
            "liquidityToken",
            "CustomLiquidityToken",
            [tokens.liquidity.name, tokens.liquidity.symbol],
            role="liquidity-token",
        ),
        provision(
            "escrowedToken",
            "CustomEscrowedToken",
            [tokens.escrowed.name, tokens.escrowed.symbol],
            role="escrowed-token",
        ),
        provision(
            "bonusToken",
            "MintableBaseToken",
            [tokens.bonus.name, tokens.bonus.symbol, tokens.bonus.initial_supply],
            role="bonus-token",
        ),
        configure("governanceToken", "setInPrivateTransferMode", [True]),
        configure("liquidityToken", "setInPrivateTransferMode", [True]),
        configure("escrowedToken", "setInPrivateTransferMode", [True]),
        description="Deploy role tokens",
    )


def core_phase(config: DeploymentConfig) -> PhaseSpec:
    native = config.network.native_token.address
    settings = config.settings
    fees = config.fees
    return phase(
        "core",
        provision("vault", "Vault"),
        provision("usdg", "USDG", [ref("vault")]),
        provision("router", "Router", [ref("vault"), ref("usdg"), native]),
        provision("vaultPriceFeed", "VaultPriceFeed"),
        configure(
            "vaultPriceFeed",
            "setMaxStrictPriceDeviation",
            [to_usd(MAX_STRICT_PRICE_DEVIATION_USD)],
        ),
        configure("vaultPriceFeed", "setPriceSampleSpace", [PRICE_SAMPLE_SPACE]),
        configure("vaultPriceFeed", "setIsAmmEnabled", [False]),
        provision("shortsTracker", "ShortsTracker", [ref("vault")]),
        provision(
            "glpManager",
            "GlpManager",
            [
                ref("vault"),
                ref("usdg"),
                ref("liquidityToken"),
                ref("shortsTracker"),
                settings.glp_cooldown_duration,
            ],
        ),
        provision("vaultUtils", "VaultUtils", [ref("vault")]),
        configure("vault", "setMaxLeverage", [settings.max_leverage_basis_points]),
        configure("vault", "setVaultUtils", [ref("vaultUtils")]),
        configure("vault", "setPriceFeed", [ref("vaultPriceFeed")]),
        grant("vault", "addRouter", "router", ROUTER, [ref("router")]),
        configure("vault", "setUsdg", [ref("usdg")]),
        configure(
            "vault",
            "setFees",
            [
                fees.tax_basis_points,
                fees.stable_tax_basis_points,
                fees.mint_burn_fee_basis_points,
                fees.swap_fee_basis_points,
                fees.stable_swap_fee_basis_points,
                fees.margin_fee_basis_points,
                settings.liquidation_fee_usd_units,
                fees.min_profit_time,
                fees.has_dynamic_fees,
            ],
        ),
        configure(
            "vault",
            "setFundingRate",
            [
                settings.funding_interval,
                settings.funding_rate_factor,
                settings.stable_funding_rate_factor,
            ],
        ),
        description="Deploy trading infrastructure",
    )


def staking_phase(config: DeploymentConfig) -> PhaseSpec:
    gov = config.tokens.governance.symbol
    liq = config.tokens.liquidity.symbol
    native = config.network.native_token.address
    vesting = config.settings.vesting_duration

    steps: List[StepSpec] = []

    # Governance-token staking: staked -> bonus -> fee
    steps += _tracker(
        "stakedTracker",
        f"Staked {gov}",
        f"s{gov}",
        STAKED_TRACKER,
        "stakedDistributor",
        "RewardDistributor",
        ref("escrowedToken"),
        [ref("governanceToken"), ref("escrowedToken")],
    )
    steps += _tracker(
        "bonusTracker",
        f"Staked + Bonus {gov}",
        f"sb{gov}",
        BONUS_TRACKER,
        "bonusDistributor",
        "BonusDistributor",
        ref("bonusToken"),
        [ref("stakedTracker")],
    )
    steps += _tracker(
        "feeTracker",
        f"Staked + Bonus + Fee {gov}",
        f"sbf{gov}",
        FEE_TRACKER,
        "feeDistributor",
        "RewardDistributor",
        native,
        [ref("bonusTracker"), ref("bonusToken")],
    )
    steps += tracker_modes(
        [
            ("stakedTracker", STAKED_TRACKER),
            ("bonusTracker", BONUS_TRACKER),
            ("feeTracker", FEE_TRACKER),
        ]
    )

    # Liquidity-token staking: fee -> staked
    steps += _tracker(
        "feeLiquidityTracker",
        f"Fee {liq}",
        f"f{liq}",
        FEE_TRACKER,
        "feeLiquidityDistributor",
        "RewardDistributor",
        native,
        [ref("liquidityToken")],
    )
    steps += _tracker(
        "stakedLiquidityTracker",
        f"Fee + Staked {liq}",
        f"fs{liq}",
        STAKED_TRACKER,
        "stakedLiquidityDistributor",
        "RewardDistributor",
        ref("escrowedToken"),
        [ref("feeLiquidityTracker")],
    )
    steps += tracker_modes(
        [
            ("feeLiquidityTracker", FEE_TRACKER),
            ("stakedLiquidityTracker", STAKED_TRACKER),
        ]
    )

    # Vesters
    steps.append(
        provision(
            "governanceVester",
            "Vester",
            [
                f"Vested {gov}",
                f"v{gov}",
                vesting,
                ref("escrowedToken"),
                ref("feeTracker"),
                ref("governanceToken"),
                ref("stakedTracker"),
            ],
        )
    )
    steps.append(
        provision(
            "liquidityVester",
            "Vester",
            [
                f"Vested {liq}",
                f"v{liq}",
                vesting,
                ref("escrowedToken"),
                ref("stakedLiquidityTracker"),
                ref("governanceToken"),
                ref("stakedLiquidityTracker"),
            ],
        )
    )

    # Reward router
    steps.append(provision("rewardRouter", "RewardRouterV2"))
    steps.append(
        configure(
            "rewardRouter",
            "initialize",
            [
                native,
                ref("governanceToken"),
                ref("escrowedToken"),
                ref("bonusToken"),
                ref("liquidityToken"),
                ref("stakedTracker"),
                ref("bonusTracker"),
                ref("feeTracker"),
                ref("feeLiquidityTracker"),
                ref("stakedLiquidityTracker"),
                ref("glpManager"),
                ref("governanceVester"),
                ref("liquidityVester"),
            ],
        )
    )

    # Capability wiring. Token grants come first: a tracker that later
    # re-grants onward must already hold its own grants.
    steps += [
        grant("escrowedToken", "setHandler", "stakedDistributor", HANDLER),
        grant("escrowedToken", "setHandler", "stakedLiquidityDistributor", HANDLER),
        grant("escrowedToken", "setHandler", "governanceVester", HANDLER),
        grant("escrowedToken", "setHandler", "liquidityVester", HANDLER),
        grant("bonusToken", "setMinter", "bonusDistributor", MINTER),
        grant("bonusToken", "setHandler", "feeTracker", HANDLER),
        grant("glpManager", "setHandler", "rewardRouter", HANDLER),
        grant("stakedTracker", "setHandler", "rewardRouter", HANDLER),
        grant("stakedTracker", "setHandler", "bonusTracker", HANDLER),
        grant("bonusTracker", "setHandler", "rewardRouter", HANDLER),
        grant("bonusTracker", "setHandler", "feeTracker", HANDLER),
        grant("feeTracker", "setHandler", "rewardRouter", HANDLER),
        grant("feeLiquidityTracker", "setHandler", "rewardRouter", HANDLER),
        grant("feeLiquidityTracker", "setHandler", "stakedLiquidityTracker", HANDLER),
        grant("stakedLiquidityTracker", "setHandler", "rewardRouter", HANDLER),
        grant("governanceVester", "setHandler", "rewardRouter", HANDLER),
        grant("liquidityVester", "setHandler", "rewardRouter", HANDLER),
    ]

    return phase("staking", *steps, description="Deploy staking, vesting and reward routing")


def governance_phase(config: DeploymentConfig) -> PhaseSpec:
    governance = config.governance
    return phase(
        "governance",
        provision(
            "timelock",
            "Timelock",
            [
                governance.timelock_buffer,
                ref("glpManager"),
                ref("rewardRouter"),
                governance.max_token_supply,
                governance.margin_fee_basis_points,
                governance.max_margin_fee_basis_points,
            ],
        ),
        description="Deploy governance timelock",
    )


def setup_phase(config: DeploymentConfig) -> PhaseSpec:
    steps: List[StepSpec] = []
    for token in config.supported_tokens:
        steps.append(
            configure(
                "vaultPriceFeed",
                "setTokenConfig",
                [token.address, token.price_feed, token.price_decimals, token.is_stable],
                label=f"vaultPriceFeed.setTokenConfig({token.symbol})",
            )
        )
        steps.append(
            configure(
                "vault",
                "setTokenConfig",
                [
                    token.address,
                    token.decimals,
                    token.weight,
                    token.min_profit_basis_points,
                    token.max_usdg_amount,
                    token.is_stable,
                    token.is_shortable,
                ],
                label=f"vault.setTokenConfig({token.symbol})",
            )
        )

    # Governance handover goes last; the deployer loses control afterwards.
    steps.append(grant("vault", "setGov", "timelock", GOV, [ref("timelock")]))
    steps.append(grant("vaultPriceFeed", "setGov", "timelock", GOV, [ref("timelock")]))
    return phase("setup", *steps, description="List supported tokens and hand over governance")


def tracker_modes(trackers: List[Tuple[str, str]]) -> List[StepSpec]:
    """Private transfer/staking mode for each tracker; claiming mode for bonus trackers."""
    steps: List[StepSpec] = []
    for tracker_id, role in trackers:
        steps.append(configure(tracker_id, "setInPrivateTransferMode", [True]))
        steps.append(configure(tracker_id, "setInPrivateStakingMode", [True]))
        if role == BONUS_TRACKER:
            steps.append(configure(tracker_id, "setInPrivateClaimingMode", [True]))
    return steps


def _tracker(
    tracker_id: str,
    name: str,
    symbol: str,
    role: str,
    distributor_id: str,
    distributor_kind: str,
    reward_token: object,
    deposit_tokens: list,
) -> List[StepSpec]:
    return [
        provision(tracker_id, "RewardTracker", [name, symbol], role=role),
        provision(distributor_id, distributor_kind, [reward_token, ref(tracker_id)]),
        configure(tracker_id, "initialize", [deposit_tokens, ref(distributor_id)]),
        configure(distributor_id, "updateLastDistributionTime"),
    ]
