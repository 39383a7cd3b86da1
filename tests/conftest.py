"""Root test configuration."""

import copy
import logging

import pytest
import structlog
import yaml

from forkdeploy.config.settings import get_settings
from forkdeploy.engine import PlanBuilder, configure, grant, phase, provision, ref

USDC = "0x75faf114eafb1BDbe2F0316DF893fd58CE46AA4d"
USDC_FEED = "0x0153002d20B96532C639313c2d54c3dA09109309"
WETH = "0x980B62Da83eFf3D4576C647993b0c1D7faf17c73"
WETH_FEED = "0xd30e2101a97dcbAeBCBC04F14C3f624E67A35165"

SAMPLE_CONFIG = {
    "project": {"name": "test-fork"},
    "tokens": {
        "governance": {"name": "Test Governance", "symbol": "TGOV", "initialSupply": 0},
        "liquidity": {"name": "Test LP", "symbol": "TLP", "initialSupply": 0},
        "escrowed": {"name": "Escrowed TGOV", "symbol": "esTGOV", "initialSupply": 0},
        "bonus": {"name": "Bonus TGOV", "symbol": "bnTGOV", "initialSupply": 0},
    },
    "settings": {"maxLeverage": 1000, "vestingDuration": 31536000},
    "network": {
        "chainId": 421614,
        "name": "testnet",
        "nativeToken": {"address": WETH, "symbol": "WETH"},
    },
    "supportedTokens": [
        {"symbol": "USDC", "address": USDC, "priceFeed": USDC_FEED, "decimals": 6, "isStable": True},
        {"symbol": "WETH", "address": WETH, "priceFeed": WETH_FEED, "isShortable": True},
    ],
}


def pytest_configure(config):
    """Configure structlog for tests to suppress debug/info output."""
    logging.basicConfig(level=logging.WARNING, force=True)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Point runtime settings at a temporary directory."""
    monkeypatch.chdir(tmp_path)
    for name in ("CONFIG_PATH", "OUTPUT_DIR", "LEDGER_PATH", "BACKEND", "MAX_ATTEMPTS"):
        monkeypatch.delenv(f"FORKDEPLOY_{name}", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def config_data():
    """Raw, valid deployment configuration."""
    return copy.deepcopy(SAMPLE_CONFIG)


@pytest.fixture
def config_file(tmp_path, config_data):
    """Valid deployment configuration written as YAML."""
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(config_data, sort_keys=False))
    return path


def sample_phases():
    """Twenty steps over four phases; step 12 is stakedTracker.initialize."""
    return [
        phase(
            "tokens",
            provision("governanceToken", "CustomGovernanceToken", ["Gov", "GOV"]),
            provision("liquidityToken", "CustomLiquidityToken", ["Liq", "LIQ"]),
            provision("escrowedToken", "CustomEscrowedToken", ["Escrowed", "esGOV"]),
            provision("bonusToken", "MintableBaseToken", ["Bonus", "bnGOV", 0]),
            configure("governanceToken", "setInPrivateTransferMode", [True]),
        ),
        phase(
            "core",
            provision("vault", "Vault"),
            provision("usdg", "USDG", [ref("vault")]),
            provision("router", "Router", [ref("vault"), ref("usdg"), WETH]),
            grant("vault", "addRouter", "router", "router", [ref("router")]),
        ),
        phase(
            "staking",
            provision("stakedTracker", "RewardTracker", ["Staked GOV", "sGOV"], role="staked-tracker"),
            provision("stakedDistributor", "RewardDistributor", [ref("escrowedToken"), ref("stakedTracker")]),
            configure(
                "stakedTracker",
                "initialize",
                [[ref("governanceToken"), ref("escrowedToken")], ref("stakedDistributor")],
            ),
            configure("stakedDistributor", "updateLastDistributionTime"),
            provision("bonusTracker", "RewardTracker", ["Staked + Bonus GOV", "sbGOV"], role="bonus-tracker"),
            configure("bonusTracker", "setInPrivateClaimingMode", [True]),
            grant("escrowedToken", "setHandler", "stakedDistributor", "handler"),
            grant("stakedTracker", "setHandler", "bonusTracker", "handler"),
            grant("bonusToken", "setMinter", "bonusTracker", "minter"),
        ),
        phase(
            "governance",
            provision("timelock", "Timelock", [86400, ref("vault")]),
            grant("vault", "setGov", "timelock", "gov", [ref("timelock")]),
        ),
    ]


@pytest.fixture
def sample_plan():
    return PlanBuilder().build(sample_phases())
