"""
Deployment configuration models.

The configuration file uses camelCase keys; every model accepts both the
camelCase alias and the snake_case field name.
"""

from __future__ import annotations

import re
from decimal import Decimal
from typing import Annotated, List, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, model_validator

ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")

USD_DECIMALS = 30
BASIS_POINTS_DIVISOR = 10000


def _check_address(value: str) -> str:
    if not ADDRESS_PATTERN.match(value):
        raise ValueError(f"malformed address: {value!r}")
    return value


Address = Annotated[str, AfterValidator(_check_address)]
BasisPoints = Annotated[int, Field(ge=0, le=BASIS_POINTS_DIVISOR)]


class ConfigModel(BaseModel):
    """Base model for configuration sections."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class ProjectConfig(ConfigModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None


class TokenConfig(ConfigModel):
    """Name, symbol and initial supply of one role token."""

    name: str = Field(..., min_length=1)
    symbol: str = Field(..., min_length=1)
    initial_supply: int = Field(0, ge=0, alias="initialSupply")


class RoleTokens(ConfigModel):
    """The four role tokens of the protocol."""

    governance: TokenConfig
    liquidity: TokenConfig
    escrowed: TokenConfig
    bonus: TokenConfig

    def by_role(self) -> dict[str, TokenConfig]:
        return {
            "governance": self.governance,
            "liquidity": self.liquidity,
            "escrowed": self.escrowed,
            "bonus": self.bonus,
        }

    @model_validator(mode="after")
    def _unique_symbols(self) -> "RoleTokens":
        symbols = [token.symbol for token in self.by_role().values()]
        duplicates = sorted({s for s in symbols if symbols.count(s) > 1})
        if duplicates:
            raise ValueError(f"token symbols must be unique, duplicated: {', '.join(duplicates)}")
        return self


class DeploymentSettings(ConfigModel):
    max_leverage: int = Field(..., ge=1, le=2000, alias="maxLeverage")
    vesting_duration: int = Field(..., gt=0, alias="vestingDuration")
    glp_cooldown_duration: int = Field(900, ge=0, alias="glpCooldownDuration")
    liquidation_fee_usd: Decimal = Field(Decimal("5"), ge=0, alias="liquidationFeeUsd")
    funding_interval: int = Field(3600, gt=0, alias="fundingInterval")
    funding_rate_factor: int = Field(100, ge=0, alias="fundingRateFactor")
    stable_funding_rate_factor: int = Field(100, ge=0, alias="stableFundingRateFactor")

    @property
    def max_leverage_basis_points(self) -> int:
        """Max leverage expressed in basis points (1000x -> 10,000,000)."""
        return self.max_leverage * BASIS_POINTS_DIVISOR

    @property
    def liquidation_fee_usd_units(self) -> int:
        """Liquidation fee in 30-decimal USD units."""
        return to_usd(self.liquidation_fee_usd)


class FeeConfig(ConfigModel):
    tax_basis_points: BasisPoints = Field(50, alias="taxBasisPoints")
    stable_tax_basis_points: BasisPoints = Field(5, alias="stableTaxBasisPoints")
    mint_burn_fee_basis_points: BasisPoints = Field(25, alias="mintBurnFeeBasisPoints")
    swap_fee_basis_points: BasisPoints = Field(30, alias="swapFeeBasisPoints")
    stable_swap_fee_basis_points: BasisPoints = Field(1, alias="stableSwapFeeBasisPoints")
    margin_fee_basis_points: BasisPoints = Field(10, alias="marginFeeBasisPoints")
    min_profit_time: int = Field(0, ge=0, alias="minProfitTime")
    has_dynamic_fees: bool = Field(False, alias="hasDynamicFees")


class GovernanceConfig(ConfigModel):
    timelock_buffer: int = Field(86400, ge=0, alias="timelockBuffer")
    max_token_supply: int = Field(0, ge=0, alias="maxTokenSupply")
    margin_fee_basis_points: BasisPoints = Field(10, alias="marginFeeBasisPoints")
    max_margin_fee_basis_points: BasisPoints = Field(500, alias="maxMarginFeeBasisPoints")


class NativeToken(ConfigModel):
    address: Address
    symbol: str = "ETH"
    decimals: int = Field(18, ge=0, le=36)


class NetworkConfig(ConfigModel):
    chain_id: int = Field(..., gt=0, alias="chainId")
    name: str = Field(..., min_length=1)
    native_token: NativeToken = Field(..., alias="nativeToken")


class SupportedToken(ConfigModel):
    """An auxiliary token listed in the vault with its price feed."""

    symbol: str = Field(..., min_length=1)
    address: Address
    price_feed: Address = Field(..., alias="priceFeed")
    name: Optional[str] = None
    decimals: int = Field(18, ge=0, le=36)
    is_stable: bool = Field(False, alias="isStable")
    is_shortable: bool = Field(False, alias="isShortable")
    price_decimals: int = Field(8, ge=0, le=36, alias="priceDecimals")
    weight: int = Field(10000, ge=0, alias="weight")
    min_profit_basis_points: BasisPoints = Field(0, alias="minProfitBasisPoints")
    max_usdg_amount: int = Field(0, ge=0, alias="maxUsdgAmount")


class DeploymentConfig(ConfigModel):
    """Validated deployment parameters."""

    project: ProjectConfig
    tokens: RoleTokens
    settings: DeploymentSettings
    fees: FeeConfig = Field(default_factory=FeeConfig)
    governance: GovernanceConfig = Field(default_factory=GovernanceConfig)
    network: NetworkConfig
    supported_tokens: List[SupportedToken] = Field(default_factory=list, alias="supportedTokens")

    @model_validator(mode="after")
    def _unique_supported_symbols(self) -> "DeploymentConfig":
        symbols = [token.symbol for token in self.supported_tokens]
        duplicates = sorted({s for s in symbols if symbols.count(s) > 1})
        if duplicates:
            raise ValueError(f"supported token symbols must be unique: {', '.join(duplicates)}")
        return self


def to_usd(value: Decimal | int | str) -> int:
    """Convert a USD amount to its 30-decimal integer representation."""
    return int(Decimal(str(value)).scaleb(USD_DECIMALS))
