"""
Network and protocol configuration for the Fair SDK.

Networks are described in the packaged networks.json. Each entry names the
service endpoints and a ``protocol`` block that seeds ProtocolConfig; any
protocol value left out falls back to the constants in fair_sdk.constants.
"""
import json
import os
import urllib.parse
from decimal import Decimal
from importlib import resources
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from . import constants
from .exceptions import ConfigurationError

LIVENESS_POLICIES = ("sla", "proof-of-life")


class ProtocolConfig(BaseModel):
    """
    Economic rules and tuning knobs of the protocol.

    Changing protocol version or fee schedule is a configuration change;
    the listing pipeline reads everything it checks from here.
    """
    protocol_name: str = Field(constants.PROTOCOL_NAME, alias="protocolName")
    protocol_version: str = Field(constants.PROTOCOL_VERSION, alias="protocolVersion")
    token_contract_id: str = Field(constants.U_CONTRACT_ID, alias="tokenContractId")
    vault_address: str = Field(constants.VAULT_ADDRESS, alias="vaultAddress")
    marketplace_address: str = Field(constants.MARKETPLACE_ADDRESS, alias="marketplaceAddress")
    token_divider: int = Field(constants.U_DIVIDER, alias="tokenDivider")

    model_creation_fee: Decimal = Field(Decimal(constants.MARKETPLACE_FEE), alias="modelCreationFee")
    script_creation_fee: Decimal = Field(Decimal(constants.SCRIPT_CREATION_FEE), alias="scriptCreationFee")
    operator_registration_fee: Decimal = Field(
        Decimal(constants.OPERATOR_REGISTRATION_FEE), alias="operatorRegistrationFee"
    )

    operator_share: float = Field(constants.OPERATOR_PERCENTAGE_FEE, alias="operatorShare")
    marketplace_share: float = Field(constants.MARKETPLACE_PERCENTAGE_FEE, alias="marketplaceShare")
    curator_share: float = Field(constants.CURATOR_PERCENTAGE_FEE, alias="curatorShare")
    creator_share: float = Field(constants.CREATOR_PERCENTAGE_FEE, alias="creatorShare")

    n_previous_requests: int = Field(constants.N_PREVIOUS_REQUESTS, alias="nPreviousRequests")
    proof_window_seconds: int = Field(constants.PROOF_WINDOW_SECONDS, alias="proofWindowSeconds")
    liveness_policy: str = Field("sla", alias="livenessPolicy")
    page_size: int = Field(constants.DEFAULT_PAGE_SIZE, alias="pageSize")
    max_concurrency: int = Field(4, alias="maxConcurrency")

    class Config:
        populate_by_name = True
        frozen = True

    @field_validator("liveness_policy")
    @classmethod
    def _check_policy(cls, value: str) -> str:
        if value not in LIVENESS_POLICIES:
            raise ValueError(f"liveness_policy must be one of {LIVENESS_POLICIES}, got {value!r}")
        return value

    @field_validator("page_size", "max_concurrency", "n_previous_requests", "token_divider")
    @classmethod
    def _check_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be a positive integer")
        return value

    @model_validator(mode="after")
    def _check_shares(self) -> "ProtocolConfig":
        total = self.operator_share + self.marketplace_share + self.curator_share + self.creator_share
        if abs(total - 1.0) > 1e-9:
            raise ValueError(f"fee shares must sum to 1.0, got {total}")
        return self

    def fee_in_units(self, fee: Decimal) -> Decimal:
        """Convert a whole-token fee to base units"""
        return fee * self.token_divider

    @property
    def model_creation_qty(self) -> Decimal:
        return self.fee_in_units(self.model_creation_fee)

    @property
    def script_creation_qty(self) -> Decimal:
        return self.fee_in_units(self.script_creation_fee)

    @property
    def operator_registration_qty(self) -> Decimal:
        return self.fee_in_units(self.operator_registration_fee)


class NetworkConfig:
    """Loads network descriptions from networks.json"""

    _networks_cache: Optional[Dict[str, Dict[str, Any]]] = None

    @classmethod
    def load_networks(cls) -> Dict[str, Dict[str, Any]]:
        """
        Load all network configurations.

        Returns:
            Mapping of network name to its configuration dictionary

        Raises:
            ConfigurationError: If networks.json is missing or invalid
        """
        if cls._networks_cache is not None:
            return cls._networks_cache
        try:
            raw = resources.files("fair_sdk").joinpath("networks.json").read_text(encoding="utf-8")
            cls._networks_cache = json.loads(raw)
        except (FileNotFoundError, ValueError) as e:
            raise ConfigurationError(f"Failed to load networks.json: {e}")
        return cls._networks_cache

    @classmethod
    def get_network(cls, network: str) -> Dict[str, Any]:
        """
        Get a network configuration by name.

        Raises:
            ValueError: If the network does not exist
        """
        networks = cls.load_networks()
        if network not in networks:
            available = ", ".join(sorted(networks))
            raise ValueError(f"Network '{network}' not found. Available networks: {available}")
        return networks[network]

    @classmethod
    def get_gateway_url(cls, network: str) -> str:
        """Ledger GraphQL base URL, overridable with FAIR_GATEWAY_URL"""
        override = os.environ.get("FAIR_GATEWAY_URL")
        if override:
            return override
        return cls.get_network(network)["graphql"]

    @classmethod
    def get_protocol(cls, network: str, **overrides: Any) -> ProtocolConfig:
        """
        Build the ProtocolConfig for a network.

        FAIR_LIVENESS_POLICY overrides the liveness policy; keyword
        arguments override everything else.
        """
        data = dict(cls.get_network(network).get("protocol", {}))
        policy = os.environ.get("FAIR_LIVENESS_POLICY")
        if policy:
            data["livenessPolicy"] = policy
        data.update(overrides)
        try:
            return ProtocolConfig.model_validate(data)
        except ValueError as e:
            raise ConfigurationError(f"Invalid protocol configuration for '{network}': {e}")


def default_network() -> str:
    return os.environ.get("FAIR_NETWORK", "mainnet")


def default_timeout() -> int:
    return int(os.environ.get("FAIR_GATEWAY_TIMEOUT", "30"))


def validate_service_url(url_name: str, url: str) -> str:
    """
    Require https for remote services.

    Local addresses may use http; FAIR_INSECURE_GW=1 lifts the
    restriction for development.

    Raises:
        ValueError: If the URL is not acceptable
    """
    parsed = urllib.parse.urlparse(url)
    host = parsed.hostname or ""
    is_local = host in ("localhost", "127.0.0.1", "::1")
    if parsed.scheme != "https" and not is_local:
        if os.environ.get("FAIR_INSECURE_GW") != "1":
            raise ValueError(
                f"{url_name} must use https:// for security (got: {parsed.scheme}://). "
                "Set FAIR_INSECURE_GW=1 to allow HTTP for development."
            )
    return url.rstrip("/")
