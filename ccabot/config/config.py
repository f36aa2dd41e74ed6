"""
Environment-driven configuration with validation.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import List, Optional

from dotenv import load_dotenv

from ccabot.chain.abi import CCA_ADDRESS, HOOK_ADDRESS, SOULBOUND_ADDRESS
from ccabot.chain.tx_builder import AccessListMode, FeeOverrides, TxConfig
from ccabot.execution.bid_state_machine import DEFAULT_MAX_ATTEMPTS
from ccabot.infra.logging_cfg import log_event

load_dotenv()


def env_bool(key: str, default: bool) -> bool:
    val = os.getenv(key)
    if val is None or val == "":
        return default
    return val.lower() in {"1", "true", "yes", "y"}


def _optional_address(key: str, default: str) -> Optional[str]:
    """Unset keeps the default deployment; an empty value disables the contract."""
    raw = os.getenv(key)
    if raw is None:
        return default
    raw = raw.strip()
    return raw or None


@dataclass(frozen=True)
class Settings:
    rpc_url: str
    private_key: str | None
    owner: str | None
    bids_file: str
    cca_address: str
    hook_address: str | None
    soulbound_address: str | None
    max_attempts: int
    poll_interval: float
    rpc_timeout: float
    wait_for_receipt: bool
    receipt_timeout: float
    await_window_close: bool
    max_fee_per_gas: int | None
    max_priority_fee_per_gas: int | None
    generate_access_list: bool
    require_soulbound: bool
    permanent_revert_patterns: List[str]
    summary_dir: str
    log_level: str
    log_file: str

    def dump(self) -> dict:
        """Return a dict of settings for logging, with the key redacted."""
        data = self.__dict__.copy()
        if data.get("private_key"):
            data["private_key"] = "***"
        return data

    @classmethod
    def load(cls) -> "Settings":
        def _int_env(key: str, default: int | None) -> int | None:
            raw = os.getenv(key)
            if raw is None or raw == "":
                return default
            return int(raw, 0)

        def _float_env(key: str, default: float) -> float:
            raw = os.getenv(key)
            if raw is None or raw == "":
                return default
            return float(raw)

        patterns_raw = os.getenv("CCA_PERMANENT_REVERT_PATTERNS", "")
        cfg = cls(
            rpc_url=os.getenv("ETH_RPC_URL", "").strip(),
            private_key=os.getenv("PRIVATE_KEY"),
            owner=os.getenv("OWNER") or None,
            bids_file=os.getenv("BIDS_FILE", "bids.toml"),
            cca_address=os.getenv("CCA_ADDRESS") or CCA_ADDRESS,
            hook_address=_optional_address("CCA_HOOK_ADDRESS", HOOK_ADDRESS),
            soulbound_address=_optional_address("CCA_SOULBOUND_ADDRESS", SOULBOUND_ADDRESS),
            max_attempts=_int_env("CCA_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS),
            poll_interval=_float_env("CCA_POLL_INTERVAL_SEC", 2.0),
            rpc_timeout=_float_env("CCA_RPC_TIMEOUT_SEC", 20.0),
            wait_for_receipt=env_bool("CCA_WAIT_FOR_RECEIPT", False),
            receipt_timeout=_float_env("CCA_RECEIPT_TIMEOUT_SEC", 120.0),
            await_window_close=env_bool("CCA_AWAIT_WINDOW_CLOSE", False),
            max_fee_per_gas=_int_env("CCA_MAX_FEE_PER_GAS", None),
            max_priority_fee_per_gas=_int_env("CCA_MAX_PRIORITY_FEE_PER_GAS", None),
            generate_access_list=env_bool("CCA_GENERATE_ACCESS_LIST", False),
            require_soulbound=env_bool("CCA_REQUIRE_SOULBOUND", False),
            permanent_revert_patterns=[p.strip() for p in patterns_raw.split(",") if p.strip()],
            summary_dir=os.getenv("CCA_SUMMARY_DIR", "summaries"),
            log_level=os.getenv("CCA_LOG_LEVEL", "INFO").upper(),
            log_file=os.getenv("CCA_LOG_FILE", "ccabot.log"),
        )
        _sanity_check(cfg)
        cfg._validate()
        return cfg

    def resolve_signer(self):
        from eth_account import Account

        if self.private_key:
            return Account.from_key(self.private_key)
        raise RuntimeError("Missing credentials: set PRIVATE_KEY")

    def default_owner(self, signer) -> str:
        return self.owner or signer.address

    def tx_config(self) -> TxConfig:
        fees = None
        if self.max_fee_per_gas is not None and self.max_priority_fee_per_gas is not None:
            fees = FeeOverrides(self.max_fee_per_gas, self.max_priority_fee_per_gas)
        access = AccessListMode.GENERATE if self.generate_access_list else AccessListMode.NONE
        return TxConfig(fees=fees, access_list=access)

    def _validate(self) -> None:
        if not self.rpc_url:
            raise ValueError("ETH_RPC_URL must be set")
        if not self.private_key:
            raise ValueError("PRIVATE_KEY must be set")
        if not self.cca_address:
            raise ValueError("CCA_ADDRESS must be set")
        if not 1 <= self.max_attempts <= DEFAULT_MAX_ATTEMPTS:
            raise ValueError(f"CCA_MAX_ATTEMPTS must be between 1 and {DEFAULT_MAX_ATTEMPTS}")
        if self.poll_interval <= 0:
            raise ValueError("CCA_POLL_INTERVAL_SEC must be > 0")
        if self.rpc_timeout <= 0 or self.receipt_timeout <= 0:
            raise ValueError("CCA_RPC_TIMEOUT_SEC and CCA_RECEIPT_TIMEOUT_SEC must be > 0")
        if (self.max_fee_per_gas is None) != (self.max_priority_fee_per_gas is None):
            raise ValueError("Set both CCA_MAX_FEE_PER_GAS and CCA_MAX_PRIORITY_FEE_PER_GAS, or neither")
        if self.max_fee_per_gas is not None and self.max_priority_fee_per_gas > self.max_fee_per_gas:
            raise ValueError("CCA_MAX_PRIORITY_FEE_PER_GAS must be <= CCA_MAX_FEE_PER_GAS")
        if self.log_level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"CCA_LOG_LEVEL={self.log_level} is not a logging level")

        if self.require_soulbound and not self.soulbound_address:
            logging.getLogger("ccabot").warning(
                "WARNING: CCA_REQUIRE_SOULBOUND is set but no soulbound contract is configured; "
                "every bid will be treated as eligible."
            )
        if not self.hook_address:
            logging.getLogger("ccabot").warning(
                "WARNING: no validation hook configured; the bidding window opens at block 0 "
                "and no purchase cap is enforced locally."
            )


def _sanity_check(cfg: Settings) -> None:
    """
    Log the effective settings once at startup so overrides are obvious.
    """
    logger = logging.getLogger("ccabot")
    log_event(
        logger,
        "config_loaded",
        bids_file=cfg.bids_file,
        cca=cfg.cca_address,
        hook=cfg.hook_address,
        soulbound=cfg.soulbound_address,
        max_attempts=cfg.max_attempts,
        poll_interval=cfg.poll_interval,
        wait_for_receipt=cfg.wait_for_receipt,
        await_window_close=cfg.await_window_close,
        fee_overrides=cfg.max_fee_per_gas is not None,
        access_list=cfg.generate_access_list,
    )
