import os
from dotenv import load_dotenv
from dataclasses import dataclass
from functools import lru_cache

load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    return float(raw)


@dataclass(frozen=True)
class Settings:
    # signing / chain
    RPC_URL_DEFAULT: str
    PRIVATE_KEY: str

    # uniswap v4 / periphery (Base mainnet defaults)
    POSITION_MANAGER_ADDRESS: str
    STATE_VIEW_ADDRESS: str
    PERMIT2_ADDRESS: str
    UNIVERSAL_ROUTER_ADDRESS: str
    SWAP_ROUTER_02_ADDRESS: str

    # assets
    WETH_ADDRESS: str
    USDC_ADDRESS: str

    # protocol fee escrow (Clanker fee storage)
    FEE_ESCROW_ADDRESS: str

    PRICE_API_URL: str

    # routing
    WETH_USDC_FEE: int = 500
    V3_INTERMEDIATE_FEE: int = 10_000

    # tx / rpc behaviour
    TX_DEADLINE_SEC: int = 300
    RPC_MAX_RETRIES: int = 4
    RPC_BASE_DELAY_SEC: float = 2.0

    # generic
    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"


@lru_cache()
def get_settings() -> Settings:
    return Settings(
        # Core chain
        PRIVATE_KEY=os.getenv("PRIVATE_KEY", "") or os.getenv("NET_PRIVATE_KEY", ""),
        RPC_URL_DEFAULT=os.getenv("RPC_URL_DEFAULT", "https://mainnet.base.org"),

        # Contracts
        POSITION_MANAGER_ADDRESS=os.getenv("POSITION_MANAGER_ADDRESS", "0x7c5f5a4bbd8fd63184577525326123b519429bdc"),
        STATE_VIEW_ADDRESS=os.getenv("STATE_VIEW_ADDRESS", "0xa3c0c9b65bad0b08107aa264b0f3db444b867a71"),
        PERMIT2_ADDRESS=os.getenv("PERMIT2_ADDRESS", "0x000000000022D473030F116dDEE9F6B43aC78BA3"),
        UNIVERSAL_ROUTER_ADDRESS=os.getenv("UNIVERSAL_ROUTER_ADDRESS", "0x6ff5693b99212da76ad316178a184ab56d299b43"),
        SWAP_ROUTER_02_ADDRESS=os.getenv("SWAP_ROUTER_02_ADDRESS", "0x2626664c2603336E57B271c5C0b26F421741e481"),

        WETH_ADDRESS=os.getenv("WETH_ADDRESS", "0x4200000000000000000000000000000000000006"),
        USDC_ADDRESS=os.getenv("USDC_ADDRESS", "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"),

        FEE_ESCROW_ADDRESS=os.getenv("FEE_ESCROW_ADDRESS", "0xf3622742b1e446d92e45e22923ef11c2fcd55d68"),

        PRICE_API_URL=os.getenv("PRICE_API_URL", "https://api.dexscreener.com"),

        WETH_USDC_FEE=_env_int("WETH_USDC_FEE", 500),
        V3_INTERMEDIATE_FEE=_env_int("V3_INTERMEDIATE_FEE", 10_000),

        TX_DEADLINE_SEC=_env_int("TX_DEADLINE_SEC", 300),
        RPC_MAX_RETRIES=_env_int("RPC_MAX_RETRIES", 4),
        RPC_BASE_DELAY_SEC=_env_float("RPC_BASE_DELAY_SEC", 2.0),

        ENV=os.getenv("ENV", "dev"),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
    )
