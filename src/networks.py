"""
BrewFi Networks - Chain, token and contract configuration.

Supports Avalanche C-Chain (Fuji testnet and mainnet).
"""

from dataclasses import dataclass
from typing import Optional

# ============================================
# Network Configurations
# ============================================

@dataclass
class NetworkConfig:
    """Configuration for a blockchain network."""
    chain_id: int
    name: str
    display_name: str
    rpc_url: str
    explorer_url: str
    is_testnet: bool
    native_symbol: str
    native_decimals: int = 18


NETWORKS = {
    # Avalanche Fuji Testnet
    43113: NetworkConfig(
        chain_id=43113,
        name="avalanche-fuji",
        display_name="Avalanche Fuji",
        rpc_url="https://api.avax-test.network/ext/bc/C/rpc",
        explorer_url="https://testnet.snowtrace.io",
        is_testnet=True,
        native_symbol="AVAX",
    ),
    # Avalanche C-Chain Mainnet
    43114: NetworkConfig(
        chain_id=43114,
        name="avalanche",
        display_name="Avalanche C-Chain",
        rpc_url="https://api.avax.network/ext/bc/C/rpc",
        explorer_url="https://snowtrace.io",
        is_testnet=False,
        native_symbol="AVAX",
    ),
}

DEFAULT_NETWORK = 43113  # Fuji for development

DEFAULT_TRANSFER_MAX_FEE = 1_000_000_000_000_000  # 0.001 AVAX in wei


# ============================================
# Token / Contract Configurations
# ============================================

@dataclass
class TokenConfig:
    """Configuration for an ERC-20 token."""
    symbol: str
    name: str
    decimals: int
    addresses: dict[int, str]  # chain_id -> contract address


TOKENS = {
    "USDC": TokenConfig(
        symbol="USDC",
        name="USD Coin",
        decimals=6,
        addresses={
            43113: "0x5425890298aed601595a70AB815c96711a31Bc65",
        }
    ),
    "USDT": TokenConfig(
        symbol="USDT",
        name="Tether USD",
        decimals=6,
        addresses={
            43113: "0x9a01bf917477dD9F5D715D188618fc8B7350cd22",
        }
    ),
    "BREWFI": TokenConfig(
        symbol="BREWFI",
        name="BrewFi Reward Token",
        decimals=18,
        addresses={
            43113: "0x9a13d88490e21809Fac732C18ff13EB4849e4630",
        }
    ),
}

# BrewFi purchase contract (chain_id -> address)
PURCHASE_CONTRACTS = {
    43113: "0x194eC920B6d7e887F63e2Ea77ca743bAEE9b94fd",
}

# Payment methods accepted by QR sessions and the settlement webhook
PAYMENT_METHODS = ("USDC", "USDT", "AVAX")

# Stablecoin payment method -> purchase function
PURCHASE_FUNCTIONS = {
    "USDC": "purchaseWithUSDC",
    "USDT": "purchaseWithUSDT",
}


ERC20_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "type": "function"
    },
    {
        "constant": True,
        "inputs": [
            {"name": "_owner", "type": "address"},
            {"name": "_spender", "type": "address"}
        ],
        "name": "allowance",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function"
    },
    {
        "constant": False,
        "inputs": [
            {"name": "_spender", "type": "address"},
            {"name": "_value", "type": "uint256"}
        ],
        "name": "approve",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function"
    },
    {
        "constant": False,
        "inputs": [
            {"name": "_to", "type": "address"},
            {"name": "_value", "type": "uint256"}
        ],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function"
    },
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "type": "function"
    },
    {
        "constant": True,
        "inputs": [],
        "name": "symbol",
        "outputs": [{"name": "", "type": "string"}],
        "type": "function"
    },
]

# Product tuple as returned by getProduct / getAllProducts
_PRODUCT_COMPONENTS = [
    {"name": "name", "type": "string"},
    {"name": "priceUSD", "type": "uint256"},
    {"name": "rewardRatio", "type": "uint256"},
    {"name": "active", "type": "bool"},
]

PURCHASE_ABI = [
    {
        "inputs": [],
        "name": "getAllProducts",
        "outputs": [{"components": _PRODUCT_COMPONENTS, "name": "", "type": "tuple[]"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [{"name": "productId", "type": "uint256"}],
        "name": "getProduct",
        "outputs": [{"components": _PRODUCT_COMPONENTS, "name": "", "type": "tuple"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "getProductCount",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [{"name": "productId", "type": "uint256"}],
        "name": "purchaseWithUSDC",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [{"name": "productId", "type": "uint256"}],
        "name": "purchaseWithUSDT",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    },
]

BREWFI_TOKEN_ABI = ERC20_ABI + [
    {
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"}
        ],
        "name": "mint",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    },
]


# ============================================
# Utility Functions
# ============================================

def get_network(chain_id: int) -> Optional[NetworkConfig]:
    """Get network config by chain ID."""
    return NETWORKS.get(chain_id)


def get_token_address(symbol: str, chain_id: int = DEFAULT_NETWORK) -> str:
    """Get a token's contract address on a chain."""
    token = TOKENS.get(symbol)
    if not token or chain_id not in token.addresses:
        raise ValueError(f"{symbol} not configured for chain {chain_id}")
    return token.addresses[chain_id]


def get_tracked_tokens(chain_id: int = DEFAULT_NETWORK) -> list[str]:
    """Token addresses whose balances a wallet session tracks."""
    return [t.addresses[chain_id] for t in TOKENS.values() if chain_id in t.addresses]


def get_purchase_contract(chain_id: int = DEFAULT_NETWORK) -> str:
    if chain_id not in PURCHASE_CONTRACTS:
        raise ValueError(f"Purchase contract not deployed on chain {chain_id}")
    return PURCHASE_CONTRACTS[chain_id]


def format_units(raw: int, decimals: int) -> str:
    """Format a raw integer amount as a decimal string (e.g. 5000000, 6 -> '5')."""
    sign = "-" if raw < 0 else ""
    whole, frac = divmod(abs(raw), 10 ** decimals)
    if not frac:
        return f"{sign}{whole}"
    frac_str = str(frac).rjust(decimals, "0").rstrip("0")
    return f"{sign}{whole}.{frac_str}"


def format_address(address: str, chars: int = 4) -> str:
    """Format address as 0x1234...5678"""
    if len(address) <= chars * 2 + 2:
        return address
    return f"{address[:chars+2]}...{address[-chars:]}"
