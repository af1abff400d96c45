"""
BrewFi - Custodial wallet and QR payment sessions.

Entry point for the command-line service. ``build_services`` is the
composition root: every component is constructed here and passed explicitly
to whatever needs it.
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from config import AppConfig, load_config
from errors import BrewfiError
from models import SessionStore
from networks import get_network, get_purchase_contract, get_tracked_tokens, format_units
from services import (
    ChainClient,
    ContractReader,
    PaymentSessionManager,
    PaymentWebhookNotifier,
    PurchaseFlow,
    SessionEventBus,
    SessionWatcher,
    handle_payment_webhook,
)
from services.logging import configure_logging
from utils import get_sessions_dir, get_wallet_dir
from wallet import NO_PASSWORD_SENTINEL, SeedVault, WalletSession

logger = logging.getLogger(__name__)


VAULT_PASSWORD_ENV = "BREWFI_VAULT_PASSWORD"


@dataclass
class Services:
    """Everything a request handler or CLI command needs."""
    config: AppConfig
    chain: ChainClient
    reader: ContractReader
    vault: SeedVault
    sessions: PaymentSessionManager
    events: SessionEventBus
    notifier: Optional[PaymentWebhookNotifier] = None

    def wallet_session(self, user_id: str) -> WalletSession:
        return WalletSession(
            user_id,
            self.vault,
            self.chain,
            token_addresses=get_tracked_tokens(self.config.chain_id),
            transfer_max_fee=self.config.transfer_max_fee,
            confirmation_timeout=self.config.confirmation_timeout,
        )

    def purchase_flow(self, wallet: WalletSession) -> PurchaseFlow:
        return PurchaseFlow(wallet, self.reader, self.notifier)

    def watcher(self) -> SessionWatcher:
        return SessionWatcher(self.sessions, self.events, poll_interval=self.config.poll_interval)

    async def aclose(self) -> None:
        if self.notifier is not None:
            await self.notifier.aclose()
        await self.chain.close()


def build_services(config: AppConfig, vault_password: str = NO_PASSWORD_SENTINEL) -> Services:
    """Wire up every component for one process."""
    network = get_network(config.chain_id)
    if network is None:
        raise ValueError(f"Unsupported chain id: {config.chain_id}")

    if config.data_dir:
        wallet_dir = Path(config.data_dir) / "wallets"
        sessions_dir = Path(config.data_dir) / "sessions"
    else:
        wallet_dir, sessions_dir = get_wallet_dir(), get_sessions_dir()

    chain = ChainClient(network, config.rpc_url)
    events = SessionEventBus()
    notifier = None
    if config.webhook_url:
        notifier = PaymentWebhookNotifier(
            config.webhook_url,
            api_key=config.webhook_token,
            max_attempts=config.webhook_max_attempts,
        )

    return Services(
        config=config,
        chain=chain,
        reader=ContractReader(chain, get_purchase_contract(config.chain_id)),
        vault=SeedVault(wallet_dir, password=vault_password),
        sessions=PaymentSessionManager(
            SessionStore(sessions_dir),
            events=events,
            ttl_ms=config.session_ttl_ms,
        ),
        events=events,
        notifier=notifier,
    )


# ============================================
# Commands
# ============================================

def _print(data) -> None:
    print(json.dumps(data, indent=2))


async def cmd_create_wallet(services: Services, args) -> int:
    wallet = services.wallet_session(args.user_id)
    address = await wallet.create_wallet(args.words)
    _print({"user_id": args.user_id, "primary_account": address})
    await wallet.close()
    return 0


async def cmd_balance(services: Services, args) -> int:
    wallet = services.wallet_session(args.user_id)
    if not await wallet.open():
        print(f"No wallet for user {args.user_id}", file=sys.stderr)
        return 1
    for index in range(1, args.accounts):
        wallet.cache.track(index)
    summaries = await wallet.refresh()
    _print([
        {**s.to_dict(), "native_balance_avax": format_units(s.native_balance, 18)}
        for s in summaries
    ])
    await wallet.close()
    return 0


async def cmd_create_session(services: Services, args) -> int:
    product = None
    if args.product_id is not None:
        product = await services.reader.get_product(args.product_id)
        if product is None:
            print(f"Unknown product {args.product_id}", file=sys.stderr)
            return 1
    session = await services.sessions.create_session(args.seller, product=product, amount=args.amount)
    _print({"session": session.to_record(), "qr": session.to_qr_payload().to_json()})
    return 0


async def cmd_status(services: Services, args) -> int:
    session = await services.sessions.refresh_status(args.session_id)
    if session is None:
        print(f"Unknown session {args.session_id}", file=sys.stderr)
        return 1
    _print(session.to_record())
    return 0


async def cmd_watch(services: Services, args) -> int:
    watcher = services.watcher()
    await watcher.observe(args.session_id)
    try:
        outcome = await watcher.wait(timeout=args.timeout)
    except asyncio.TimeoutError:
        print("Still pending", file=sys.stderr)
        return 2
    finally:
        watcher.cancel()
    _print({"session_id": args.session_id, "outcome": outcome})
    return 0


async def cmd_expire(services: Services, args) -> int:
    expired = await services.sessions.expire_due_sessions()
    _print([s.session_id for s in expired])
    return 0


async def cmd_settle(services: Services, args) -> int:
    body = sys.stdin.read() if args.body == "-" else Path(args.body).read_text()
    status, response = await handle_payment_webhook(services.sessions, body)
    _print({"http_status": status, **response})
    return 0 if status == 200 else 1


async def cmd_pay(services: Services, args) -> int:
    wallet = services.wallet_session(args.user_id)
    if not await wallet.open():
        print(f"No wallet for user {args.user_id}", file=sys.stderr)
        return 1
    try:
        result = await services.purchase_flow(wallet).pay_scanned_qr(args.index, args.qr, args.method)
    finally:
        await wallet.close()
    _print(result.to_dict())
    return 0


COMMANDS = {
    "create-wallet": cmd_create_wallet,
    "balance": cmd_balance,
    "create-session": cmd_create_session,
    "status": cmd_status,
    "watch": cmd_watch,
    "expire": cmd_expire,
    "settle": cmd_settle,
    "pay": cmd_pay,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="brewfi", description="BrewFi wallet and payment sessions")
    parser.add_argument('--settings', type=Path, help='Path to settings.json')
    subparsers = parser.add_subparsers(dest='command', required=True)

    p = subparsers.add_parser('create-wallet', help='Create a wallet for a user')
    p.add_argument('user_id')
    p.add_argument('--words', type=int, choices=[12, 24], default=12)

    p = subparsers.add_parser('balance', help='Show account balances')
    p.add_argument('user_id')
    p.add_argument('-n', '--accounts', type=int, default=1, help='Number of account indices')

    p = subparsers.add_parser('create-session', help='Create a QR payment session')
    p.add_argument('seller', help='Seller wallet address')
    p.add_argument('--amount', help='Amount in 6-decimal units (default: product price)')
    p.add_argument('--product-id', type=int)

    p = subparsers.add_parser('status', help='Show (and expire if due) a session')
    p.add_argument('session_id')

    p = subparsers.add_parser('watch', help='Wait for a session to be paid or expire')
    p.add_argument('session_id')
    p.add_argument('--timeout', type=float, default=None)

    subparsers.add_parser('expire', help='Expire all sessions past their TTL')

    p = subparsers.add_parser('settle', help='Apply a payment webhook body')
    p.add_argument('body', help="JSON file, or '-' for stdin")

    p = subparsers.add_parser('pay', help='Pay a scanned QR code')
    p.add_argument('user_id')
    p.add_argument('qr', help='Scanned QR text')
    p.add_argument('--method', choices=['USDC', 'USDT'], default='USDC')
    p.add_argument('--index', type=int, default=0)

    return parser


async def run(args) -> int:
    config = load_config(args.settings)
    configure_logging(config.log_level, config.log_retention_days)
    services = build_services(config, os.environ.get(VAULT_PASSWORD_ENV, NO_PASSWORD_SENTINEL))
    try:
        return await COMMANDS[args.command](services, args)
    except BrewfiError as e:
        logger.error(str(e))
        return 1
    finally:
        await services.aclose()


def main(argv: Optional[list[str]] = None) -> int:
    """Application entry point."""
    args = build_parser().parse_args(argv)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
