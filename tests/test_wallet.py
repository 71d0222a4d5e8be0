"""
Tests for WalletManager: key loading, balances, holdings and signing.
"""

import json
from unittest.mock import AsyncMock, Mock

import pytest
from solders.keypair import Keypair

from integrations.solana.tokens import USDC, resolve_token
from skimmer.core.wallet import Holding, WalletManager


BONK = resolve_token("BONK")


def token_account(mint, amount, decimals):
    keyed = Mock()
    keyed.account.data.parsed = {
        "info": {
            "mint": mint,
            "tokenAmount": {"amount": str(amount), "decimals": decimals},
        },
        "type": "account",
    }
    return keyed


@pytest.fixture
def keypair():
    return Keypair()


@pytest.fixture
def rpc_client():
    return AsyncMock()


class TestKeyLoading:

    def test_base58_key(self, keypair, rpc_client):
        wallet = WalletManager(str(keypair), client=rpc_client)
        assert wallet.get_public_key() == str(keypair.pubkey())

    def test_json_array_key(self, keypair, rpc_client):
        wallet = WalletManager(json.dumps(list(bytes(keypair))), client=rpc_client)
        assert wallet.public_key == keypair.pubkey()

    def test_json_array_key_with_surrounding_whitespace(self, keypair, rpc_client):
        wallet = WalletManager("  " + json.dumps(list(bytes(keypair))) + "\n", client=rpc_client)
        assert wallet.public_key == keypair.pubkey()

    @pytest.mark.parametrize("bad_key", [
        "",
        "   ",
        "not-a-key",
        "0OIl",
        "3yZe7d",
        "[1, 2, 3]",
        "[300, 1]",
        "[not json",
    ])
    def test_invalid_key(self, bad_key, rpc_client):
        with pytest.raises(ValueError):
            WalletManager(bad_key, client=rpc_client)


@pytest.mark.asyncio
class TestBalances:

    async def test_reserve_balance_in_sol(self, keypair, rpc_client):
        rpc_client.get_balance.return_value = Mock(value=1_250_000_000)
        wallet = WalletManager(str(keypair), client=rpc_client)

        assert await wallet.get_reserve_balance() == pytest.approx(1.25)

    async def test_reserve_balance_errors_propagate(self, keypair, rpc_client):
        rpc_client.get_balance.side_effect = ConnectionError("rpc down")
        wallet = WalletManager(str(keypair), client=rpc_client)

        with pytest.raises(ConnectionError):
            await wallet.get_reserve_balance()

    async def test_holdings_merge_accounts_and_drop_empty(self, keypair, rpc_client):
        rpc_client.get_token_accounts_by_owner_json_parsed.return_value = Mock(value=[
            token_account(USDC.mint, 5_000_000, 6),
            token_account(USDC.mint, 2_500_000, 6),
            token_account(BONK.mint, 0, 5),
        ])
        wallet = WalletManager(str(keypair), client=rpc_client)

        holdings = await wallet.get_holdings()

        assert holdings == [Holding(USDC.mint, 7.5, 6)]
        assert holdings[0].raw_quantity == 7_500_000


def test_sign_transaction_rebuilds_with_wallet_signature(keypair, rpc_client):
    wallet = WalletManager(str(keypair), client=rpc_client)
    unsigned = Mock()
    unsigned.message = Mock(name="message")

    with pytest.MonkeyPatch.context() as mp:
        built = Mock(name="signed")
        factory = Mock(return_value=built)
        mp.setattr("skimmer.core.wallet.VersionedTransaction", factory)

        signed = wallet.sign_transaction(unsigned)

    assert signed is built
    factory.assert_called_once_with(unsigned.message, [wallet.keypair])
