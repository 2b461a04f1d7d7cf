"""
Tests for solana_client.py
"""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch
import base64
from solders.keypair import Keypair
from mevarb.solana_client import SolanaClient


MOCK_SIG = str(Keypair().sign_message(b"test transaction"))


class TestSolanaClient:
    """Tests for SolanaClient class."""

    @pytest.fixture
    def keypair(self):
        """Create a keypair for testing."""
        return Keypair()

    @pytest.fixture
    def client(self, keypair):
        """Create a SolanaClient instance for testing."""
        return SolanaClient("https://api.mainnet-beta.solana.com", keypair)

    @pytest.fixture
    def client_no_wallet(self):
        """Create a SolanaClient without wallet."""
        return SolanaClient("https://api.mainnet-beta.solana.com", None)

    def test_solana_client_initialization(self, client, keypair):
        """Test SolanaClient can be initialized."""
        assert client.rpc_url_primary == "https://api.mainnet-beta.solana.com"
        assert client.wallet == keypair

    @pytest.mark.asyncio
    async def test_get_balance_success(self, client):
        """Test get_balance returns balance on success."""
        mock_response = MagicMock()
        mock_response.value = 1_000_000_000

        with patch.object(client.client, 'get_balance', return_value=mock_response):
            assert await client.get_balance() == 1_000_000_000

    @pytest.mark.asyncio
    async def test_get_balance_no_wallet_no_pubkey(self, client_no_wallet):
        """Test get_balance raises error when no wallet and no pubkey."""
        with pytest.raises(ValueError, match="No wallet or pubkey provided"):
            await client_no_wallet.get_balance()

    @pytest.mark.asyncio
    async def test_get_balance_error(self, client):
        """Test get_balance returns 0 on error."""
        with patch.object(client.client, 'get_balance', side_effect=Exception("RPC error")):
            assert await client.get_balance() == 0

    def test_sign_without_wallet_raises(self, client_no_wallet):
        with pytest.raises(ValueError, match="No wallet loaded"):
            client_no_wallet.sign_transaction(base64.b64encode(b"tx").decode())

    @pytest.mark.asyncio
    async def test_simulate_transaction_success(self, client):
        """Test simulate_transaction returns result on success."""
        mock_sim_result = MagicMock()
        mock_sim_result.err = None
        mock_sim_result.logs = ["Program log: test"]
        mock_sim_result.units_consumed = 1000
        mock_response = MagicMock()
        mock_response.value = mock_sim_result

        with patch.object(client, 'sign_transaction', return_value=MagicMock()):
            with patch.object(client.client, 'simulate_transaction', return_value=mock_response):
                result = await client.simulate_transaction("dHg=")

        assert result["err"] is None
        assert result["logs"] == ["Program log: test"]
        assert result["units_consumed"] == 1000

    @pytest.mark.asyncio
    async def test_simulate_transaction_with_error(self, client):
        """Test simulate_transaction returns result with error."""
        mock_sim_result = MagicMock()
        mock_sim_result.err = {"code": 1, "name": "InsufficientFundsForFee"}
        mock_sim_result.logs = []
        mock_sim_result.units_consumed = 0
        mock_response = MagicMock()
        mock_response.value = mock_sim_result

        with patch.object(client, 'sign_transaction', return_value=MagicMock()):
            with patch.object(client.client, 'simulate_transaction', return_value=mock_response):
                result = await client.simulate_transaction("dHg=")

        assert result["err"]["code"] == 1

    @pytest.mark.asyncio
    async def test_simulate_transaction_failure(self, client):
        """Test simulate_transaction returns None when decoding fails."""
        with patch('mevarb.solana_client.VersionedTransaction') as mock_versioned_tx:
            mock_versioned_tx.from_bytes.side_effect = ValueError("Decode error")
            assert await client.simulate_transaction(base64.b64encode(b"invalid").decode()) is None

    @pytest.mark.asyncio
    async def test_send_transaction_success(self, client):
        """Test send_transaction returns signature on success."""
        mock_response = MagicMock()
        mock_response.value = MOCK_SIG

        with patch.object(client, 'sign_transaction', return_value=b"signed"):
            with patch.object(client.client, 'send_raw_transaction', return_value=mock_response) as mock_send:
                signature = await client.send_transaction("dHg=")

        assert signature == MOCK_SIG
        assert mock_send.call_args[0][0] == b"signed"

    @pytest.mark.asyncio
    async def test_send_transaction_failure(self, client):
        """Test send_transaction returns None when every attempt fails."""
        with patch.object(client, 'sign_transaction', return_value=b"signed"):
            with patch.object(client.client, 'send_raw_transaction', side_effect=Exception("blockhash not found")):
                assert await client.send_transaction("dHg=", max_retries=1) is None


    @pytest.mark.asyncio
    async def test_send_transaction_resends_same_bytes(self, client):
        """Test send_transaction re-sends the same signed bytes up to max_retries times."""
        with patch.object(client, 'sign_transaction', return_value=b"signed"):
            with patch.object(client.client, 'send_raw_transaction', side_effect=Exception("blockhash not found")) as mock_send:
                with patch('mevarb.solana_client.asyncio.sleep', new_callable=AsyncMock) as mock_sleep:
                    assert await client.send_transaction("dHg=", max_retries=3) is None

        assert mock_send.call_count == 3
        assert all(c.args[0] == b"signed" for c in mock_send.call_args_list)
        assert mock_sleep.await_count == 2
    @pytest.mark.asyncio
    async def test_send_transaction_sign_error(self, client_no_wallet):
        """Test send_transaction returns None without a wallet."""
        assert await client_no_wallet.send_transaction("dHg=") is None

    @pytest.mark.asyncio
    async def test_confirm_transaction_success(self, client):
        """Test confirm_transaction returns True on success."""
        mock_status = MagicMock()
        mock_status.err = None
        mock_response = MagicMock()
        mock_response.value = [mock_status]

        with patch.object(client.client, 'confirm_transaction', return_value=mock_response):
            assert await client.confirm_transaction(MOCK_SIG) is True

    @pytest.mark.asyncio
    async def test_confirm_transaction_failure(self, client):
        """Test confirm_transaction returns False on failure."""
        with patch.object(client.client, 'confirm_transaction', side_effect=Exception("RPC error")):
            assert await client.confirm_transaction(MOCK_SIG) is False

    @pytest.mark.asyncio
    async def test_failover_to_fallback(self, keypair):
        """Test a connection error switches to the fallback RPC once."""
        client = SolanaClient("https://primary.example", keypair, fallback_rpc_url="https://fallback.example")
        primary = client.client
        mock_response = MagicMock()
        mock_response.value = 42

        with patch.object(primary, 'get_balance', side_effect=Exception("connection refused")):
            with patch('mevarb.solana_client.AsyncClient') as mock_client_cls:
                mock_client_cls.return_value = AsyncMock()
                mock_client_cls.return_value.get_balance.return_value = mock_response
                balance = await client.get_balance()

        assert balance == 42
        assert client._active_rpc_url == "https://fallback.example"
        mock_client_cls.assert_called_once_with("https://fallback.example")

    @pytest.mark.asyncio
    async def test_no_failover_on_other_errors(self, keypair):
        client = SolanaClient("https://primary.example", keypair, fallback_rpc_url="https://fallback.example")
        with patch.object(client.client, 'get_balance', side_effect=Exception("invalid param")):
            assert await client.get_balance() == 0
        assert client._active_rpc_url == "https://primary.example"

    @pytest.mark.asyncio
    async def test_close(self, client):
        """Test close method closes RPC client."""
        await client.close()
